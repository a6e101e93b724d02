"""Tests for library compression, profile summaries and candidate pre-filtering."""
import json
from datetime import date

from coachforge.services.ai.context_compressor import (
    compress_exercises,
    filter_by_difficulty_score,
    format_exercise_library,
    prefilter_for_skeleton,
    summarize_profile,
)

from tests.factories import (
    build_analysis,
    build_exercise,
    build_request,
    build_skeleton,
    build_slot,
)


class TestCompressExercises:
    def test_missing_fields_get_defaults(self):
        [exercise] = compress_exercises([{"id": 42, "name": "Plank", "is_bodyweight": 1}])

        assert exercise.id == "42"
        assert exercise.difficulty == "intermediate"
        assert exercise.equipment_required == []
        assert exercise.is_bodyweight is True
        assert exercise.is_compound is False

    def test_library_format_is_compact_json(self):
        text = format_exercise_library([build_exercise("a", "Air Squat")])

        assert " " not in text.replace("Air Squat", "")
        assert json.loads(text)[0]["name"] == "Air Squat"
        assert "difficulty_score" not in json.loads(text)[0]


class TestSummarizeProfile:
    """Request fields override the questionnaire, which overrides defaults."""

    def test_no_profile_uses_defaults(self, settings):
        summary = summarize_profile(None, build_request(), settings)

        assert summary.client_name == "General Client"
        assert summary.has_profile is False
        assert summary.experience_level == settings.default_experience_level
        assert summary.session_minutes == settings.default_session_minutes
        assert summary.sessions_per_week == 3

    def test_request_overrides_profile(self, settings):
        profile = {
            "goals": ["endurance"],
            "available_equipment": ["Barbells"],
            "preferred_session_minutes": 90,
            "experience_level": "advanced",
        }
        request = build_request(
            client_id="c1",
            session_minutes=45,
            equipment_override=["Dumbbells", "DB", "bench"],
        )

        summary = summarize_profile(profile, request, settings, client_name="Sam")

        assert summary.client_name == "Sam"
        assert summary.goals == ["muscle_gain"]
        assert summary.available_equipment == ["dumbbell", "bench"]
        assert summary.session_minutes == 45
        assert summary.experience_level == "advanced"

    def test_profile_fills_gaps(self, settings):
        profile = {
            "available_equipment": ["kettlebells"],
            "preferred_session_minutes": 30,
            "date_of_birth": "1990-06-01",
            "injuries": ["knee", "", None],
            "preferred_day_names": [1, 3, 9, "x"],
        }

        summary = summarize_profile(profile, build_request(), settings, today=date(2025, 1, 1))

        assert summary.has_profile is True
        assert summary.available_equipment == ["kettlebell"]
        assert summary.session_minutes == 30
        assert summary.age == 35
        assert summary.injuries == ["knee"]
        assert summary.preferred_day_names == ["Mon", "Wed"]

    def test_unparseable_birth_date(self, settings):
        summary = summarize_profile({"date_of_birth": "unknown"}, build_request(), settings)
        assert summary.age is None


class TestDifficultyScoreFilter:
    def test_no_ceiling_keeps_everything(self):
        exercises = [build_exercise("a"), build_exercise("b", difficulty_score=9)]
        assert filter_by_difficulty_score(exercises, None) == exercises

    def test_ceiling_drops_unscored_and_harder(self):
        exercises = [
            build_exercise("a"),
            build_exercise("b", difficulty_score=9),
            build_exercise("c", difficulty_score=4),
            build_exercise("d", difficulty_score=5),
        ]
        assert [e.id for e in filter_by_difficulty_score(exercises, 5)] == ["c", "d"]


class TestPrefilter:
    """Candidates are usable, pattern-covered and ranked by relevance."""

    def _skeleton(self):
        return build_skeleton({1: {1: [
            build_slot("w1d1s1", movement_pattern="squat", target_muscles=["quads"]),
            build_slot("w1d1s2", movement_pattern="pull", target_muscles=["lats"]),
        ]}})

    def test_unusable_exercises_are_excluded(self):
        exercises = [
            build_exercise("bb", movement_pattern="squat", equipment_required=["barbell"], is_bodyweight=False),
            build_exercise("kb", movement_pattern="squat", equipment_required=["kettlebell"], is_bodyweight=False),
            build_exercise("lunge", movement_pattern="lunge"),
            build_exercise("row", movement_pattern="pull", primary_muscles=["lats"]),
        ]
        analysis = build_analysis([("avoid_movement", "lunge"), ("avoid_equipment", "Barbells")])

        result = prefilter_for_skeleton(exercises, self._skeleton(), ["barbell"], analysis, limit=10)

        assert {e.id for e in result} == {"row"}

    def test_each_pattern_keeps_candidates_under_a_tight_limit(self):
        squats = [build_exercise(f"sq{n}", f"Squat {n}", primary_muscles=["quads", "glutes"]) for n in range(8)]
        pulls = [build_exercise(f"pu{n}", f"Pull {n}", movement_pattern="pull", primary_muscles=["biceps"])
                 for n in range(8)]

        result = prefilter_for_skeleton(squats + pulls, self._skeleton(), [], build_analysis(), limit=10)

        patterns = [e.movement_pattern for e in result]
        assert len(result) == 10
        assert patterns.count("pull") >= 5
        assert patterns.count("squat") >= 5

    def test_ranked_by_relevance(self):
        exercises = [
            build_exercise("plank", "Plank", movement_pattern="isometric", primary_muscles=["core"]),
            build_exercise("squat", "Squat", primary_muscles=["quads"]),
        ]
        result = prefilter_for_skeleton(exercises, self._skeleton(), [], build_analysis(), limit=10)
        assert [e.id for e in result] == ["squat", "plank"]
