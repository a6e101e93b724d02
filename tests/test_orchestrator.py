"""Tests for the generation pipeline: repair routing, best attempt and side effects."""
import pytest

from coachforge.core.exceptions import (
    GenerationError,
    MalformedOutputError,
    ProviderRequestError,
    TransientProviderError,
)
from coachforge.models.enums import GenerationStatus
from coachforge.schemas.generation import AssessmentContext, ComputedLevels
from coachforge.schemas.program import (
    ExerciseAssignment,
    ProfileAnalysis,
    ProgramSkeleton,
    ValidationIssue,
)
from coachforge.services.ai.orchestrator import (
    ProgramOrchestrator,
    derive_program_category,
    dominant_category,
    map_difficulty,
    program_name,
    restart_step,
)
from coachforge.services.ai.rag import RagService
from coachforge.services.jobs.outbox import BestEffortOutbox

from tests.factories import (
    build_analysis,
    build_assignment,
    build_request,
    build_skeleton,
    build_slot,
)
from tests.fakes import (
    FakeCompletionClient,
    FakeConversations,
    FakeEmbedder,
    FakeGenerationLogs,
    FakePlatform,
    FakePrograms,
    FakeUser,
)

LIBRARY = [
    {"id": "sq", "name": "Goblet Squat", "movement_pattern": "squat", "primary_muscles": ["quads"],
     "is_bodyweight": True, "difficulty": "beginner", "difficulty_score": 2},
    {"id": "hh", "name": "Hip Hinge", "movement_pattern": "hinge", "primary_muscles": ["hamstrings"],
     "is_bodyweight": True, "difficulty": "beginner", "difficulty_score": 3},
    {"id": "dl", "name": "Barbell Deadlift", "movement_pattern": "hinge", "primary_muscles": ["hamstrings"],
     "equipment_required": ["barbell"], "difficulty": "intermediate", "difficulty_score": 6},
]


def two_slot_skeleton() -> ProgramSkeleton:
    return build_skeleton({1: {1: [
        build_slot("a", movement_pattern="squat"),
        build_slot("b", movement_pattern="hinge", target_muscles=["hamstrings"]),
    ]}})


def three_slot_skeleton() -> ProgramSkeleton:
    return build_skeleton({1: {1: [
        build_slot("a", movement_pattern="squat"),
        build_slot("b", movement_pattern="hinge", target_muscles=["hamstrings"]),
        build_slot("c", movement_pattern="hinge", target_muscles=["hamstrings"]),
    ]}})


SQUAT_VARIATIONS = [
    {"id": f"e{n}", "name": f"Squat Variation {n:02d}", "movement_pattern": "squat",
     "primary_muscles": ["quads"], "is_bodyweight": True}
    for n in range(1, 14)
]


def crowded_skeleton(*days: int) -> ProgramSkeleton:
    """Thirteen slots on each given day, one over the hard limit."""
    return build_skeleton({1: {day: [build_slot(f"x{n}") for n in range(13)] for day in days}})


def issue(category: str, kind: str = "error") -> ValidationIssue:
    return ValidationIssue(type=kind, category=category, message=category)


class Harness:
    """An orchestrator wired to in-memory collaborators."""

    def __init__(self, settings, structured, exercises=LIBRARY, embedder=None, **platform_kwargs):
        self.client = FakeCompletionClient(structured)
        self.platform = FakePlatform(exercises=exercises, **platform_kwargs)
        self.programs = FakePrograms()
        self.logs = FakeGenerationLogs()
        self.conversations = FakeConversations()
        self.outbox = BestEffortOutbox(settings)
        self.rag = RagService(self.conversations, embedder, settings) if embedder else None
        self.orchestrator = ProgramOrchestrator(
            self.client, self.platform, self.programs, self.logs,
            self.conversations, self.outbox, rag=self.rag, settings=settings,
        )

    @property
    def schemas(self):
        return [c["schema"] for c in self.client.calls]


@pytest.fixture
def request_():
    return build_request(duration_weeks=1, sessions_per_week=1, equipment_override=[])


class TestRepairRouting:
    """Which step a failed validation restarts."""

    def test_most_common_category_wins(self):
        errors = [issue("equipment_violation"), issue("missing_exercise"), issue("missing_exercise")]
        assert dominant_category(errors) == "missing_exercise"

    def test_ties_broken_by_severity(self):
        errors = [issue("missing_exercise"), issue("injury_conflict")]
        assert dominant_category(errors) == "injury_conflict"

    def test_unknown_categories_rank_last_on_ties(self):
        errors = [issue("something_new"), issue("duplicate_exercise")]
        assert dominant_category(errors) == "duplicate_exercise"

    @pytest.mark.parametrize("categories, step", [
        (["excessive_exercises"], "architecture"),
        (["duplicate_assignment", "unknown_slot"], "architecture"),
        (["equipment_violation"], "selection"),
        (["excessive_exercises", "missing_exercise", "missing_exercise"], "selection"),
    ])
    def test_restart_step(self, categories, step):
        assert restart_step([issue(c) for c in categories]) == step


class TestProgramMetadata:
    @pytest.mark.parametrize("goals, category", [
        (["muscle_gain", "endurance"], "hybrid"),
        (["weight_loss"], "strength"),
        (["endurance"], "conditioning"),
        (["sport_specific"], "sport_specific"),
        (["flexibility"], "recovery"),
        (["general_health"], "hybrid"),
    ])
    def test_category_from_goals(self, goals, category):
        assert derive_program_category(goals).value == category

    def test_unknown_experience_maps_to_beginner(self):
        assert map_difficulty("novice") == "beginner"
        assert map_difficulty("advanced") == "advanced"

    def test_program_name(self):
        generic = build_request(goals=["muscle_gain", "weight_loss"], duration_weeks=8)
        personal = build_request(goals=["endurance"], duration_weeks=6, client_id="c1")

        assert program_name(generic, "General Client") == "8-Week Muscle Gain & Weight Loss Program"
        assert program_name(personal, "Sam") == "Sam's 6-Week Endurance Program"


class TestGenerate:
    """End-to-end runs against a scripted model."""

    @pytest.mark.asyncio
    async def test_first_attempt_passes(self, settings, request_):
        h = Harness(settings, [
            (build_analysis(), 100),
            (two_slot_skeleton(), 200),
            (build_assignment([("w1d1s1", "sq"), ("w1d1s2", "hh")]), 300),
        ])

        result = await h.orchestrator.generate(request_, "coach-1")
        await h.outbox.drain()

        assert result.validation.passed
        assert result.retries == 0
        assert result.program_id == "program-1"
        assert result.token_usage.model_dump() == {
            "profile_analysis": 100,
            "program_architecture": 200,
            "exercise_selection": 300,
            "total": 600,
        }
        assert h.schemas == [ProfileAnalysis, ProgramSkeleton, ExerciseAssignment]

        draft = h.programs.drafts[0]
        assert draft.name == "1-Week Muscle Gain Program"
        assert draft.category == ["strength"]
        assert draft.difficulty == "beginner"
        assert draft.generation_id == result.generation_id
        assert h.programs.assignments == []

        [record] = h.logs.records
        assert record["status"] == GenerationStatus.COMPLETED
        assert record["generation_trigger"] == "admin_manual"
        assert record["output_summary"]["validation_pass"] is True
        assert record["tokens_used"] == 600
        assert [m["metadata"]["step"] for m in h.conversations.saved] == [
            "analysis", "architecture", "selection",
        ]

    @pytest.mark.asyncio
    async def test_selection_errors_restart_selection(self, settings, request_):
        # Only two usable exercises for three slots, so the deadlift cannot be swapped out
        h = Harness(settings, [
            (build_analysis(), 100),
            (three_slot_skeleton(), 200),
            (build_assignment([("w1d1s1", "sq"), ("w1d1s2", "hh"), ("w1d1s3", "dl")]), 300),
            (build_assignment([("w1d1s1", "sq"), ("w1d1s2", "hh"), ("w1d1s3", "dl")]), 250),
        ])
        settings.generation_max_retries = 1

        result = await h.orchestrator.generate(request_, "coach-1")

        assert not result.validation.passed
        assert [i.category for i in result.validation.errors] == ["equipment_violation"]
        assert result.retries == 1
        assert result.token_usage.exercise_selection == 550
        assert h.schemas == [ProfileAnalysis, ProgramSkeleton, ExerciseAssignment, ExerciseAssignment]
        repair_prompt = h.client.calls[3]["user"]
        assert "Slots that MUST get a different exercise: w1d1s3" in repair_prompt
        assert "PREVIOUS ATTEMPT FAILED VALIDATION" in repair_prompt
        notes = h.programs.drafts[0].assignment.substitution_notes
        assert notes[-1].endswith("no suitable substitute found, kept for review")

    @pytest.mark.asyncio
    async def test_constraint_breaking_pick_is_replaced_before_validation(self, settings, request_):
        h = Harness(settings, [
            (build_analysis(), 100),
            (two_slot_skeleton(), 200),
            (build_assignment([("w1d1s1", "sq"), ("w1d1s2", "dl")]), 300),
        ])

        result = await h.orchestrator.generate(request_, "coach-1")

        assert result.validation.passed
        assert result.retries == 0
        persisted = [a.exercise_id for a in h.programs.drafts[0].assignment.assignments]
        assert persisted == ["sq", "hh"]

    @pytest.mark.asyncio
    async def test_structural_errors_restart_architecture(self, settings, request_):
        h = Harness(settings, [
            (build_analysis(), 100),
            (crowded_skeleton(1), 200),
            (build_assignment([(f"w1d1s{n}", f"e{n}") for n in range(1, 14)]), 300),
            (build_skeleton({1: {1: [build_slot("a"), build_slot("b")]}}), 150),
            (build_assignment([("w1d1s1", "e1"), ("w1d1s2", "e2")]), 120),
        ], exercises=SQUAT_VARIATIONS)

        result = await h.orchestrator.generate(request_, "coach-1")

        assert result.validation.passed
        assert result.retries == 1
        assert h.schemas == [
            ProfileAnalysis, ProgramSkeleton, ExerciseAssignment, ProgramSkeleton, ExerciseAssignment,
        ]
        assert "maximum is 12" in h.client.calls[3]["user"]
        assert len(h.programs.drafts[0].skeleton.weeks[0].days[0].slots) == 2

    @pytest.mark.asyncio
    async def test_best_attempt_persisted_when_retries_run_out(self, settings, request_):
        # Every crowded day is one error: two days, then one, then two again
        h = Harness(settings, [
            (build_analysis(), 100),
            (crowded_skeleton(1, 2), 10),
            (build_assignment([("w1d1s1", "e1")]), 10),
            (crowded_skeleton(1), 10),
            (build_assignment([("w1d1s1", "e1")]), 10),
            (crowded_skeleton(1, 3), 10),
            (build_assignment([("w1d1s1", "e1")]), 10),
        ], exercises=SQUAT_VARIATIONS)

        result = await h.orchestrator.generate(request_, "coach-1")
        await h.outbox.drain()

        assert not result.validation.passed
        assert result.retries == settings.generation_max_retries == 2
        assert [i.category for i in result.validation.errors] == ["excessive_exercises"]
        draft = h.programs.drafts[0]
        assert [d.day_of_week for d in draft.skeleton.weeks[0].days] == [1]
        assert len({a.exercise_id for a in draft.assignment.assignments}) == 13
        assert h.logs.records[0]["status"] == GenerationStatus.COMPLETED
        assert h.logs.records[0]["output_summary"]["validation_pass"] is False

    @pytest.mark.asyncio
    async def test_malformed_output_is_reinvoked_once(self, settings, request_):
        h = Harness(settings, [
            MalformedOutputError("ProfileAnalysis could not be parsed", tokens_used=40),
            (build_analysis(), 100),
            (two_slot_skeleton(), 200),
            (build_assignment([("w1d1s1", "sq"), ("w1d1s2", "hh")]), 300),
        ])

        result = await h.orchestrator.generate(request_, "coach-1")

        assert result.token_usage.profile_analysis == 140
        assert "COULD NOT BE PARSED" not in h.client.calls[0]["user"]
        assert "COULD NOT BE PARSED (ProfileAnalysis could not be parsed)" in h.client.calls[1]["user"]

    @pytest.mark.asyncio
    async def test_second_malformed_output_counts_both_calls(self, settings, request_):
        h = Harness(settings, [
            MalformedOutputError("ProfileAnalysis could not be parsed", tokens_used=40),
            MalformedOutputError("ProfileAnalysis could not be parsed", tokens_used=30),
        ])

        with pytest.raises(GenerationError):
            await h.orchestrator.generate(request_, "coach-1")
        await h.outbox.drain()

        assert len(h.client.calls) == 2
        [record] = h.logs.records
        assert record["status"] == GenerationStatus.FAILED
        assert record["tokens_used"] == 70

    @pytest.mark.asyncio
    async def test_slow_retrieval_does_not_block_generation(self, settings, request_):
        h = Harness(settings, [
            (build_analysis(), 100),
            (two_slot_skeleton(), 200),
            (build_assignment([("w1d1s1", "sq"), ("w1d1s2", "hh")]), 300),
        ], embedder=FakeEmbedder(delay=0.5))

        result = await h.orchestrator.generate(request_, "coach-1")
        await h.outbox.drain()

        assert result.validation.passed
        assert result.program_id == "program-1"
        assert h.rag.embedder.texts[0].startswith("muscle_gain 1wk")
        assert "Similar Past Scenarios" not in h.client.calls[0]["user"]

    @pytest.mark.asyncio
    async def test_failed_repair_round_is_skipped(self, settings, request_):
        h = Harness(settings, [
            (build_analysis(), 100),
            (crowded_skeleton(1), 200),
            (build_assignment([("w1d1s1", "e1")]), 300),
            TransientProviderError("overloaded", 529),
            (build_skeleton({1: {1: [build_slot("a"), build_slot("b")]}}), 150),
            (build_assignment([("w1d1s1", "e1"), ("w1d1s2", "e2")]), 120),
        ], exercises=SQUAT_VARIATIONS)

        result = await h.orchestrator.generate(request_, "coach-1")

        assert result.validation.passed
        assert result.retries == 2

    @pytest.mark.asyncio
    async def test_provider_failure_becomes_generation_error(self, settings, request_):
        h = Harness(settings, [
            (build_analysis(), 100),
            ProviderRequestError("Completion API returned 401: unauthorized", 401),
        ])

        with pytest.raises(GenerationError) as exc_info:
            await h.orchestrator.generate(request_, "coach-1")
        await h.outbox.drain()

        assert "401" in exc_info.value.message
        assert h.programs.drafts == []
        [record] = h.logs.records
        assert record["status"] == GenerationStatus.FAILED
        assert record["tokens_used"] == 100
        assert "401" in record["error_message"]

    @pytest.mark.asyncio
    async def test_empty_library(self, settings, request_):
        h = Harness(settings, [], exercises=[])

        with pytest.raises(GenerationError) as exc_info:
            await h.orchestrator.generate(request_, "coach-1")

        assert exc_info.value.code == "GEN_002"
        assert h.client.calls == []

    @pytest.mark.asyncio
    async def test_client_program_is_named_and_assigned(self, settings):
        request = build_request(duration_weeks=1, sessions_per_week=1, client_id="c1")
        h = Harness(
            settings,
            [
                (build_analysis(), 1),
                (two_slot_skeleton(), 1),
                (build_assignment([("w1d1s1", "sq"), ("w1d1s2", "hh")]), 1),
            ],
            profiles={"c1": {"available_equipment": [], "experience_level": "intermediate"}},
            users=[FakeUser(id="c1", first_name="Sam", last_name="Lee")],
        )

        await h.orchestrator.generate(request, "coach-1")

        draft = h.programs.drafts[0]
        assert draft.name == "Sam Lee's 1-Week Muscle Gain Program"
        assert draft.difficulty == "intermediate"
        assert h.programs.assignments == [("program-1", "c1", "coach-1", 1)]

    @pytest.mark.asyncio
    async def test_assignment_failure_does_not_fail_generation(self, settings, request_):
        request = request_.model_copy(update={"client_id": "c1"})
        h = Harness(settings, [
            (build_analysis(), 1),
            (two_slot_skeleton(), 1),
            (build_assignment([("w1d1s1", "sq"), ("w1d1s2", "hh")]), 1),
        ])
        h.programs.fail_assign = True

        result = await h.orchestrator.generate(request, "coach-1")

        assert result.program_id == "program-1"
        assert h.programs.drafts[0].name == "Client's 1-Week Muscle Gain Program"

    @pytest.mark.asyncio
    async def test_assessment_ceiling_filters_library(self, settings, request_):
        assessment = AssessmentContext(
            assessment_result_id="ar-1",
            computed_levels=ComputedLevels(
                overall="beginner", squat="beginner", push="beginner", pull="beginner", hinge="beginner",
            ),
            max_difficulty_score=4,
            generation_trigger="reassessment",
        )
        request = request_.model_copy(update={"assessment": assessment})
        h = Harness(settings, [
            (build_analysis(), 1),
            (two_slot_skeleton(), 1),
            (build_assignment([("w1d1s1", "sq"), ("w1d1s2", "dl")]), 1),
        ])
        settings.generation_max_retries = 0

        result = await h.orchestrator.generate(request, "coach-1")
        await h.outbox.drain()

        # The deadlift is above the ceiling, so it is replaced before validation
        assert result.validation.passed
        assert [a.exercise_id for a in h.programs.drafts[0].assignment.assignments] == ["sq", "hh"]
        assert "Maximum Exercise Difficulty: 4/10" in h.client.calls[0]["user"]
        assert h.logs.records[0]["generation_trigger"] == "reassessment"
