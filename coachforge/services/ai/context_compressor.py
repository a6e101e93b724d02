"""Reduce the exercise library and client profile to prompt-sized records."""
import json
from collections import Counter
from datetime import date
from typing import Any, Iterable, Mapping

from coachforge.config.settings import Settings
from coachforge.schemas.generation import GenerationRequest
from coachforge.schemas.program import (
    CompressedExercise,
    ProfileAnalysis,
    ProfileSummary,
    ProgramSkeleton,
)
from coachforge.services.ai.equipment import normalize_equipment, normalize_equipment_list

COMPOUND_ROLES = frozenset({"primary_compound", "secondary_compound"})
PER_PATTERN_FLOOR = 5


def compress_exercises(records: Iterable[Mapping[str, Any]]) -> list[CompressedExercise]:
    """Strip library records down to the fields the selector needs."""
    return [
        CompressedExercise(
            id=str(r["id"]),
            name=r["name"],
            category=r.get("category") or [],
            difficulty=r.get("difficulty") or "intermediate",
            difficulty_score=r.get("difficulty_score"),
            muscle_group=r.get("muscle_group"),
            movement_pattern=r.get("movement_pattern"),
            primary_muscles=r.get("primary_muscles") or [],
            secondary_muscles=r.get("secondary_muscles") or [],
            force_type=r.get("force_type"),
            laterality=r.get("laterality"),
            equipment_required=r.get("equipment_required") or [],
            is_bodyweight=bool(r.get("is_bodyweight")),
            is_compound=bool(r.get("is_compound")),
        )
        for r in records
    ]


def _age_from_birth(date_of_birth: str | None, today: date | None = None) -> int | None:
    if not date_of_birth:
        return None
    try:
        birth_year = int(str(date_of_birth)[:4])
    except ValueError:
        return None
    return (today or date.today()).year - birth_year


def summarize_profile(
    profile: Mapping[str, Any] | None,
    request: GenerationRequest,
    settings: Settings,
    client_name: str | None = None,
    today: date | None = None,
) -> ProfileSummary:
    """Merge the stored questionnaire with the request, filling gaps with defaults.

    Request fields win over profile fields; profile fields win over settings
    defaults.
    """
    p = profile or {}
    equipment = request.equipment_override
    if equipment is None:
        equipment = p.get("available_equipment") or []

    return ProfileSummary(
        client_id=request.client_id,
        client_name=client_name or ("Client" if request.client_id else "General Client"),
        has_profile=profile is not None,
        goals=list(request.goals) or list(p.get("goals") or []) or [settings.default_goal],
        experience_level=p.get("experience_level") or settings.default_experience_level,
        age=_age_from_birth(p.get("date_of_birth"), today),
        gender=p.get("gender"),
        sport=p.get("sport"),
        training_years=p.get("training_years"),
        injuries=[i for i in p.get("injuries") or [] if i],
        injury_details=p.get("injury_details"),
        available_equipment=normalize_equipment_list(equipment),
        session_minutes=(
            request.session_minutes
            or p.get("preferred_session_minutes")
            or settings.default_session_minutes
        ),
        sessions_per_week=(
            request.sessions_per_week
            or p.get("preferred_training_days")
            or settings.default_sessions_per_week
        ),
        preferred_day_names=_day_names(p.get("preferred_day_names")),
        preferred_techniques=p.get("preferred_techniques") or [],
        time_efficiency_preference=p.get("time_efficiency_preference"),
        exercise_likes=p.get("exercise_likes"),
        exercise_dislikes=p.get("exercise_dislikes"),
        sleep_hours=p.get("sleep_hours"),
        stress_level=p.get("stress_level"),
        notes=p.get("additional_notes"),
    )


COACH_TEXT_LIMIT = 200
_COACH_PROFILE_FIELDS = (
    "experience_level", "goals", "weight_kg", "height_cm", "gender", "training_years",
    "injuries", "injury_details", "movement_confidence", "sleep_hours", "stress_level",
    "occupation_activity_level", "available_equipment",
)
_COACH_TEXT_FIELDS = ("training_background", "exercise_likes", "exercise_dislikes")


def coach_profile(profile: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Profile fields relevant to coaching one exercise, empty values dropped."""
    if profile is None:
        return None
    result: dict[str, Any] = {}
    for field in _COACH_PROFILE_FIELDS:
        value = profile.get(field)
        if value not in (None, "", []):
            result[field] = value
    for field in _COACH_TEXT_FIELDS:
        if profile.get(field):
            result[field] = str(profile[field])[:COACH_TEXT_LIMIT]
    result["weight_unit"] = profile.get("weight_unit") or "lbs"
    return result


_DAY_NAMES = ("", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def _day_names(days: list[int] | None) -> list[str]:
    return [_DAY_NAMES[d] for d in days or [] if isinstance(d, int) and 1 <= d <= 7]


def filter_by_difficulty_score(
    exercises: list[CompressedExercise],
    max_score: float | None,
) -> list[CompressedExercise]:
    """Keep exercises at or below the ceiling; unscored ones are dropped."""
    if max_score is None:
        return exercises
    return [
        e for e in exercises
        if e.difficulty_score is not None and e.difficulty_score <= max_score
    ]


def is_usable(
    exercise: CompressedExercise,
    available: set[str],
    avoided_equipment: set[str],
    avoided_movements: set[str],
    avoided_muscles: set[str],
) -> bool:
    required = {normalize_equipment(e) for e in exercise.equipment_required}
    if required & avoided_equipment:
        return False
    if not exercise.is_bodyweight and required - available:
        return False
    pattern = (exercise.movement_pattern or "").lower()
    if pattern and pattern in avoided_movements:
        return False
    if {m.lower() for m in exercise.primary_muscles} & avoided_muscles:
        return False
    return True


def prefilter_for_skeleton(
    exercises: list[CompressedExercise],
    skeleton: ProgramSkeleton,
    available_equipment: list[str],
    analysis: ProfileAnalysis,
    limit: int,
) -> list[CompressedExercise]:
    """Rank the library against the skeleton and keep the most relevant.

    Exercises the client cannot or must not do are excluded outright. Every
    movement pattern the skeleton uses is guaranteed a few candidates before
    the remaining budget is filled by overall relevance.
    """
    constraints = analysis.exercise_constraints
    avoided_equipment = {normalize_equipment(c.value) for c in constraints if c.type == "avoid_equipment"}
    avoided_movements = {c.value.lower() for c in constraints if c.type == "avoid_movement"}
    avoided_muscles = {c.value.lower() for c in constraints if c.type == "avoid_muscle"}
    available = set(normalize_equipment_list(available_equipment))

    pattern_weight: Counter = Counter()
    target_muscles: set[str] = set()
    wants_compound = False
    wants_warm_up = False
    for _, _, slot in skeleton.iter_slots():
        pattern_weight[slot.movement_pattern] += 1
        target_muscles.update(m.lower() for m in slot.target_muscles)
        wants_compound = wants_compound or slot.role in COMPOUND_ROLES
        wants_warm_up = wants_warm_up or slot.role == "warm_up"

    def score(e: CompressedExercise) -> float:
        s = 0.0
        pattern = (e.movement_pattern or "").lower()
        if pattern in pattern_weight:
            s += 3 + min(pattern_weight[pattern], 10) * 0.1
        s += 2 * len({m.lower() for m in e.primary_muscles} & target_muscles)
        s += 0.5 * len({m.lower() for m in e.secondary_muscles} & target_muscles)
        if wants_compound and e.is_compound:
            s += 1
        if wants_warm_up and e.is_bodyweight:
            s += 0.5
        return s

    usable = [
        e for e in exercises
        if is_usable(e, available, avoided_equipment, avoided_movements, avoided_muscles)
    ]
    ranked = sorted(usable, key=lambda e: (-score(e), e.name, e.id))

    selected: dict[str, CompressedExercise] = {}
    for pattern in sorted(pattern_weight):
        for e in [e for e in ranked if (e.movement_pattern or "").lower() == pattern][:PER_PATTERN_FLOOR]:
            selected.setdefault(e.id, e)
    for e in ranked:
        if len(selected) >= limit:
            break
        selected.setdefault(e.id, e)

    keep = set(list(selected)[:limit])
    return [e for e in ranked if e.id in keep]


def format_exercise_library(exercises: list[CompressedExercise]) -> str:
    """Compact JSON array for inclusion in a prompt."""
    return json.dumps(
        [e.model_dump(exclude_none=True) for e in exercises],
        separators=(",", ":"),
    )
