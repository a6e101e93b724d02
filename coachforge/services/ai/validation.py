"""Deterministic program validation.

``validate_program`` is the safety gate between the generative steps and
persistence. It performs no I/O and iterates inputs only in their given order
(or sorted order), so identical inputs always give an identical result.
"""
from collections import defaultdict

from coachforge.schemas.program import (
    CompressedExercise,
    ExerciseAssignment,
    ProfileAnalysis,
    ProgramSkeleton,
    ValidationIssue,
    ValidationResult,
)
from coachforge.services.ai.equipment import normalize_equipment

MAX_SLOTS_PER_DAY = 12
HIGH_SLOTS_PER_DAY = 10
FUNDAMENTAL_PATTERNS = ("push", "pull", "squat", "hinge")
IMBALANCE_MIN_TOTAL = 4
IMBALANCE_MIN_RATIO = 0.5

DIFFICULTY_ORDER = ("beginner", "intermediate", "advanced", "elite")
DIFFICULTY_ALIASES = {"novice": "beginner"}

# Categories that point at the skeleton rather than at exercise choice.
STRUCTURAL_CATEGORIES = frozenset({"excessive_exercises", "unknown_slot", "duplicate_assignment"})


def difficulty_index(tier: str | None) -> int | None:
    if not tier:
        return None
    tier = tier.lower()
    tier = DIFFICULTY_ALIASES.get(tier, tier)
    return DIFFICULTY_ORDER.index(tier) if tier in DIFFICULTY_ORDER else None


def _error(category: str, message: str, slot_ref: str | None = None) -> ValidationIssue:
    return ValidationIssue(type="error", category=category, message=message, slot_ref=slot_ref)


def _warning(category: str, message: str, slot_ref: str | None = None) -> ValidationIssue:
    return ValidationIssue(type="warning", category=category, message=message, slot_ref=slot_ref)


def summarize(issues: list[ValidationIssue]) -> ValidationResult:
    error_count = sum(1 for i in issues if i.type == "error")
    warning_count = len(issues) - error_count
    passed = error_count == 0
    if not passed:
        summary = f"Program has {error_count} error(s) and {warning_count} warning(s) that need attention."
    elif warning_count:
        summary = f"Program passed validation with {warning_count} warning(s)."
    else:
        summary = "Program passed all validation checks."
    return ValidationResult(passed=passed, issues=issues, summary=summary)


def validate_program(
    skeleton: ProgramSkeleton,
    assignment: ExerciseAssignment,
    analysis: ProfileAnalysis,
    exercises: list[CompressedExercise],
    available_equipment: list[str],
    client_difficulty: str,
    max_difficulty_score: float | None = None,
) -> ValidationResult:
    """Check an assembled program against safety, equipment and balance rules.

    Issue order: per-day slot counts, structural slot/assignment mismatches,
    per-assignment checks in assignment order, weekly movement-pattern gaps
    by ascending week, then push/pull imbalance by ascending week.
    """
    issues: list[ValidationIssue] = []
    library = {e.id: e for e in exercises}

    constraints = analysis.exercise_constraints
    avoided_movements = {c.value.lower() for c in constraints if c.type == "avoid_movement"}
    avoided_muscles = {c.value.lower() for c in constraints if c.type == "avoid_muscle"}
    avoided_equipment = {normalize_equipment(c.value) for c in constraints if c.type == "avoid_equipment"}
    available = {normalize_equipment(e) for e in available_equipment}

    # Slot positions, in skeleton order
    slot_position: dict[str, tuple[int, int]] = {}
    for week in skeleton.weeks:
        for day in week.days:
            count = len(day.slots)
            if count > MAX_SLOTS_PER_DAY:
                issues.append(_error(
                    "excessive_exercises",
                    f"Week {week.week_number} {day.label} has {count} exercises, maximum is {MAX_SLOTS_PER_DAY}.",
                ))
            elif count > HIGH_SLOTS_PER_DAY:
                issues.append(_warning(
                    "excessive_exercises",
                    f"Week {week.week_number} {day.label} has {count} exercises, which is very high.",
                ))
            for slot in day.slots:
                slot_position.setdefault(slot.slot_id, (week.week_number, day.day_of_week))

    # Structural: every slot bound exactly once, no assignment outside the skeleton
    seen_slots: set[str] = set()
    checked = []
    for assigned in assignment.assignments:
        if assigned.slot_id not in slot_position:
            issues.append(_error(
                "unknown_slot",
                f"Assignment for {assigned.exercise_name} references unknown slot {assigned.slot_id}",
                assigned.slot_id,
            ))
            continue
        if assigned.slot_id in seen_slots:
            issues.append(_error(
                "duplicate_assignment",
                f"Slot {assigned.slot_id} is assigned more than once",
                assigned.slot_id,
            ))
            continue
        seen_slots.add(assigned.slot_id)
        checked.append(assigned)

    for slot_id in slot_position:
        if slot_id not in seen_slots:
            issues.append(_error(
                "missing_exercise",
                f"Slot {slot_id} has no exercise assigned",
                slot_id,
            ))

    client_idx = difficulty_index(client_difficulty)
    day_exercises: dict[tuple[int, int], set[str]] = defaultdict(set)
    week_patterns: dict[int, set[str]] = defaultdict(set)
    week_push: dict[int, int] = defaultdict(int)
    week_pull: dict[int, int] = defaultdict(int)

    for assigned in checked:
        ref = assigned.slot_id
        exercise = library.get(assigned.exercise_id)
        if exercise is None:
            issues.append(_error(
                "missing_exercise",
                f"Exercise ID {assigned.exercise_id} ({assigned.exercise_name}) not found in library",
                ref,
            ))
            continue

        week, day = slot_position[ref]
        # canonical name -> first spelling seen
        required: dict[str, str] = {}
        for eq in exercise.equipment_required:
            required.setdefault(normalize_equipment(eq), eq)

        # At most one violation per item: unavailable wins over avoided
        for canonical, eq in required.items():
            if not exercise.is_bodyweight and canonical not in available:
                issues.append(_error(
                    "equipment_violation",
                    f'{exercise.name} requires "{eq}" which is not available',
                    ref,
                ))
            elif canonical in avoided_equipment:
                issues.append(_error(
                    "equipment_violation",
                    f'{exercise.name} uses "{eq}" which is in the avoided equipment list',
                    ref,
                ))

        pattern = (exercise.movement_pattern or "").lower()
        if pattern and pattern in avoided_movements:
            issues.append(_error(
                "injury_conflict",
                f'{exercise.name} uses avoided movement pattern "{exercise.movement_pattern}"',
                ref,
            ))
        for muscle in exercise.primary_muscles:
            if muscle.lower() in avoided_muscles:
                issues.append(_error(
                    "injury_conflict",
                    f'{exercise.name} targets avoided muscle "{muscle}"',
                    ref,
                ))

        if exercise.id in day_exercises[(week, day)]:
            issues.append(_error(
                "duplicate_exercise",
                f"{exercise.name} appears more than once on week {week} day {day}",
                ref,
            ))
        day_exercises[(week, day)].add(exercise.id)

        if max_difficulty_score is not None and exercise.difficulty_score is not None \
                and exercise.difficulty_score > max_difficulty_score:
            issues.append(_error(
                "difficulty_score_violation",
                f"{exercise.name} has difficulty_score {exercise.difficulty_score:g} "
                f"exceeding max {max_difficulty_score:g}",
                ref,
            ))

        exercise_idx = difficulty_index(exercise.difficulty)
        if client_idx is not None and exercise_idx is not None and exercise_idx > client_idx + 1:
            issues.append(_warning(
                "difficulty_mismatch",
                f"{exercise.name} ({exercise.difficulty}) may be too advanced for a {client_difficulty} client",
                ref,
            ))

        if pattern:
            week_patterns[week].add(pattern)
        if exercise.force_type == "push":
            week_push[week] += 1
        elif exercise.force_type == "pull":
            week_pull[week] += 1

    for week in sorted(week_patterns):
        for pattern in FUNDAMENTAL_PATTERNS:
            if pattern not in week_patterns[week]:
                issues.append(_warning(
                    "missing_movement_pattern",
                    f'Week {week} is missing the "{pattern}" movement pattern',
                ))

    for week in sorted(set(week_push) | set(week_pull)):
        push, pull = week_push[week], week_pull[week]
        if push + pull < IMBALANCE_MIN_TOTAL:
            continue
        if min(push, pull) / max(push, pull) < IMBALANCE_MIN_RATIO:
            dominant = "push" if push > pull else "pull"
            issues.append(_warning(
                "muscle_imbalance",
                f"Week {week} has a {dominant}-dominant imbalance ({push} push vs {pull} pull exercises)",
            ))

    return summarize(issues)
