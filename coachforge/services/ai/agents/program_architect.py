"""Step 2: training analysis to program skeleton."""
from collections import Counter, defaultdict

from coachforge.schemas.generation import GenerationRequest
from coachforge.schemas.program import (
    ExerciseSlot,
    ProfileAnalysis,
    ProfileSummary,
    ProgramDay,
    ProgramSkeleton,
    ProgramWeek,
    ValidationIssue,
)
from coachforge.services.ai.agents.base import Agent, AgentResult
from coachforge.services.ai.prompts import PROGRAM_ARCHITECT_PROMPT, build_architect_message

ROLE_ORDER = {
    "warm_up": 0,
    "primary_compound": 1,
    "secondary_compound": 2,
    "accessory": 3,
    "isolation": 4,
    "cool_down": 5,
}

REST_RANGES: dict[str, tuple[int, int]] = {
    "primary_compound": (90, 180),
    "secondary_compound": (90, 180),
    "accessory": (60, 90),
    "isolation": (30, 60),
}

NOVICE_BLOCKED_TECHNIQUES = frozenset({"dropset", "rest_pause", "amrap"})
GROUPED_TECHNIQUES = frozenset({"superset", "giant_set", "circuit"})
DELOAD_INTERVAL = 4
DELOAD_SET_FACTOR = 0.6


def _is_deload(week: ProgramWeek) -> bool:
    return "deload" in week.phase.lower()


def _fix_slot(slot: ExerciseSlot, training_age: str) -> ExerciseSlot:
    update = {}
    if slot.role in REST_RANGES:
        low, high = REST_RANGES[slot.role]
        rest = min(max(slot.rest_seconds, low), high)
        if rest != slot.rest_seconds:
            update["rest_seconds"] = rest
    if training_age == "novice" and slot.technique in NOVICE_BLOCKED_TECHNIQUES:
        update["technique"] = "straight_set"
    return slot.model_copy(update=update) if update else slot


def _drop_lone_groups(slots: list[ExerciseSlot]) -> list[ExerciseSlot]:
    counts = Counter(s.group_tag for s in slots if s.group_tag)
    result = []
    for slot in slots:
        if slot.group_tag and counts[slot.group_tag] < 2:
            update = {"group_tag": None}
            if slot.technique in GROUPED_TECHNIQUES:
                update["technique"] = "straight_set"
            slot = slot.model_copy(update=update)
        result.append(slot)
    return result


def _deload(week: ProgramWeek) -> ProgramWeek:
    days = [
        day.model_copy(update={"slots": [
            s.model_copy(update={"sets": max(1, round(s.sets * DELOAD_SET_FACTOR))})
            for s in day.slots
        ]})
        for day in week.days
    ]
    return week.model_copy(update={
        "phase": "Deload",
        "intensity_modifier": "deload (about 40% fewer sets)",
        "days": days,
    })


def _ensure_deloads(weeks: list[ProgramWeek]) -> list[ProgramWeek]:
    """No more than three loading weeks in a row; a fourth becomes a deload."""
    result = []
    run = 0
    for week in weeks:
        if _is_deload(week):
            run = 0
        else:
            run += 1
            if run == DELOAD_INTERVAL:
                week = _deload(week)
                run = 0
        result.append(week)
    return result


def guard_skeleton(skeleton: ProgramSkeleton, analysis: ProfileAnalysis) -> ProgramSkeleton:
    """Enforce slot ordering, ids, rest ranges, technique and deload rules."""
    training_age = analysis.training_age_category
    weeks = sorted(skeleton.weeks, key=lambda w: w.week_number)
    if training_age != "novice":
        weeks = _ensure_deloads(weeks)

    # Numbering continues across days that share a weekday so ids stay unique
    slot_counter: dict[tuple[int, int], int] = defaultdict(int)
    new_weeks = []
    for week in weeks:
        new_days = []
        for day in week.days:
            ordered = sorted(day.slots, key=lambda s: ROLE_ORDER[s.role])
            slots = []
            for slot in _drop_lone_groups(ordered):
                key = (week.week_number, day.day_of_week)
                slot_counter[key] += 1
                slot_id = f"w{week.week_number}d{day.day_of_week}s{slot_counter[key]}"
                slots.append(_fix_slot(slot, training_age).model_copy(update={"slot_id": slot_id}))
            new_days.append(day.model_copy(update={"slots": slots}))
        new_weeks.append(week.model_copy(update={"days": new_days}))

    return skeleton.model_copy(update={
        "weeks": new_weeks,
        "total_sessions": sum(len(w.days) for w in new_weeks),
    })


class ProgramArchitect(Agent[ProgramSkeleton]):
    step = "program_architecture"
    system_prompt = PROGRAM_ARCHITECT_PROMPT
    schema = ProgramSkeleton

    async def run(
        self,
        analysis: ProfileAnalysis,
        request: GenerationRequest,
        summary: ProfileSummary,
        *,
        issues: list[ValidationIssue] | None = None,
        extra_instruction: str = "",
    ) -> AgentResult[ProgramSkeleton]:
        message = build_architect_message(analysis, request, summary, issues)
        skeleton, tokens = await self._complete(message + extra_instruction)
        return AgentResult(guard_skeleton(skeleton, analysis), tokens)
