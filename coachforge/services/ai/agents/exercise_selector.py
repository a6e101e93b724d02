"""Step 3: skeleton slots to concrete library exercises."""
import json

from coachforge.schemas.program import (
    AssignedExercise,
    CompressedExercise,
    ExerciseAssignment,
    ExerciseSlot,
    ProfileAnalysis,
    ProgramSkeleton,
    ValidationIssue,
)
from coachforge.services.ai.agents.base import Agent, AgentResult
from coachforge.services.ai.context_compressor import format_exercise_library, is_usable
from coachforge.services.ai.equipment import normalize_equipment, normalize_equipment_list
from coachforge.services.ai.prompts import EXERCISE_SELECTOR_PROMPT, build_selector_message
from coachforge.services.ai.validation import difficulty_index

COMPOUND_ROLES = frozenset({"primary_compound", "secondary_compound"})


class SubstitutePicker:
    """Deterministic nearest-match lookup for slots the model left unbound or bound badly."""

    def __init__(
        self,
        library: list[CompressedExercise],
        available_equipment: list[str],
        analysis: ProfileAnalysis,
        client_difficulty: str,
    ):
        constraints = analysis.exercise_constraints
        avoided_equipment = {normalize_equipment(c.value) for c in constraints if c.type == "avoid_equipment"}
        avoided_movements = {c.value.lower() for c in constraints if c.type == "avoid_movement"}
        avoided_muscles = {c.value.lower() for c in constraints if c.type == "avoid_muscle"}
        available = set(normalize_equipment_list(available_equipment))

        self.candidates = sorted(
            (e for e in library
             if is_usable(e, available, avoided_equipment, avoided_movements, avoided_muscles)),
            key=lambda e: (e.name, e.id),
        )
        self.usable_ids = {e.id for e in self.candidates}
        self.client_idx = difficulty_index(client_difficulty)

    def allows(self, exercise_id: str) -> bool:
        """Whether the client may do this exercise at all."""
        return exercise_id in self.usable_ids

    def _score(self, exercise: CompressedExercise, slot: ExerciseSlot) -> float:
        score = 0.0
        if (exercise.movement_pattern or "").lower() == slot.movement_pattern:
            score += 4
        targets = {m.lower() for m in slot.target_muscles}
        score += 2 * len({m.lower() for m in exercise.primary_muscles} & targets)
        if slot.role in COMPOUND_ROLES and exercise.is_compound:
            score += 2
        elif slot.role == "isolation" and not exercise.is_compound:
            score += 1
        elif slot.role == "warm_up" and exercise.is_bodyweight:
            score += 1
        exercise_idx = difficulty_index(exercise.difficulty)
        if self.client_idx is not None and exercise_idx is not None and exercise_idx > self.client_idx:
            score -= exercise_idx - self.client_idx
        return score

    def pick(self, slot: ExerciseSlot, used_today: set[str]) -> CompressedExercise | None:
        best = None
        best_score = float("-inf")
        for exercise in self.candidates:
            if exercise.id in used_today:
                continue
            score = self._score(exercise, slot)
            if score > best_score:
                best, best_score = exercise, score
        return best


def guard_assignment(
    assignment: ExerciseAssignment,
    skeleton: ProgramSkeleton,
    library: list[CompressedExercise],
    picker: SubstitutePicker,
) -> ExerciseAssignment:
    """Bind every skeleton slot to exactly one library exercise.

    Entries for unknown slots and repeated entries for a slot are dropped.
    A slot that is unbound, bound to an id outside the library, bound to an
    exercise already used that day, or bound to one the client's equipment
    or injury constraints rule out gets a substitute; each substitution is
    noted. When no substitute exists a known pick is kept as-is so that
    validation reports it.
    """
    known = {e.id: e for e in library}
    proposed: dict[str, AssignedExercise] = {}
    for assigned in assignment.assignments:
        proposed.setdefault(assigned.slot_id, assigned)

    notes = list(assignment.substitution_notes)
    result: list[AssignedExercise] = []
    used: dict[tuple[int, int], set[str]] = {}
    for week, day, slot in skeleton.iter_slots():
        used_today = used.setdefault((week.week_number, day.day_of_week), set())
        assigned = proposed.get(slot.slot_id)

        if assigned is None:
            problem = f"Slot {slot.slot_id} was left empty"
        elif assigned.exercise_id not in known:
            problem = f"Slot {slot.slot_id}: {assigned.exercise_name} is not in the library"
        elif assigned.exercise_id in used_today:
            problem = f"Slot {slot.slot_id}: {assigned.exercise_name} is already used that day"
        elif not picker.allows(assigned.exercise_id):
            problem = f"Slot {slot.slot_id}: {assigned.exercise_name} conflicts with the client's constraints"
        else:
            result.append(assigned)
            used_today.add(assigned.exercise_id)
            continue

        substitute = picker.pick(slot, used_today)
        if substitute is None:
            if assigned is not None and assigned.exercise_id in known:
                notes.append(f"{problem}; no suitable substitute found, kept for review")
                result.append(assigned)
                used_today.add(assigned.exercise_id)
            else:
                notes.append(f"No suitable substitute found for slot {slot.slot_id}")
            continue

        verb = "filled with" if assigned is None else "substituted"
        notes.append(f"{problem}; {verb} {substitute.name}")
        result.append(AssignedExercise(
            slot_id=slot.slot_id,
            exercise_id=substitute.id,
            exercise_name=substitute.name,
            notes="Automatic substitute",
        ))
        used_today.add(substitute.id)

    return assignment.model_copy(update={"assignments": result, "substitution_notes": notes})


class ExerciseSelector(Agent[ExerciseAssignment]):
    step = "exercise_selection"
    system_prompt = EXERCISE_SELECTOR_PROMPT
    schema = ExerciseAssignment

    async def run(
        self,
        skeleton: ProgramSkeleton,
        analysis: ProfileAnalysis,
        candidates: list[CompressedExercise],
        picker: SubstitutePicker,
        *,
        library: list[CompressedExercise] | None = None,
        issues: list[ValidationIssue] | None = None,
        flagged_slots: list[str] | None = None,
        extra_instruction: str = "",
    ) -> AgentResult[ExerciseAssignment]:
        """Ask the model for assignments from ``candidates``.

        ``library`` is the full usable library the ids are checked against;
        it defaults to the candidate list.
        """
        message = build_selector_message(
            skeleton.model_dump_json(),
            json.dumps([c.model_dump() for c in analysis.exercise_constraints]),
            format_exercise_library(candidates),
            len(candidates),
            issues=issues,
            flagged_slots=flagged_slots,
        )
        assignment, tokens = await self._complete(message + extra_instruction)
        guarded = guard_assignment(assignment, skeleton, library or candidates, picker)
        return AgentResult(guarded, tokens)
