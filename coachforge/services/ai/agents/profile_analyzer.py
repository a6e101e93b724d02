"""Step 1: client profile to training analysis."""
import math

from coachforge.schemas.generation import GenerationRequest
from coachforge.schemas.program import (
    ExerciseConstraint,
    ProfileAnalysis,
    ProfileSummary,
    SessionStructure,
    VolumeTarget,
)
from coachforge.services.ai.agents.base import Agent, AgentResult
from coachforge.services.ai.equipment import CANONICAL_EQUIPMENT, normalize_equipment
from coachforge.services.ai.prompts import PROFILE_ANALYZER_PROMPT, build_analyzer_message

VOLUME_BANDS: dict[str, tuple[float, float]] = {
    "novice": (10, 14),
    "intermediate": (14, 20),
    "advanced": (16, 24),
    "elite": (20, 30),
}


def weekly_set_cap(sessions_per_week: int, session_minutes: int) -> float | None:
    total_minutes = sessions_per_week * session_minutes
    if total_minutes < 90:
        return 20
    if total_minutes < 120:
        return 30
    return None


def _clamp_volume(targets: list[VolumeTarget], training_age: str, cap: float | None) -> list[VolumeTarget]:
    low, high = VOLUME_BANDS[training_age]
    clamped = [t.model_copy(update={"sets_per_week": min(max(t.sets_per_week, low), high)}) for t in targets]

    total = sum(t.sets_per_week for t in clamped)
    if cap is None or total <= cap:
        return clamped
    factor = cap / total
    return [
        t.model_copy(update={"sets_per_week": math.floor(t.sets_per_week * factor * 10) / 10})
        for t in clamped
    ]


def _fit_session(structure: SessionStructure, session_minutes: int) -> SessionStructure:
    if session_minutes <= 30:
        total = min(max(structure.total_exercises, 4), 5)
        return structure.model_copy(update={
            "total_exercises": total,
            "cool_down_minutes": 0,
            "isolation_count": 0,
            "compound_count": min(structure.compound_count, total),
        })
    if session_minutes <= 45:
        total = min(max(structure.total_exercises, 5), 6)
        isolation = min(structure.isolation_count, 1)
        return structure.model_copy(update={
            "total_exercises": total,
            "isolation_count": isolation,
            "compound_count": min(structure.compound_count, total - isolation),
        })
    return structure


def _mentions(constraint: ExerciseConstraint, term: str) -> bool:
    term = term.lower()
    value = constraint.value.lower().strip()
    if value and (term in value or value in term):
        return True
    return term in constraint.reason.lower()


def _ensure_constraints(
    constraints: list[ExerciseConstraint],
    injuries: list[str],
    available_equipment: list[str],
) -> list[ExerciseConstraint]:
    result = list(constraints)

    for injury in injuries:
        if not injury.strip():
            continue
        if not any(_mentions(c, injury) for c in result):
            result.append(ExerciseConstraint(
                type="limit_load",
                value=injury,
                reason=f"Reported injury: {injury}",
            ))

    available = {normalize_equipment(e) for e in available_equipment}
    avoided = {normalize_equipment(c.value) for c in result if c.type == "avoid_equipment"}
    for equipment in CANONICAL_EQUIPMENT:
        if equipment not in available and equipment not in avoided:
            result.append(ExerciseConstraint(
                type="avoid_equipment",
                value=equipment,
                reason="Not available to the client",
            ))
    return result


def guard_analysis(
    analysis: ProfileAnalysis,
    summary: ProfileSummary,
    request: GenerationRequest,
) -> ProfileAnalysis:
    """Enforce the analysis rules the model is asked to follow."""
    update = {
        "volume_targets": _clamp_volume(
            analysis.volume_targets,
            analysis.training_age_category,
            weekly_set_cap(summary.sessions_per_week, summary.session_minutes),
        ),
        "session_structure": _fit_session(analysis.session_structure, summary.session_minutes),
        "exercise_constraints": _ensure_constraints(
            analysis.exercise_constraints, summary.injuries, summary.available_equipment,
        ),
    }
    if request.split_type:
        update["recommended_split"] = request.split_type
    if request.periodization:
        update["recommended_periodization"] = request.periodization
    return analysis.model_copy(update=update)


class ProfileAnalyzer(Agent[ProfileAnalysis]):
    step = "profile_analysis"
    system_prompt = PROFILE_ANALYZER_PROMPT
    schema = ProfileAnalysis

    async def run(
        self,
        summary: ProfileSummary,
        request: GenerationRequest,
        *,
        rag_context: str = "",
        extra_instruction: str = "",
    ) -> AgentResult[ProfileAnalysis]:
        message = build_analyzer_message(summary, request)
        if rag_context:
            message = f"{message}\n\n{rag_context}"
        analysis, tokens = await self._complete(message + extra_instruction)
        return AgentResult(guard_analysis(analysis, summary, request), tokens)
