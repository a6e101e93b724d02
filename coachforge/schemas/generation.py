"""Request schemas for program generation."""
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from coachforge.schemas.program import Periodization, SplitType


Goal = Literal[
    "weight_loss", "muscle_gain", "endurance",
    "flexibility", "sport_specific", "general_health",
]


class ComputedLevels(BaseModel):
    overall: str
    squat: str
    push: str
    pull: str
    hinge: str


class AssessmentContext(BaseModel):
    """Capability ceiling produced by a movement assessment."""

    assessment_result_id: str
    computed_levels: ComputedLevels
    max_difficulty_score: float = Field(ge=0, le=10)
    generation_trigger: Literal["initial_assessment", "reassessment"] = "initial_assessment"


class GenerationRequest(BaseModel):
    goals: list[Goal] = Field(min_length=1)
    duration_weeks: int = Field(ge=1, le=52)
    sessions_per_week: int = Field(ge=1, le=7)
    session_minutes: int | None = Field(default=None, ge=15, le=180)
    split_type: SplitType | None = None
    periodization: Periodization | None = None
    equipment_override: list[str] | None = None
    additional_instructions: str | None = Field(default=None, max_length=2000)
    client_id: str | None = None
    is_public: bool = False
    assessment: AssessmentContext | None = None

    @field_validator("goals")
    @classmethod
    def dedupe_goals(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))
