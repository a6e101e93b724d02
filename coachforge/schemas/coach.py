"""Schemas for in-workout coaching on a single exercise."""
from pydantic import BaseModel, Field


class SetLog(BaseModel):
    """A set the client has just completed. Weight is in kilograms."""

    set_number: int = Field(ge=1)
    weight_kg: float | None = Field(None, ge=0)
    reps: int = Field(ge=0)
    rpe: float | None = Field(None, ge=1, le=10)


class Prescription(BaseModel):
    sets: int | None = None
    reps: str | None = None
    rpe_target: float | None = None
    intensity_pct: float | None = None
    tempo: str | None = None
    rest_seconds: int | None = None
    notes: str | None = None
    technique: str = "straight_set"
    group_tag: str | None = None


class ProgramContext(BaseModel):
    program_name: str
    difficulty: str
    category: list[str] = Field(default_factory=list)
    periodization: str | None = None
    split_type: str | None = None
    current_week: int = Field(ge=1)
    total_weeks: int = Field(ge=1)
    prescription: Prescription = Field(default_factory=Prescription)


class CoachAnalysis(BaseModel):
    plateau_detected: bool
    suggested_weight_kg: float | None = None
    deload_recommended: bool
    key_observations: list[str] = Field(default_factory=list)
