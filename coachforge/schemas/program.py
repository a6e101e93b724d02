"""Pydantic schemas for the program-generation pipeline.

Each generative step's output is a frozen model; later steps derive new
objects with ``model_copy(update=...)`` instead of mutating earlier ones.
"""
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


SplitType = Literal[
    "full_body", "upper_lower", "push_pull_legs", "push_pull",
    "body_part", "movement_pattern", "custom",
]
Periodization = Literal["linear", "undulating", "block", "reverse_linear", "none"]
MovementPattern = Literal[
    "push", "pull", "squat", "hinge", "lunge",
    "carry", "rotation", "isometric", "locomotion",
]
TrainingAge = Literal["novice", "intermediate", "advanced", "elite"]
SlotRole = Literal[
    "warm_up", "primary_compound", "secondary_compound",
    "accessory", "isolation", "cool_down",
]
Technique = Literal[
    "straight_set", "superset", "dropset", "giant_set",
    "circuit", "rest_pause", "amrap",
]
ConstraintType = Literal[
    "avoid_movement", "avoid_equipment", "avoid_muscle",
    "limit_load", "require_unilateral",
]
DifficultyTier = Literal["beginner", "intermediate", "advanced", "elite"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ─── Context ────────────────────────────────────────────────────────────────

class CompressedExercise(_Frozen):
    """Reduced-field projection of an exercise library record."""

    id: str
    name: str
    category: list[str] = Field(default_factory=list)
    difficulty: str = "intermediate"
    difficulty_score: float | None = None
    muscle_group: str | None = None
    movement_pattern: str | None = None
    primary_muscles: list[str] = Field(default_factory=list)
    secondary_muscles: list[str] = Field(default_factory=list)
    force_type: str | None = None
    laterality: str | None = None
    equipment_required: list[str] = Field(default_factory=list)
    is_bodyweight: bool = False
    is_compound: bool = False


class ProfileSummary(_Frozen):
    """Normalized client profile handed to the profile analyzer."""

    client_id: str | None = None
    client_name: str = "General Client"
    has_profile: bool = False
    goals: list[str]
    experience_level: str
    age: int | None = None
    gender: str | None = None
    sport: str | None = None
    training_years: float | None = None
    injuries: list[str] = Field(default_factory=list)
    injury_details: str | None = None
    available_equipment: list[str] = Field(default_factory=list)
    session_minutes: int
    sessions_per_week: int
    preferred_day_names: list[str] = Field(default_factory=list)
    preferred_techniques: list[str] = Field(default_factory=list)
    time_efficiency_preference: str | None = None
    exercise_likes: str | None = None
    exercise_dislikes: str | None = None
    sleep_hours: float | None = None
    stress_level: str | None = None
    notes: str | None = None


# ─── Step 1: profile analysis ───────────────────────────────────────────────

class VolumeTarget(_Frozen):
    muscle_group: str
    sets_per_week: float
    priority: Literal["high", "medium", "low"]


class ExerciseConstraint(_Frozen):
    type: ConstraintType
    value: str
    reason: str


class SessionStructure(_Frozen):
    warm_up_minutes: float
    main_work_minutes: float
    cool_down_minutes: float
    total_exercises: int
    compound_count: int
    isolation_count: int


class ProfileAnalysis(_Frozen):
    recommended_split: SplitType
    recommended_periodization: Periodization
    volume_targets: list[VolumeTarget] = Field(min_length=1)
    exercise_constraints: list[ExerciseConstraint]
    session_structure: SessionStructure
    training_age_category: TrainingAge
    notes: str


# ─── Step 2: program skeleton ───────────────────────────────────────────────

class ExerciseSlot(_Frozen):
    slot_id: str
    role: SlotRole
    movement_pattern: MovementPattern
    target_muscles: list[str] = Field(min_length=1)
    sets: int
    reps: str
    rest_seconds: int
    rpe_target: float | None = None
    tempo: str | None = None
    group_tag: str | None = None
    technique: Technique = "straight_set"


class ProgramDay(_Frozen):
    day_of_week: int = Field(ge=1, le=7)
    label: str
    focus: str
    slots: list[ExerciseSlot] = Field(min_length=1)


class ProgramWeek(_Frozen):
    week_number: int = Field(ge=1)
    phase: str
    intensity_modifier: str
    days: list[ProgramDay] = Field(min_length=1)


class ProgramSkeleton(_Frozen):
    weeks: list[ProgramWeek] = Field(min_length=1)
    split_type: SplitType
    periodization: Periodization
    total_sessions: int
    notes: str

    def iter_slots(self):
        """Yield ``(week, day, slot)`` in program order."""
        for week in self.weeks:
            for day in week.days:
                for slot in day.slots:
                    yield week, day, slot


# ─── Step 3: exercise assignment ────────────────────────────────────────────

class AssignedExercise(_Frozen):
    slot_id: str
    exercise_id: str
    exercise_name: str
    notes: str | None = None


class ExerciseAssignment(_Frozen):
    assignments: list[AssignedExercise] = Field(min_length=1)
    substitution_notes: list[str] = Field(default_factory=list)


# ─── Step 4: validation ─────────────────────────────────────────────────────

class ValidationIssue(_Frozen):
    type: Literal["error", "warning"]
    category: str
    message: str
    slot_ref: str | None = None


class ValidationResult(_Frozen):
    passed: bool = Field(alias="pass")
    issues: list[ValidationIssue]
    summary: str

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.type == "error"]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.type == "warning"]


# ─── Orchestration ──────────────────────────────────────────────────────────

class TokenUsage(_Frozen):
    profile_analysis: int = 0
    program_architecture: int = 0
    exercise_selection: int = 0
    total: int = 0


class OrchestrationResult(_Frozen):
    program_id: str
    generation_id: str
    validation: ValidationResult
    token_usage: TokenUsage
    duration_ms: int
    retries: int
