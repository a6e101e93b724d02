"""SQLAlchemy models."""
from coachforge.models.ai import (
    AiConversationMessage,
    AiFeedback,
    AiGenerationLog,
    AiJob,
    AiJobChunk,
    AiOutcome,
)
from coachforge.models.enums import (
    AiFeature,
    ChunkType,
    GenerationStatus,
    GenerationTrigger,
    JobStatus,
    JobType,
    ProgramCategory,
    ProgramDifficulty,
    RecommendationType,
)
from coachforge.models.platform import AssessmentResult, ClientProfile, Exercise, ExerciseProgress, User
from coachforge.models.program import Program, ProgramAssignment, ProgramExercise

__all__ = [
    "AiConversationMessage",
    "AiFeedback",
    "AiGenerationLog",
    "AiJob",
    "AiJobChunk",
    "AiOutcome",
    "AiFeature",
    "ChunkType",
    "GenerationStatus",
    "GenerationTrigger",
    "JobStatus",
    "JobType",
    "ProgramCategory",
    "ProgramDifficulty",
    "RecommendationType",
    "AssessmentResult",
    "ClientProfile",
    "Exercise",
    "ExerciseProgress",
    "User",
    "Program",
    "ProgramAssignment",
    "ProgramExercise",
]
