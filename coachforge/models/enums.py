"""Enumerations shared by models, schemas and services."""
from enum import Enum


class JobType(str, Enum):
    PROGRAM_GENERATION = "program_generation"
    PROGRAM_CHAT = "program_chat"
    ADMIN_CHAT = "admin_chat"
    AI_COACH = "ai_coach"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ChunkType(str, Enum):
    DELTA = "delta"
    TOOL_START = "tool_start"
    TOOL_RESULT = "tool_result"
    PROGRAM_CREATED = "program_created"
    ANALYSIS = "analysis"
    MESSAGE_ID = "message_id"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ChunkType.DONE, ChunkType.ERROR)


class AiFeature(str, Enum):
    PROGRAM_GENERATION = "program_generation"
    PROGRAM_CHAT = "program_chat"
    ADMIN_CHAT = "admin_chat"
    AI_COACH = "ai_coach"


class GenerationStatus(str, Enum):
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationTrigger(str, Enum):
    ADMIN_MANUAL = "admin_manual"
    PROGRAM_CHAT = "program_chat"
    INITIAL_ASSESSMENT = "initial_assessment"
    REASSESSMENT = "reassessment"


class ProgramCategory(str, Enum):
    STRENGTH = "strength"
    CONDITIONING = "conditioning"
    SPORT_SPECIFIC = "sport_specific"
    RECOVERY = "recovery"
    HYBRID = "hybrid"


class ProgramDifficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    ELITE = "elite"


class RecommendationType(str, Enum):
    WEIGHT_SUGGESTION = "weight_suggestion"
    DELOAD_RECOMMENDATION = "deload_recommendation"
