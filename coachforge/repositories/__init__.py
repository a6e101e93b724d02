"""Repositories package."""
from coachforge.repositories.conversation_repository import ConversationRepository, SimilarMessage
from coachforge.repositories.generation_log_repository import GenerationLogRepository
from coachforge.repositories.job_repository import JobRepository
from coachforge.repositories.platform_repository import PlatformRepository
from coachforge.repositories.program_repository import ProgramDraft, ProgramRepository

__all__ = [
    "ConversationRepository",
    "SimilarMessage",
    "GenerationLogRepository",
    "JobRepository",
    "PlatformRepository",
    "ProgramDraft",
    "ProgramRepository",
]
