"""Wires repositories, AI services and job handlers together."""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coachforge.config.settings import Settings, get_settings
from coachforge.llm.completion import CompletionClient
from coachforge.llm.embedding_provider import EmbeddingProvider
from coachforge.middleware.rate_limit import UserRateLimiter
from coachforge.models.enums import JobType
from coachforge.repositories import (
    ConversationRepository,
    GenerationLogRepository,
    JobRepository,
    PlatformRepository,
    ProgramRepository,
)
from coachforge.services.ai.admin_context import AdminContextBuilder
from coachforge.services.ai.orchestrator import ProgramOrchestrator
from coachforge.services.ai.rag import RagService
from coachforge.services.jobs.handlers import (
    AdminChatHandler,
    AiCoachHandler,
    ProgramChatHandler,
    ProgramGenerationHandler,
)
from coachforge.services.jobs.outbox import BestEffortOutbox
from coachforge.services.jobs.runtime import JobRuntime


class ServiceContainer:
    """Application-lifetime services, built once in the lifespan handler."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: CompletionClient,
        embedder: EmbeddingProvider,
        settings: Settings | None = None,
        outbox: BestEffortOutbox | None = None,
        rate_limiter: UserRateLimiter | None = None,
    ):
        self.settings = settings or get_settings()
        self.client = client

        self.jobs = JobRepository(session_factory)
        self.conversations = ConversationRepository(session_factory)
        self.generation_logs = GenerationLogRepository(session_factory)
        self.platform = PlatformRepository(session_factory)
        self.programs = ProgramRepository(session_factory)

        self.outbox = outbox or BestEffortOutbox(self.settings)
        self.rate_limiter = rate_limiter or UserRateLimiter()
        self.rag = RagService(self.conversations, embedder, self.settings)
        self.admin_context = AdminContextBuilder(self.platform, self.settings)
        self.orchestrator = ProgramOrchestrator(
            client,
            self.platform,
            self.programs,
            self.generation_logs,
            self.conversations,
            self.outbox,
            rag=self.rag,
            settings=self.settings,
        )

        chat_deps = dict(
            client=client,
            conversations=self.conversations,
            generation_logs=self.generation_logs,
            outbox=self.outbox,
            rag=self.rag,
            settings=self.settings,
        )
        self.runtime = JobRuntime(self.jobs, {
            JobType.PROGRAM_GENERATION: ProgramGenerationHandler(self.orchestrator),
            JobType.PROGRAM_CHAT: ProgramChatHandler(
                platform=self.platform, orchestrator=self.orchestrator, **chat_deps,
            ),
            JobType.ADMIN_CHAT: AdminChatHandler(context=self.admin_context, **chat_deps),
            JobType.AI_COACH: AiCoachHandler(platform=self.platform, **chat_deps),
        })
