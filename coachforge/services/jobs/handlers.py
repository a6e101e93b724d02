"""Handlers for each AI job type."""
import asyncio
import logging
import time
import uuid
from typing import Any

from coachforge.config.settings import Settings, get_settings
from coachforge.core.exceptions import CompletionError, NotFoundError
from coachforge.llm.base import Message
from coachforge.llm.completion import CompletionClient, StreamUsage, TextDelta, ToolFinished, ToolStart
from coachforge.models.ai import AiJob
from coachforge.models.enums import AiFeature, ChunkType, GenerationStatus, RecommendationType
from coachforge.repositories.conversation_repository import ConversationRepository
from coachforge.repositories.generation_log_repository import GenerationLogRepository
from coachforge.repositories.platform_repository import PlatformRepository
from coachforge.schemas.coach import CoachAnalysis
from coachforge.schemas.jobs import (
    AdminChatJobCreate,
    AiCoachJobCreate,
    ChatMessage,
    ProgramChatJobCreate,
    ProgramGenerationJobCreate,
)
from coachforge.schemas.program import CompressedExercise
from coachforge.schemas.tools import GenerateProgramResult
from coachforge.services.ai.admin_context import AdminContextBuilder
from coachforge.services.ai.context_compressor import coach_profile, compress_exercises
from coachforge.services.ai.orchestrator import ProgramOrchestrator
from coachforge.services.ai.prompts import (
    COACH_ANALYSIS_PROMPT,
    COACHING_PROMPT,
    admin_chat_system_prompt,
    build_coach_analysis_message,
    build_coach_message,
    program_chat_system_prompt,
)
from coachforge.services.ai.rag import RagService, augment_prompt, format_context
from coachforge.services.ai.tools import TOOL_CATALOGUE, ProgramChatTools
from coachforge.services.jobs.outbox import BestEffortOutbox
from coachforge.services.jobs.runtime import ChunkLog

logger = logging.getLogger(__name__)

SIMPLE_QUERY_CHARS = 80
SIMPLE_QUERY_MESSAGES = 4


def last_user_message(messages: list[ChatMessage]) -> ChatMessage | None:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None


def _content(message: ChatMessage | None) -> str | None:
    return message.content if message else None


class ProgramGenerationHandler:
    def __init__(self, orchestrator: ProgramOrchestrator):
        self.orchestrator = orchestrator

    async def __call__(self, job: AiJob, log: ChunkLog) -> dict[str, Any]:
        payload = ProgramGenerationJobCreate.model_validate(job.input)
        result = await self.orchestrator.generate(payload.request, job.user_id)
        await log.emit(ChunkType.PROGRAM_CREATED, {
            "program_id": result.program_id,
            "validation_pass": result.validation.passed,
            "duration_ms": result.duration_ms,
        })
        return {
            "program_id": result.program_id,
            "generation_id": result.generation_id,
            "validation": result.validation.model_dump(mode="json", by_alias=True),
            "token_usage": result.token_usage.model_dump(),
            "duration_ms": result.duration_ms,
            "retries": result.retries,
        }


class ChatHandler:
    """Shared conversation bookkeeping for the chat surfaces."""

    feature: AiFeature

    def __init__(
        self,
        client: CompletionClient,
        conversations: ConversationRepository,
        generation_logs: GenerationLogRepository,
        outbox: BestEffortOutbox,
        rag: RagService | None = None,
        settings: Settings | None = None,
    ):
        self.client = client
        self.conversations = conversations
        self.generation_logs = generation_logs
        self.outbox = outbox
        self.rag = rag
        self.settings = settings or get_settings()

    def session_id(self, job: AiJob, requested: str | None) -> str:
        return requested or f"{self.feature.value}-{job.user_id}-{job.id}"

    async def with_context(self, system: str, messages: list[ChatMessage], session_id: str) -> str:
        last = last_user_message(messages)
        if self.rag is None or last is None:
            return system
        context = await self.rag.context_for(last.content, self.feature.value, exclude_session=session_id)
        return augment_prompt(system, context)

    async def save_turn(
        self,
        job: AiJob,
        session_id: str,
        user_content: str | None,
        reply: str,
        usage: StreamUsage,
        model: str,
        metadata: dict[str, Any],
    ) -> str | None:
        """Persist the exchange inline; a failure here never fails the job."""
        try:
            if user_content is not None:
                await self.conversations.save(
                    user_id=job.user_id,
                    feature=self.feature.value,
                    session_id=session_id,
                    role="user",
                    content=user_content,
                )
            message_id = await self.conversations.save(
                user_id=job.user_id,
                feature=self.feature.value,
                session_id=session_id,
                role="assistant",
                content=reply,
                metadata={"model": model, **metadata},
                tokens_input=usage.input_tokens,
                tokens_output=usage.output_tokens,
                model_used=model,
            )
        except Exception as e:
            logger.warning(f"Job {job.id}: conversation save failed: {e}")
            return None

        if self.rag is not None:
            rag = self.rag
            self.outbox.submit("embed_message", lambda: rag.embed_message(message_id))
        return message_id

    def log_generation(self, job: AiJob, model: str, usage: StreamUsage, duration_ms: int):
        self.outbox.submit("generation_log", lambda: self.generation_logs.record(
            generation_id=str(uuid.uuid4()),
            requested_by=job.user_id,
            status=GenerationStatus.COMPLETED,
            input_params={"feature": self.feature.value, "job_id": job.id},
            model_used=model,
            tokens_used=usage.total,
            duration_ms=duration_ms,
        ))


class ProgramChatHandler(ChatHandler):
    feature = AiFeature.PROGRAM_CHAT

    def __init__(self, *args, platform: PlatformRepository, orchestrator: ProgramOrchestrator, **kwargs):
        super().__init__(*args, **kwargs)
        self.platform = platform
        self.orchestrator = orchestrator

    async def __call__(self, job: AiJob, log: ChunkLog) -> dict[str, Any]:
        started = time.monotonic()
        payload = ProgramChatJobCreate.model_validate(job.input)
        session_id = self.session_id(job, payload.session_id)
        messages = payload.messages[-self.settings.chat_history_limit:]
        model = self.settings.openai_model

        system = await self.with_context(program_chat_system_prompt(), messages, session_id)
        tools = ProgramChatTools(self.platform, self.orchestrator, job.user_id)

        reply: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        usage = StreamUsage(0, 0)
        async for event in self.client.run_tools(
            system,
            [Message(role=m.role, content=m.content) for m in messages],
            TOOL_CATALOGUE,
            tools.execute,
            model=model,
            max_tokens=self.settings.program_chat_max_tokens,
            max_rounds=self.settings.chat_max_tool_rounds,
        ):
            if isinstance(event, TextDelta):
                reply.append(event.text)
                await log.delta(event.text)
            elif isinstance(event, ToolStart):
                await log.emit(ChunkType.TOOL_START, {"tool": event.name, "call_id": event.call_id})
            elif isinstance(event, ToolFinished):
                await self._tool_finished(event, log)
                tool_calls.append({"tool": event.name, "error": event.is_error})
            elif isinstance(event, StreamUsage):
                usage = event

        text = "".join(reply) or "[tool calls only]"
        message_id = await self.save_turn(
            job, session_id, _content(last_user_message(messages)), text, usage, model, {"tool_calls": tool_calls},
        )
        if message_id:
            await log.emit(ChunkType.MESSAGE_ID, {"id": message_id})
        self.log_generation(job, model, usage, int((time.monotonic() - started) * 1000))
        return {"message_id": message_id, "tokens_used": usage.total}

    async def _tool_finished(self, event: ToolFinished, log: ChunkLog):
        result = event.result
        if isinstance(result, GenerateProgramResult) and result.success and result.program_id:
            await log.emit(ChunkType.PROGRAM_CREATED, {
                "program_id": result.program_id,
                "validation_pass": result.validation_pass,
                "duration_ms": result.duration_ms,
            })
        await log.emit(ChunkType.TOOL_RESULT, {
            "tool": event.name,
            "call_id": event.call_id,
            "summary": result.summary,
            "error": event.is_error,
        })


class AdminChatHandler(ChatHandler):
    feature = AiFeature.ADMIN_CHAT

    def __init__(self, *args, context: AdminContextBuilder, **kwargs):
        super().__init__(*args, **kwargs)
        self.context = context

    def choose_model(self, requested: str | None, messages: list[ChatMessage]) -> str:
        if requested == "fast":
            return self.settings.openai_fast_model
        if requested == "full":
            return self.settings.openai_model
        last = last_user_message(messages)
        simple = (
            len(last.content if last else "") < SIMPLE_QUERY_CHARS
            and len(messages) <= SIMPLE_QUERY_MESSAGES
        )
        return self.settings.openai_fast_model if simple else self.settings.openai_model

    async def __call__(self, job: AiJob, log: ChunkLog) -> dict[str, Any]:
        started = time.monotonic()
        payload = AdminChatJobCreate.model_validate(job.input)
        session_id = self.session_id(job, payload.session_id)
        messages = payload.messages[-self.settings.admin_chat_history_limit:]
        model = self.choose_model(payload.model, messages)

        platform_context = await self.context.get()
        system = await self.with_context(admin_chat_system_prompt(platform_context), messages, session_id)

        reply: list[str] = []
        usage = StreamUsage(0, 0)
        async for event in self.client.stream_text(
            system,
            [Message(role=m.role, content=m.content) for m in messages],
            model=model,
            max_tokens=self.settings.admin_chat_max_tokens,
        ):
            if isinstance(event, TextDelta):
                reply.append(event.text)
                await log.delta(event.text)
            else:
                usage = event

        message_id = await self.save_turn(
            job, session_id, _content(last_user_message(messages)), "".join(reply), usage, model, {},
        )
        if message_id:
            await log.emit(ChunkType.MESSAGE_ID, {"id": message_id})
        self.log_generation(job, model, usage, int((time.monotonic() - started) * 1000))
        return {"message_id": message_id, "model": model, "tokens_used": usage.total}


class AiCoachHandler(ChatHandler):
    """Coaching on one exercise: streamed advice, then a structured read of the same data."""

    feature = AiFeature.AI_COACH

    def __init__(self, *args, platform: PlatformRepository, **kwargs):
        super().__init__(*args, **kwargs)
        self.platform = platform

    async def __call__(self, job: AiJob, log: ChunkLog) -> dict[str, Any]:
        started = time.monotonic()
        payload = AiCoachJobCreate.model_validate(job.input)
        session_id = f"coach-{job.user_id}-{payload.exercise_id}-{job.id}"

        record, history, profile, assessment = await asyncio.gather(
            self.platform.get_exercise(payload.exercise_id),
            self.platform.exercise_history(job.user_id, payload.exercise_id, self.settings.coach_history_limit),
            self.platform.get_client_profile(job.user_id),
            self._latest_assessment(job.user_id),
        )
        if record is None:
            raise NotFoundError("exercise", f"Exercise {payload.exercise_id} not found")
        [exercise] = compress_exercises([record])

        # A first session borrows history from exercises with the same pattern
        related: list[dict[str, Any]] = []
        if not history and not payload.current_session and exercise.movement_pattern:
            related = await self._related_history(job.user_id, exercise)

        message = build_coach_message(
            exercise,
            coach_profile(profile),
            assessment,
            payload.program_context,
            history,
            related,
            payload.current_session,
        )
        system = await self._with_similar(exercise)
        model = self.settings.openai_model

        reply: list[str] = []
        usage = StreamUsage(0, 0)
        async for event in self.client.stream_text(
            system,
            [Message(role="user", content=message)],
            model=model,
            max_tokens=self.settings.coach_max_tokens,
        ):
            if isinstance(event, TextDelta):
                reply.append(event.text)
                await log.delta(event.text)
            else:
                usage = event
        text = "".join(reply)

        analysis, analysis_tokens = await self._analyze(job, message, text)
        metadata: dict[str, Any] = {"exercise_id": exercise.id, "exercise_name": exercise.name}
        if analysis is not None:
            metadata["analysis"] = analysis.model_dump()
            await log.emit(ChunkType.ANALYSIS, metadata["analysis"])
            self._track(job, exercise.id, analysis)

        message_id = await self.save_turn(job, session_id, message, text, usage, model, metadata)
        if message_id:
            await log.emit(ChunkType.MESSAGE_ID, {"id": message_id})
        self.log_generation(job, model, usage, int((time.monotonic() - started) * 1000))
        return {
            "message_id": message_id,
            "analysis": metadata.get("analysis"),
            "tokens_used": usage.total + analysis_tokens,
        }

    async def _latest_assessment(self, user_id: str) -> dict[str, Any] | None:
        try:
            return await self.platform.latest_assessment(user_id)
        except Exception as e:
            logger.warning(f"Assessment lookup failed for {user_id}: {e}")
            return None

    async def _related_history(self, user_id: str, exercise: CompressedExercise) -> list[dict[str, Any]]:
        try:
            return await self.platform.related_exercise_history(
                user_id, exercise.movement_pattern, exercise.id, self.settings.coach_related_history_limit,
            )
        except Exception as e:
            logger.warning(f"Related history lookup failed for {user_id}: {e}")
            return []

    async def _with_similar(self, exercise: CompressedExercise) -> str:
        if self.rag is None:
            return COACHING_PROMPT
        query = " ".join(filter(None, [exercise.name, exercise.movement_pattern, exercise.muscle_group]))
        results = await self.rag.retrieve(
            query,
            self.feature.value,
            threshold=self.settings.coach_rag_threshold,
            limit=self.settings.coach_rag_limit,
        )
        return augment_prompt(COACHING_PROMPT, format_context(results, self.settings.rag_content_preview_chars))

    async def _analyze(self, job: AiJob, message: str, text: str) -> tuple[CoachAnalysis | None, int]:
        """Structured follow-up on the fast model; a failure only loses the analysis."""
        try:
            return await self.client.complete_structured(
                COACH_ANALYSIS_PROMPT,
                build_coach_analysis_message(message, text),
                CoachAnalysis,
                model=self.settings.openai_fast_model,
                max_tokens=self.settings.coach_max_tokens,
            )
        except CompletionError as e:
            logger.warning(f"Job {job.id}: coach analysis failed: {e}")
            return None, 0

    def _track(self, job: AiJob, exercise_id: str, analysis: CoachAnalysis):
        predictions = []
        if analysis.suggested_weight_kg is not None:
            predictions.append((RecommendationType.WEIGHT_SUGGESTION, {"weight_kg": analysis.suggested_weight_kg}))
        if analysis.deload_recommended:
            predictions.append((RecommendationType.DELOAD_RECOMMENDATION, {"recommended": True}))

        for kind, predicted in predictions:
            self.outbox.submit(
                "outcome_tracking",
                lambda kind=kind, predicted=predicted: self.conversations.record_outcome(
                    user_id=job.user_id,
                    recommendation_type=kind.value,
                    predicted_value=predicted,
                    exercise_id=exercise_id,
                ),
            )
