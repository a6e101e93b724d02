"""Program generation pipeline.

Profile analysis, program architecture and exercise selection run in
sequence, then the deterministic validator decides whether the program is
fit to persist. Validation errors trigger a bounded repair loop that restarts
the step the errors point at. When every attempt fails validation the attempt
with the fewest errors is still persisted, together with its failing result,
so the coach can review it.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from coachforge.config.settings import Settings, get_settings
from coachforge.core.exceptions import CompletionError, GenerationError, MalformedOutputError
from coachforge.core.metrics import (
    generation_duration_seconds,
    generation_requests_total,
    generation_retries_total,
    validation_issues_total,
)
from coachforge.llm.completion import CompletionClient
from coachforge.models.enums import AiFeature, GenerationStatus, GenerationTrigger, ProgramCategory
from coachforge.repositories.conversation_repository import ConversationRepository
from coachforge.repositories.generation_log_repository import GenerationLogRepository
from coachforge.repositories.platform_repository import PlatformRepository
from coachforge.repositories.program_repository import ProgramDraft, ProgramRepository
from coachforge.schemas.generation import GenerationRequest
from coachforge.schemas.program import (
    CompressedExercise,
    ExerciseAssignment,
    OrchestrationResult,
    ProfileAnalysis,
    ProfileSummary,
    ProgramSkeleton,
    TokenUsage,
    ValidationIssue,
    ValidationResult,
)
from coachforge.services.ai.agents import (
    AgentResult,
    ExerciseSelector,
    ProfileAnalyzer,
    ProgramArchitect,
    SubstitutePicker,
)
from coachforge.services.ai.context_compressor import (
    compress_exercises,
    filter_by_difficulty_score,
    prefilter_for_skeleton,
    summarize_profile,
)
from coachforge.services.ai.prompts import CORRECTIVE_JSON_INSTRUCTION
from coachforge.services.ai.rag import RagService
from coachforge.services.ai.validation import STRUCTURAL_CATEGORIES, validate_program
from coachforge.services.jobs.outbox import BestEffortOutbox

logger = logging.getLogger(__name__)

# Tie-break when two error categories are equally common: earlier wins.
SEVERITY_ORDER = (
    "excessive_exercises",
    "unknown_slot",
    "duplicate_assignment",
    "injury_conflict",
    "equipment_violation",
    "difficulty_score_violation",
    "missing_exercise",
    "duplicate_exercise",
)

DIFFICULTY_LEVELS = ("beginner", "intermediate", "advanced", "elite")


def derive_program_category(goals: list[str]) -> ProgramCategory:
    goal_set = {g.lower() for g in goals}
    if "muscle_gain" in goal_set and "endurance" in goal_set:
        return ProgramCategory.HYBRID
    if "muscle_gain" in goal_set or "weight_loss" in goal_set:
        return ProgramCategory.STRENGTH
    if "endurance" in goal_set:
        return ProgramCategory.CONDITIONING
    if "sport_specific" in goal_set:
        return ProgramCategory.SPORT_SPECIFIC
    if "flexibility" in goal_set:
        return ProgramCategory.RECOVERY
    if "general_health" in goal_set:
        return ProgramCategory.HYBRID
    return ProgramCategory.STRENGTH


def map_difficulty(experience_level: str | None) -> str:
    return experience_level if experience_level in DIFFICULTY_LEVELS else "beginner"


def _title(value: str) -> str:
    return value.replace("_", " ").title()


def program_name(request: GenerationRequest, client_name: str) -> str:
    goals_label = " & ".join(_title(g) for g in request.goals)
    if request.client_id:
        return f"{client_name}'s {request.duration_weeks}-Week {goals_label} Program"
    return f"{request.duration_weeks}-Week {goals_label} Program"


def program_description(request: GenerationRequest, skeleton: ProgramSkeleton) -> str:
    goals_label = " & ".join(_title(g) for g in request.goals).lower()
    split_label = _title(skeleton.split_type).lower()
    return (
        f"A {request.duration_weeks}-week {split_label} program designed for {goals_label}, "
        f"training {request.sessions_per_week}x per week. {skeleton.notes}"
    ).strip()


def dominant_category(errors: list[ValidationIssue]) -> str:
    counts: dict[str, int] = {}
    for issue in errors:
        counts[issue.category] = counts.get(issue.category, 0) + 1

    def rank(category: str) -> tuple[int, int, str]:
        severity = SEVERITY_ORDER.index(category) if category in SEVERITY_ORDER else len(SEVERITY_ORDER)
        return -counts[category], severity, category

    return min(counts, key=rank)


def restart_step(errors: list[ValidationIssue]) -> str:
    """``architecture`` for skeleton-level errors, otherwise ``selection``."""
    return "architecture" if dominant_category(errors) in STRUCTURAL_CATEGORIES else "selection"


@dataclass
class Attempt:
    skeleton: ProgramSkeleton
    assignment: ExerciseAssignment
    validation: ValidationResult

    @property
    def error_count(self) -> int:
        return len(self.validation.errors)


@dataclass
class _Tokens:
    analysis: int = 0
    architecture: int = 0
    selection: int = 0

    def usage(self) -> TokenUsage:
        return TokenUsage(
            profile_analysis=self.analysis,
            program_architecture=self.architecture,
            exercise_selection=self.selection,
            total=self.analysis + self.architecture + self.selection,
        )


@dataclass
class _Run:
    """Per-call state shared by the pipeline steps."""

    generation_id: str
    request: GenerationRequest
    requested_by: str
    summary: ProfileSummary
    library: list[CompressedExercise]
    tokens: _Tokens = field(default_factory=_Tokens)
    retries: int = 0

    @property
    def session_id(self) -> str:
        return f"gen-{self.generation_id}"


class ProgramOrchestrator:
    def __init__(
        self,
        client: CompletionClient,
        platform: PlatformRepository,
        programs: ProgramRepository,
        generation_logs: GenerationLogRepository,
        conversations: ConversationRepository,
        outbox: BestEffortOutbox,
        rag: RagService | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.platform = platform
        self.programs = programs
        self.generation_logs = generation_logs
        self.conversations = conversations
        self.outbox = outbox
        self.rag = rag

        self.analyzer = ProfileAnalyzer(client, model=self.settings.openai_fast_model)
        self.architect = ProgramArchitect(
            client, model=self.settings.openai_model, max_tokens=self.settings.llm_large_max_tokens,
        )
        self.selector = ExerciseSelector(
            client, model=self.settings.openai_model, max_tokens=self.settings.llm_large_max_tokens,
        )

    # ─── Public ─────────────────────────────────────────────────────────────

    async def generate(
        self,
        request: GenerationRequest,
        requested_by: str,
        trigger: GenerationTrigger = GenerationTrigger.ADMIN_MANUAL,
    ) -> OrchestrationResult:
        generation_id = str(uuid.uuid4())
        started = time.monotonic()
        logger.info(
            f"[generation {generation_id}] starting: client={request.client_id or 'none'} "
            f"goals={request.goals} weeks={request.duration_weeks} sessions={request.sessions_per_week}"
        )

        run: _Run | None = None
        try:
            run = await self._prepare(generation_id, request, requested_by)
            best = await self._pipeline(run)
            program_id = await self._persist(run, best)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            generation_requests_total.labels(outcome="error").inc()
            self._log_attempt(
                generation_id, request, requested_by, trigger,
                status=GenerationStatus.FAILED,
                tokens=run.tokens.usage() if run else TokenUsage(),
                duration_ms=duration_ms,
                error_message=str(e) or type(e).__name__,
            )
            logger.error(f"[generation {generation_id}] failed: {e}")
            if isinstance(e, GenerationError):
                raise
            raise GenerationError(f"Program generation failed: {e}") from e

        duration_ms = int((time.monotonic() - started) * 1000)
        validation = best.validation
        generation_duration_seconds.observe(duration_ms / 1000)
        generation_requests_total.labels(outcome="passed" if validation.passed else "failed_validation").inc()
        for issue in validation.issues:
            validation_issues_total.labels(type=issue.type, category=issue.category).inc()

        tokens = run.tokens.usage()
        self._log_attempt(
            generation_id, request, requested_by, trigger,
            status=GenerationStatus.COMPLETED,
            tokens=tokens,
            duration_ms=duration_ms,
            program_id=program_id,
            output_summary={
                "program_id": program_id,
                "exercises_assigned": len(best.assignment.assignments),
                "validation_pass": validation.passed,
                "errors": len(validation.errors),
                "warnings": len(validation.warnings),
                "retries": run.retries,
            },
        )
        logger.info(
            f"[generation {generation_id}] saved program {program_id}: pass={validation.passed} "
            f"retries={run.retries} tokens={tokens.total} duration={duration_ms}ms"
        )
        return OrchestrationResult(
            program_id=program_id,
            generation_id=generation_id,
            validation=validation,
            token_usage=tokens,
            duration_ms=duration_ms,
            retries=run.retries,
        )

    # ─── Pipeline ───────────────────────────────────────────────────────────

    async def _prepare(self, generation_id: str, request: GenerationRequest, requested_by: str) -> _Run:
        profile = None
        client_name = None
        if request.client_id:
            profile = await self.platform.get_client_profile(request.client_id)
            user = await self.platform.get_user(request.client_id)
            client_name = (user.full_name if user else "") or "Client"

        summary = summarize_profile(profile, request, self.settings, client_name=client_name)
        library = compress_exercises(await self.platform.list_exercises())
        if request.assessment is not None:
            library = filter_by_difficulty_score(library, request.assessment.max_difficulty_score)
        if not library:
            raise GenerationError("No exercises available for program generation", code="GEN_002")

        return _Run(
            generation_id=generation_id,
            request=request,
            requested_by=requested_by,
            summary=summary,
            library=library,
        )

    async def _pipeline(self, run: _Run) -> Attempt:
        request, summary = run.request, run.summary

        rag_context = ""
        if self.rag is not None:
            query = (
                f"{', '.join(request.goals)} {request.duration_weeks}wk "
                f"{summary.sessions_per_week}x/wk {summary.experience_level}"
            )
            rag_context = await self.rag.context_for(query, AiFeature.PROGRAM_GENERATION.value)

        analysis = await self._step(
            run, "analysis",
            lambda extra: self.analyzer.run(summary, request, rag_context=rag_context, extra_instruction=extra),
        )
        picker = SubstitutePicker(run.library, summary.available_equipment, analysis, summary.experience_level)

        skeleton = await self._architect(run, analysis)
        assignment = await self._select(run, skeleton, analysis, picker)
        best = current = Attempt(skeleton, assignment, self._validate(run, skeleton, assignment, analysis))

        for _ in range(self.settings.generation_max_retries):
            if current.validation.passed:
                break
            errors = current.validation.errors
            step = restart_step(errors)
            run.retries += 1
            generation_retries_total.labels(step=step).inc()
            logger.info(
                f"[generation {run.generation_id}] {len(errors)} validation error(s), "
                f"dominant {dominant_category(errors)}; restarting {step} (retry {run.retries})"
            )
            try:
                if step == "architecture":
                    skeleton = await self._architect(run, analysis, issues=errors)
                    assignment = await self._select(run, skeleton, analysis, picker)
                else:
                    skeleton = current.skeleton
                    flagged = sorted({i.slot_ref for i in errors if i.slot_ref})
                    assignment = await self._select(
                        run, skeleton, analysis, picker, issues=errors, flagged_slots=flagged,
                    )
            except CompletionError as e:
                logger.warning(f"[generation {run.generation_id}] repair attempt failed: {e}")
                continue

            current = Attempt(skeleton, assignment, self._validate(run, skeleton, assignment, analysis))
            if current.error_count < best.error_count:
                best = current

        if not best.validation.passed:
            logger.warning(
                f"[generation {run.generation_id}] retries exhausted; persisting best attempt "
                f"with {best.error_count} error(s)"
            )
        return best

    async def _architect(
        self,
        run: _Run,
        analysis: ProfileAnalysis,
        issues: list[ValidationIssue] | None = None,
    ) -> ProgramSkeleton:
        return await self._step(
            run, "architecture",
            lambda extra: self.architect.run(
                analysis, run.request, run.summary, issues=issues, extra_instruction=extra,
            ),
        )

    async def _select(
        self,
        run: _Run,
        skeleton: ProgramSkeleton,
        analysis: ProfileAnalysis,
        picker: SubstitutePicker,
        issues: list[ValidationIssue] | None = None,
        flagged_slots: list[str] | None = None,
    ) -> ExerciseAssignment:
        candidates = prefilter_for_skeleton(
            run.library,
            skeleton,
            run.summary.available_equipment,
            analysis,
            self.settings.exercise_prefilter_limit,
        )
        return await self._step(
            run, "selection",
            lambda extra: self.selector.run(
                skeleton, analysis, candidates, picker,
                library=run.library,
                issues=issues,
                flagged_slots=flagged_slots,
                extra_instruction=extra,
            ),
        )

    def _validate(
        self,
        run: _Run,
        skeleton: ProgramSkeleton,
        assignment: ExerciseAssignment,
        analysis: ProfileAnalysis,
    ) -> ValidationResult:
        assessment = run.request.assessment
        return validate_program(
            skeleton,
            assignment,
            analysis,
            run.library,
            run.summary.available_equipment,
            run.summary.experience_level,
            assessment.max_difficulty_score if assessment else None,
        )

    async def _step(self, run: _Run, step: str, call: Callable[[str], Awaitable[AgentResult]]):
        """Run one generative step, re-invoking once with a corrective instruction on malformed output."""
        try:
            result = await call("")
        except MalformedOutputError as e:
            self._add_tokens(run, step, e.tokens_used)
            logger.warning(f"[generation {run.generation_id}] {step} output malformed, re-invoking: {e}")
            try:
                result = await call(CORRECTIVE_JSON_INSTRUCTION.format(reason=str(e)))
            except MalformedOutputError as retry_error:
                self._add_tokens(run, step, retry_error.tokens_used)
                raise

        self._add_tokens(run, step, result.tokens_used)
        self._record_turn(run, step, result)
        return result.output

    @staticmethod
    def _add_tokens(run: _Run, step: str, tokens: int):
        setattr(run.tokens, step, getattr(run.tokens, step) + tokens)

    # ─── Persistence and side effects ───────────────────────────────────────

    async def _persist(self, run: _Run, best: Attempt) -> str:
        request, summary = run.request, run.summary
        validation = best.validation
        draft = ProgramDraft(
            generation_id=run.generation_id,
            created_by=run.requested_by,
            name=program_name(request, summary.client_name),
            description=program_description(request, best.skeleton),
            category=[derive_program_category(request.goals).value],
            difficulty=map_difficulty(summary.experience_level),
            duration_weeks=request.duration_weeks,
            sessions_per_week=request.sessions_per_week,
            skeleton=best.skeleton,
            assignment=best.assignment,
            is_public=request.is_public,
            generation_params={
                "request": request.model_dump(mode="json"),
                "validation": validation.model_dump(mode="json", by_alias=True),
                "token_usage": run.tokens.usage().model_dump(),
                "substitution_notes": best.assignment.substitution_notes,
            },
        )
        program_id = await self.programs.save(draft)

        if request.client_id:
            try:
                await self.programs.assign(
                    program_id, request.client_id, run.requested_by, request.duration_weeks,
                )
            except Exception as e:
                logger.error(f"[generation {run.generation_id}] failed to auto-assign program {program_id}: {e}")
        return program_id

    def _record_turn(self, run: _Run, step: str, result: AgentResult):
        conversations = self.conversations
        rag = self.rag
        metadata = {"step": step, "generation_id": run.generation_id, "client_id": run.request.client_id}
        content = result.output.model_dump_json()

        async def save():
            message_id = await conversations.save(
                user_id=run.requested_by,
                feature=AiFeature.PROGRAM_GENERATION.value,
                session_id=run.session_id,
                role="assistant",
                content=content,
                metadata=metadata,
                tokens_output=result.tokens_used,
            )
            if rag is not None:
                self.outbox.submit("embed_message", lambda: rag.embed_message(message_id))

        self.outbox.submit("conversation_turn", save)

    def _log_attempt(
        self,
        generation_id: str,
        request: GenerationRequest,
        requested_by: str,
        trigger: GenerationTrigger,
        *,
        status: GenerationStatus,
        tokens: TokenUsage,
        duration_ms: int,
        program_id: str | None = None,
        output_summary: dict | None = None,
        error_message: str | None = None,
    ):
        # An assessment-driven request records the assessment's own trigger
        trigger_value = request.assessment.generation_trigger if request.assessment else trigger.value
        params = request.model_dump(mode="json")

        self.outbox.submit("generation_log", lambda: self.generation_logs.record(
            generation_id=generation_id,
            requested_by=requested_by,
            status=status,
            input_params=params,
            client_id=request.client_id,
            program_id=program_id,
            output_summary=output_summary,
            error_message=error_message,
            model_used=f"{self.settings.openai_fast_model}+{self.settings.openai_model}",
            tokens_used=tokens.total,
            duration_ms=duration_ms,
            generation_trigger=trigger_value,
        ))
