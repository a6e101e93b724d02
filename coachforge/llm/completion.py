"""Retrying completion client with structured output, streaming and tool use.

The provider raises ``TransientProviderError`` for rate limits, overloads,
5xx responses and network timeouts; only those are retried here. Anything
else (other 4xx, unparseable or schema-violating output) surfaces to the
caller immediately.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from coachforge.config.settings import Settings, get_settings
from coachforge.core.exceptions import MalformedOutputError, TransientProviderError
from coachforge.core.metrics import llm_transient_retries_total
from coachforge.llm.base import LLMConfig, LLMProvider, LLMResponse, Message, ToolSpec
from coachforge.schemas.tools import ToolFailure

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")


# ─── Stream events ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolStart:
    call_id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class ToolFinished:
    call_id: str
    name: str
    result: BaseModel

    @property
    def is_error(self) -> bool:
        return isinstance(self.result, ToolFailure)


@dataclass(frozen=True)
class StreamUsage:
    input_tokens: int
    output_tokens: int

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[BaseModel]]


# ─── JSON extraction ────────────────────────────────────────────────────────

def iter_json_objects(text: str) -> Iterator[str]:
    """Yield every balanced top-level ``{...}`` fragment in ``text``, in order.

    Braces inside JSON string literals are ignored, so prose around the
    object or several objects in one reply are handled.
    """
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start:i + 1]


def parse_structured(response: LLMResponse, schema: type[M]) -> M:
    """Validate the provider's structured output, else the first valid fragment."""
    last_error = "no JSON object found in response"

    candidates: list[Any] = []
    if response.structured_data is not None:
        candidates.append(response.structured_data)
    for fragment in iter_json_objects(response.content):
        try:
            candidates.append(json.loads(fragment))
        except json.JSONDecodeError as e:
            last_error = f"invalid JSON: {e.msg}"

    for candidate in candidates:
        try:
            return schema.model_validate(candidate)
        except PydanticValidationError as e:
            last_error = f"schema violation: {e.error_count()} error(s); {e.errors()[0]['msg']}"

    raise MalformedOutputError(
        f"{schema.__name__} could not be parsed ({last_error})",
        raw_content=response.content,
        tokens_used=response.total_tokens,
    )


# ─── Client ─────────────────────────────────────────────────────────────────

class CompletionClient:
    """Thin retrying wrapper over an ``LLMProvider``."""

    def __init__(
        self,
        provider: LLMProvider,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.settings = settings or get_settings()
        self._sleep = sleep

    async def _backoff(self, attempt: int, error: TransientProviderError, operation: str):
        delay = self.settings.llm_retry_base_delay * (2 ** attempt)
        logger.warning(
            f"{operation} attempt {attempt + 1} failed with transient error "
            f"({error}); retrying in {delay:.1f}s"
        )
        llm_transient_retries_total.inc()
        await self._sleep(delay)

    async def _with_retry(self, call: Callable[[], Awaitable[T]], operation: str) -> T:
        attempts = self.settings.llm_max_retries + 1
        for attempt in range(attempts):
            try:
                return await call()
            except TransientProviderError as e:
                if attempt == attempts - 1:
                    raise
                await self._backoff(attempt, e, operation)
        raise AssertionError("unreachable")

    async def complete_structured(
        self,
        system: str,
        user: str,
        schema: type[M],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.4,
    ) -> tuple[M, int]:
        """Single-shot completion parsed into ``schema``.

        Returns the validated model and the tokens consumed. Raises
        ``MalformedOutputError`` when no fragment of the reply validates.
        """
        config = LLMConfig(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens or self.settings.llm_default_max_tokens,
            json_schema=schema.model_json_schema(),
        )
        messages = [
            Message(role="system", content=system),
            Message(role="user", content=user + "\n\nYou MUST respond with valid JSON. Output ONLY the JSON object."),
        ]
        response = await self._with_retry(
            lambda: self.provider.chat(messages, config),
            f"structured {schema.__name__}",
        )
        return parse_structured(response, schema), response.total_tokens

    async def stream_text(
        self,
        system: str,
        messages: list[Message],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[TextDelta | StreamUsage]:
        """Yield text deltas, then exactly one ``StreamUsage``.

        A transient failure is retried only while nothing has been yielded;
        once output has reached the caller the error propagates.
        """
        config = LLMConfig(model=model, max_tokens=max_tokens or self.settings.llm_default_max_tokens)
        conversation = [Message(role="system", content=system), *messages]
        attempts = self.settings.llm_max_retries + 1

        for attempt in range(attempts):
            emitted = False
            try:
                async for chunk in self.provider.chat_stream(conversation, config):
                    if chunk.content:
                        emitted = True
                        yield TextDelta(chunk.content)
                    if chunk.done:
                        usage = chunk.usage or {}
                        yield StreamUsage(
                            input_tokens=usage.get("prompt_tokens") or 0,
                            output_tokens=usage.get("completion_tokens") or 0,
                        )
                return
            except TransientProviderError as e:
                if emitted or attempt == attempts - 1:
                    raise
                await self._backoff(attempt, e, "stream")

    async def run_tools(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolSpec],
        executor: ToolExecutor,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        max_rounds: int | None = None,
    ) -> AsyncIterator[TextDelta | ToolStart | ToolFinished | StreamUsage]:
        """Multi-turn tool loop.

        Each round sends the conversation with the tool catalogue; requested
        tools run through ``executor`` and their results are appended. The
        loop ends when the model stops calling tools or after ``max_rounds``.
        A tool that raises yields a ``ToolFailure`` result and the loop goes on.
        """
        config = LLMConfig(
            model=model,
            max_tokens=max_tokens or self.settings.program_chat_max_tokens,
            tools=tools,
        )
        conversation = [Message(role="system", content=system), *messages]
        rounds = max_rounds or self.settings.chat_max_tool_rounds
        input_tokens = output_tokens = 0

        for round_number in range(rounds):
            response = await self._with_retry(
                lambda: self.provider.chat(list(conversation), config),
                f"tool round {round_number + 1}",
            )
            input_tokens += response.usage.get("prompt_tokens") or 0
            output_tokens += response.usage.get("completion_tokens") or 0

            if response.content:
                yield TextDelta(response.content)
            if not response.tool_calls:
                break

            conversation.append(Message(
                role="assistant",
                content=response.content,
                tool_calls=response.tool_calls,
            ))
            for call in response.tool_calls:
                yield ToolStart(call_id=call.id, name=call.name, arguments=call.arguments)
                try:
                    result = await executor(call.name, call.arguments)
                except Exception as e:
                    logger.warning(f"Tool {call.name} failed: {e}")
                    result = ToolFailure(tool=call.name, error=str(e) or "Tool execution failed")
                yield ToolFinished(call_id=call.id, name=call.name, result=result)
                conversation.append(Message(
                    role="tool",
                    content=result.model_dump_json(),
                    tool_call_id=call.id,
                ))
        else:
            logger.info(f"Tool loop stopped after {rounds} rounds")

        yield StreamUsage(input_tokens=input_tokens, output_tokens=output_tokens)
