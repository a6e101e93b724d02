"""Provider-neutral types for chat completion APIs."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class ToolSpec:
    """A tool the model may call; ``parameters`` is a JSON schema."""
    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class Message:
    role: Literal["system", "user", "assistant", "tool"]
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None


@dataclass
class LLMConfig:
    model: str | None = None
    temperature: float = 0.7
    max_tokens: int | None = None
    json_schema: dict[str, Any] | None = None
    tools: list[ToolSpec] | None = None


@dataclass
class LLMResponse:
    content: str
    structured_data: dict[str, Any] | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: dict[str, int | None] = field(default_factory=dict)
    model: str | None = None
    finish_reason: str | None = None

    @property
    def total_tokens(self) -> int:
        total = self.usage.get("total_tokens")
        if total is not None:
            return total
        return (self.usage.get("prompt_tokens") or 0) + (self.usage.get("completion_tokens") or 0)


@dataclass
class StreamChunk:
    content: str
    done: bool = False
    usage: dict[str, int | None] | None = None


class LLMProvider(ABC):
    """Interface implemented by every completion backend."""

    @abstractmethod
    async def chat(self, messages: list[Message], config: LLMConfig) -> LLMResponse:
        """Single request/response completion."""

    @abstractmethod
    def chat_stream(self, messages: list[Message], config: LLMConfig) -> AsyncIterator[StreamChunk]:
        """Incremental completion. The last chunk carries usage when available."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Whether the backend is reachable."""

    async def close(self):
        """Release network resources."""
