"""Shared plumbing for the generative pipeline steps."""
import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel

from coachforge.core.metrics import llm_tokens_total
from coachforge.llm.completion import CompletionClient

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class AgentResult(Generic[M]):
    output: M
    tokens_used: int


class Agent(Generic[M]):
    """One structured-output call followed by a deterministic guard pass.

    Subclasses set ``step``, ``system_prompt`` and ``schema``. Guards return
    a new object rather than mutate the model output.
    """

    step: str
    system_prompt: str
    schema: type[M]

    def __init__(self, client: CompletionClient, model: str | None = None, max_tokens: int | None = None):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def _complete(self, user_message: str) -> tuple[M, int]:
        output, tokens = await self.client.complete_structured(
            self.system_prompt,
            user_message,
            self.schema,
            model=self.model,
            max_tokens=self.max_tokens,
        )
        llm_tokens_total.labels(step=self.step).inc(tokens)
        logger.info(f"[{self.step}] model call complete ({tokens} tokens)")
        return output, tokens
