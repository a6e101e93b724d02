"""Best-effort side effects that must never fail the primary operation.

Conversation saves, embeddings and generation logs are submitted here by
name. Each runs in the background with exponential backoff and is dropped
with a warning once ``outbox_max_attempts`` is exhausted.
"""
import asyncio
import logging
from typing import Awaitable, Callable

from coachforge.config.settings import Settings, get_settings
from coachforge.core.metrics import outbox_events_total

logger = logging.getLogger(__name__)

SideEffect = Callable[[], Awaitable[object]]


class BestEffortOutbox:
    def __init__(
        self,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = settings or get_settings()
        self.max_attempts = settings.outbox_max_attempts
        self.base_delay = settings.outbox_base_delay
        self._sleep = sleep
        self._pending: set[asyncio.Task] = set()

    def submit(self, name: str, effect: SideEffect) -> asyncio.Task:
        """Schedule ``effect``; the caller does not wait for it."""
        task = asyncio.create_task(self._deliver(name, effect), name=f"outbox:{name}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, name: str, effect: SideEffect) -> bool:
        for attempt in range(self.max_attempts):
            try:
                await effect()
            except Exception as e:
                if attempt == self.max_attempts - 1:
                    logger.warning(f"Outbox event {name} dropped after {self.max_attempts} attempts: {e}")
                    outbox_events_total.labels(name=name, outcome="dropped").inc()
                    return False
                outbox_events_total.labels(name=name, outcome="retried").inc()
                await self._sleep(self.base_delay * (2 ** attempt))
            else:
                outbox_events_total.labels(name=name, outcome="delivered").inc()
                return True
        return False

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for everything submitted so far (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
