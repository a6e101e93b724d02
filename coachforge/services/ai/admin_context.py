"""Platform snapshot injected into the admin assistant's system prompt.

Sections are built concurrently and each one may fail on its own. The whole
build races a timeout; when it loses, a fallback note is used so the chat
still answers. Fresh snapshots are cached for ``admin_context_ttl_seconds``.
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone

from coachforge.config.settings import Settings, get_settings
from coachforge.repositories.platform_repository import PlatformRepository

logger = logging.getLogger(__name__)

FALLBACK_CONTEXT = "Platform data is temporarily unavailable. Answer from general knowledge and say so."


class AdminContextBuilder:
    def __init__(
        self,
        platform: PlatformRepository,
        settings: Settings | None = None,
        clock=time.monotonic,
    ):
        self.platform = platform
        self.settings = settings or get_settings()
        self._clock = clock
        self._cached: str | None = None
        self._cached_at = 0.0

    async def get(self) -> str:
        """Cached snapshot, or a fresh one bounded by the context timeout."""
        now = self._clock()
        if self._cached is not None and now - self._cached_at < self.settings.admin_context_ttl_seconds:
            return self._cached
        try:
            async with asyncio.timeout(self.settings.admin_context_timeout_seconds):
                context = await self.build()
        except TimeoutError:
            logger.warning("Admin context build timed out; using fallback")
            return FALLBACK_CONTEXT
        if context == FALLBACK_CONTEXT:
            return context
        self._cached = context
        self._cached_at = now
        return context

    def invalidate(self):
        self._cached = None

    async def build(self) -> str:
        now = datetime.now(timezone.utc)
        sections = await asyncio.gather(
            self._overview(now),
            self._programs(),
            self._recent_activity(now),
            self._ai_generation(),
            return_exceptions=True,
        )
        parts = []
        for section in sections:
            if isinstance(section, Exception):
                logger.warning(f"Admin context section failed: {section}")
                continue
            parts.append(section)
        return "\n\n".join(parts) or FALLBACK_CONTEXT

    async def _overview(self, now: datetime) -> str:
        start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        total = await self.platform.count_clients()
        new_this_month = await self.platform.clients_created_since(start_of_month)
        return "\n".join([
            "=== PLATFORM OVERVIEW ===",
            f"Total Clients: {total} ({len(new_this_month)} new this month)",
        ])

    async def _programs(self) -> str:
        stats = await self.platform.program_assignment_stats()
        lines = ["=== PROGRAMS ===", f"Total Active Programs: {len(stats)}"]
        for name, total, active in stats:
            lines.append(f"  {name}: {total} total, {active} active")
        return "\n".join(lines)

    async def _recent_activity(self, now: datetime) -> str:
        signups = await self.platform.clients_created_since(now - timedelta(days=7))
        names = ", ".join(u.full_name for u in signups) or "None"
        return "\n".join(["=== RECENT ACTIVITY (last 7 days) ===", f"New Signups: {names}"])

    async def _ai_generation(self) -> str:
        stats = await self.platform.generation_stats()
        if not stats["total"]:
            return "=== AI GENERATION ===\nNo AI generations recorded yet."
        return "\n".join([
            "=== AI GENERATION ===",
            f"Total: {stats['total']} ({stats['completed']} successful, {stats['failed']} failed)",
            f"Total Tokens: {stats['tokens']:,}",
        ])
