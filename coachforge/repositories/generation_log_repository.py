from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coachforge.models.ai import AiGenerationLog
from coachforge.models.enums import GenerationStatus


class GenerationLogRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(
        self,
        *,
        generation_id: str,
        requested_by: str,
        status: GenerationStatus,
        input_params: dict[str, Any],
        client_id: str | None = None,
        program_id: str | None = None,
        output_summary: dict[str, Any] | None = None,
        error_message: str | None = None,
        model_used: str | None = None,
        tokens_used: int | None = None,
        duration_ms: int | None = None,
        generation_trigger: str | None = None,
    ) -> None:
        """Insert or complete the log row for ``generation_id``.

        Written once per attempt; a retried outbox delivery updates the same
        row instead of adding a second one.
        """
        values = {
            "program_id": program_id,
            "client_id": client_id,
            "requested_by": requested_by,
            "status": status.value,
            "input_params": input_params,
            "output_summary": output_summary,
            "error_message": error_message,
            "model_used": model_used,
            "tokens_used": tokens_used,
            "duration_ms": duration_ms,
            "generation_trigger": generation_trigger,
            "completed_at": datetime.now(timezone.utc) if status != GenerationStatus.GENERATING else None,
        }
        async with self._session_factory.begin() as session:
            result = await session.execute(
                update(AiGenerationLog).where(AiGenerationLog.id == generation_id).values(**values)
            )
            if result.rowcount == 0:
                session.add(AiGenerationLog(id=generation_id, **values))
