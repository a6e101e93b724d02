"""Durable job records and their append-only chunk logs.

Every write opens its own transaction so a chunk is visible to pollers as
soon as ``append_chunk`` returns. Chunk indices come from the job row's
``chunk_count``, incremented by a conditional UPDATE that also refuses writes
once the job is terminal; the row lock it takes serializes racing writers.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coachforge.models.ai import AiJob, AiJobChunk
from coachforge.models.enums import ChunkType, JobStatus, JobType

TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class JobRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, job_type: JobType, input: dict[str, Any], user_id: str) -> AiJob:
        async with self._session_factory.begin() as session:
            job = AiJob(
                job_type=job_type.value,
                status=JobStatus.PENDING.value,
                input=input,
                user_id=user_id,
                chunk_count=0,
            )
            session.add(job)
            await session.flush()
            return job

    async def get(self, job_id: str, user_id: str | None = None) -> AiJob | None:
        async with self._session_factory() as session:
            query = select(AiJob).where(AiJob.id == job_id)
            if user_id is not None:
                query = query.where(AiJob.user_id == user_id)
            result = await session.execute(query)
            return result.scalar_one_or_none()

    async def claim(self, job_id: str, to_status: JobStatus) -> AiJob | None:
        """Move a pending job to ``to_status``; None if someone else got there first."""
        async with self._session_factory.begin() as session:
            result = await session.execute(
                update(AiJob)
                .where(AiJob.id == job_id, AiJob.status == JobStatus.PENDING.value)
                .values(status=to_status.value)
                .returning(AiJob)
            )
            return result.scalar_one_or_none()

    async def _reserve_index(self, session: AsyncSession, job_id: str, **values) -> int | None:
        result = await session.execute(
            update(AiJob)
            .where(AiJob.id == job_id, AiJob.status.not_in(TERMINAL_STATUSES))
            .values(chunk_count=AiJob.chunk_count + 1, **values)
            .returning(AiJob.chunk_count)
        )
        count = result.scalar_one_or_none()
        return None if count is None else count - 1

    async def append_chunk(self, job_id: str, chunk_type: ChunkType, data: dict[str, Any]) -> int | None:
        """Append a non-terminal chunk; returns its index, or None once the job is terminal."""
        async with self._session_factory.begin() as session:
            index = await self._reserve_index(session, job_id)
            if index is None:
                return None
            session.add(AiJobChunk(job_id=job_id, index=index, chunk_type=chunk_type.value, data=data))
            return index

    async def finish(
        self,
        job_id: str,
        status: JobStatus,
        chunk_type: ChunkType,
        data: dict[str, Any],
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> int | None:
        """Write the terminal chunk and flip the job status in one transaction."""
        async with self._session_factory.begin() as session:
            index = await self._reserve_index(
                session, job_id, status=status.value, result=result, error=error,
            )
            if index is None:
                return None
            session.add(AiJobChunk(job_id=job_id, index=index, chunk_type=chunk_type.value, data=data))
            return index

    async def list_chunks(self, job_id: str, after: int = -1) -> list[AiJobChunk]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AiJobChunk)
                .where(AiJobChunk.job_id == job_id, AiJobChunk.index > after)
                .order_by(AiJobChunk.index)
            )
            return list(result.scalars().all())
