"""Background job execution.

A job is claimed once (``pending`` to ``processing`` or ``streaming``), its
handler emits chunks through a ``ChunkLog``, and the runtime writes exactly
one terminal chunk: ``done`` when the handler returns, ``error`` when it
raises. Status and terminal chunk are written in one transaction, so a job
never reports ``completed`` without its ``done`` chunk.
"""
import logging
from typing import Any, Awaitable, Callable

from coachforge.core.logging import add_log_context, clear_log_context
from coachforge.core.metrics import job_chunks_total
from coachforge.models.ai import AiJob
from coachforge.models.enums import ChunkType, JobStatus, JobType
from coachforge.repositories.job_repository import JobRepository

logger = logging.getLogger(__name__)

STREAMING_JOB_TYPES = frozenset({JobType.PROGRAM_CHAT, JobType.ADMIN_CHAT, JobType.AI_COACH})


class ChunkLog:
    """Append-only emitter for one job's chunks."""

    def __init__(self, jobs: JobRepository, job_id: str, job_type: str):
        self.jobs = jobs
        self.job_id = job_id
        self.job_type = job_type
        self.closed = False

    async def emit(self, chunk_type: ChunkType, data: dict[str, Any] | None = None) -> int | None:
        if chunk_type.is_terminal:
            raise ValueError(f"{chunk_type.value} chunks are written by the runtime")
        index = await self.jobs.append_chunk(self.job_id, chunk_type, data or {})
        if index is None:
            self.closed = True
            logger.warning(f"Job {self.job_id} is terminal; dropped {chunk_type.value} chunk")
            return None
        job_chunks_total.labels(job_type=self.job_type, chunk_type=chunk_type.value).inc()
        return index

    async def delta(self, text: str) -> int | None:
        return await self.emit(ChunkType.DELTA, {"text": text})

    async def done(self, result: dict[str, Any] | None = None) -> int | None:
        index = await self.jobs.finish(
            self.job_id, JobStatus.COMPLETED, ChunkType.DONE, result or {}, result=result,
        )
        self._closed(ChunkType.DONE, index)
        return index

    async def fail(self, message: str) -> int | None:
        index = await self.jobs.finish(
            self.job_id, JobStatus.FAILED, ChunkType.ERROR, {"message": message}, error=message,
        )
        self._closed(ChunkType.ERROR, index)
        return index

    def _closed(self, chunk_type: ChunkType, index: int | None):
        self.closed = True
        if index is not None:
            job_chunks_total.labels(job_type=self.job_type, chunk_type=chunk_type.value).inc()


JobHandler = Callable[[AiJob, ChunkLog], Awaitable[dict[str, Any] | None]]


class JobRuntime:
    def __init__(self, jobs: JobRepository, handlers: dict[JobType, JobHandler]):
        self.jobs = jobs
        self.handlers = handlers

    async def run(self, job_id: str) -> bool:
        """Execute a pending job. Returns False if it was missing or already claimed."""
        job = await self.jobs.get(job_id)
        if job is None:
            logger.warning(f"Job {job_id} not found")
            return False

        job_type = JobType(job.job_type)
        to_status = JobStatus.STREAMING if job_type in STREAMING_JOB_TYPES else JobStatus.PROCESSING
        claimed = await self.jobs.claim(job_id, to_status)
        if claimed is None:
            logger.info(f"Job {job_id} already claimed; skipping")
            return False

        log = ChunkLog(self.jobs, job_id, job_type.value)
        handler = self.handlers.get(job_type)
        if handler is None:
            await log.fail(f"No handler for job type {job_type.value}")
            return True

        add_log_context(job_id=job_id, job_type=job_type.value)
        logger.info(f"Job {job_id} ({job_type.value}) started")
        try:
            result = await handler(claimed, log)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Job {job_id} ({job_type.value}) failed: {message}")
            await log.fail(message)
        else:
            await log.done(result)
            logger.info(f"Job {job_id} ({job_type.value}) completed")
        finally:
            clear_log_context()
        return True
