"""Background AI jobs: creation, polling and server-sent event streaming."""
import asyncio
import json

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from fastapi.responses import StreamingResponse

from coachforge.api.dependencies import get_container, get_user_id
from coachforge.core.exceptions import NotFoundError
from coachforge.models.ai import AiJob
from coachforge.models.enums import ChunkType, JobStatus, JobType
from coachforge.schemas.jobs import (
    AdminChatJobCreate,
    AiCoachJobCreate,
    ChunkListResponse,
    ChunkResponse,
    JobAccepted,
    JobResponse,
    ProgramChatJobCreate,
    ProgramGenerationJobCreate,
)
from coachforge.services.container import ServiceContainer

router = APIRouter()

SSE_POLL_INTERVAL = 0.5


async def _create_job(
    container: ServiceContainer,
    background_tasks: BackgroundTasks,
    job_type: JobType,
    surface: str,
    payload,
    user_id: str,
) -> JobAccepted:
    await container.rate_limiter.check(surface, user_id)
    job = await container.jobs.create(job_type, payload.model_dump(mode="json"), user_id)
    background_tasks.add_task(container.runtime.run, job.id)
    return JobAccepted(job_id=job.id, status=job.status)


async def _get_owned_job(container: ServiceContainer, job_id: str, user_id: str) -> AiJob:
    job = await container.jobs.get(job_id, user_id=user_id)
    if job is None:
        raise NotFoundError("job", f"Job {job_id} not found")
    return job


@router.post("/program-generation", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_program_generation_job(
    payload: ProgramGenerationJobCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    return await _create_job(
        container, background_tasks, JobType.PROGRAM_GENERATION, "program_generation", payload, user_id,
    )


@router.post("/program-chat", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_program_chat_job(
    payload: ProgramChatJobCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    return await _create_job(
        container, background_tasks, JobType.PROGRAM_CHAT, "program_chat", payload, user_id,
    )


@router.post("/admin-chat", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_admin_chat_job(
    payload: AdminChatJobCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    return await _create_job(
        container, background_tasks, JobType.ADMIN_CHAT, "admin_chat", payload, user_id,
    )


@router.post("/ai-coach", response_model=JobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_ai_coach_job(
    payload: AiCoachJobCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    return await _create_job(
        container, background_tasks, JobType.AI_COACH, "ai_coach", payload, user_id,
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    return await _get_owned_job(container, job_id, user_id)


@router.get("/{job_id}/chunks", response_model=ChunkListResponse, response_model_by_alias=True)
async def list_job_chunks(
    job_id: str,
    after: int = Query(-1, ge=-1, description="Return chunks with index greater than this"),
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    job = await _get_owned_job(container, job_id, user_id)
    chunks = await container.jobs.list_chunks(job_id, after=after)
    return ChunkListResponse(
        job_id=job.id,
        status=job.status,
        chunks=[ChunkResponse.model_validate(c) for c in chunks],
    )


def format_sse(chunk: ChunkResponse) -> str:
    payload = chunk.model_dump(mode="json", by_alias=True)
    return f"id: {chunk.index}\nevent: {chunk.chunk_type}\ndata: {json.dumps(payload)}\n\n"


@router.get("/{job_id}/events")
async def stream_job_events(
    request: Request,
    job_id: str,
    after: int = Query(-1, ge=-1),
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """
    Replay the chunk log after ``after`` and then tail it.

    The stream ends after a terminal chunk, or when the job is terminal and
    nothing is left to send. Clients resume with the last ``id`` they saw.
    """
    await _get_owned_job(container, job_id, user_id)
    terminal_types = {ChunkType.DONE.value, ChunkType.ERROR.value}

    async def events():
        cursor = after
        while not await request.is_disconnected():
            chunks = await container.jobs.list_chunks(job_id, after=cursor)
            for chunk in chunks:
                cursor = chunk.index
                yield format_sse(ChunkResponse.model_validate(chunk))
                if chunk.chunk_type in terminal_types:
                    return
            if not chunks:
                job = await container.jobs.get(job_id)
                if job is None or JobStatus(job.status).is_terminal:
                    return
                await asyncio.sleep(SSE_POLL_INTERVAL)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
