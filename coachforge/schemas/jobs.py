"""API schemas for AI jobs and their chunk logs."""
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from coachforge.schemas.coach import ProgramContext, SetLog
from coachforge.schemas.generation import GenerationRequest


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1, max_length=20000)


class ProgramChatJobCreate(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    session_id: str | None = None


class AdminChatJobCreate(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    model: Literal["fast", "full"] | None = None
    session_id: str | None = None


class ProgramGenerationJobCreate(BaseModel):
    request: GenerationRequest


class AiCoachJobCreate(BaseModel):
    exercise_id: str = Field(min_length=1)
    current_session: list[SetLog] | None = None
    program_context: ProgramContext | None = None


class JobAccepted(BaseModel):
    job_id: str
    status: str


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_type: str
    status: str
    input: dict[str, Any]
    result: dict[str, Any] | None = None
    error: str | None = None
    user_id: str
    created_at: datetime
    updated_at: datetime


class ChunkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    index: int
    chunk_type: str = Field(serialization_alias="type")
    data: dict[str, Any]
    created_at: datetime


class ChunkListResponse(BaseModel):
    job_id: str
    status: str
    chunks: list[ChunkResponse]
