"""Tables for AI jobs, their chunk logs, generation logs and conversation history."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import relationship

from coachforge.db.database import Base
from coachforge.models.enums import JobStatus


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AiJob(Base):
    """Durable record for one background AI execution.

    ``chunk_count`` is the next free chunk index. It is bumped in the same
    transaction that inserts a chunk, which keeps indices gapless even when
    two writers race on one job.
    """

    __tablename__ = "ai_jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_type = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    input = Column(JSONB, nullable=False, default=dict)
    result = Column(JSONB, nullable=True)
    error = Column(Text, nullable=True)
    user_id = Column(String(64), nullable=False, index=True)
    chunk_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    chunks = relationship(
        "AiJobChunk",
        back_populates="job",
        order_by="AiJobChunk.index",
        cascade="all, delete-orphan",
    )


class AiJobChunk(Base):
    __tablename__ = "ai_job_chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), ForeignKey("ai_jobs.id", ondelete="CASCADE"), nullable=False)
    index = Column(Integer, nullable=False)
    chunk_type = Column(String(32), nullable=False)
    data = Column(JSONB, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    job = relationship("AiJob", back_populates="chunks")

    __table_args__ = (
        UniqueConstraint("job_id", "index", name="uq_ai_job_chunk_index"),
    )


class AiGenerationLog(Base):
    """One row per top-level generation attempt (program pipeline or chat turn)."""

    __tablename__ = "ai_generation_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    program_id = Column(String(36), nullable=True)
    client_id = Column(String(64), nullable=True)
    requested_by = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    input_params = Column(JSONB, nullable=False, default=dict)
    output_summary = Column(JSONB, nullable=True)
    error_message = Column(Text, nullable=True)
    model_used = Column(String(100), nullable=True)
    tokens_used = Column(Integer, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    generation_trigger = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class AiConversationMessage(Base):
    __tablename__ = "ai_conversation_history"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    feature = Column(String(50), nullable=False, index=True)
    session_id = Column(String(128), nullable=False, index=True)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSONB, nullable=False, default=dict)
    tokens_input = Column(Integer, nullable=True)
    tokens_output = Column(Integer, nullable=True)
    model_used = Column(String(100), nullable=True)
    # Stored as float[]; similarity search casts to pgvector's vector type.
    embedding = Column(ARRAY(Float), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    feedback = relationship("AiFeedback", back_populates="message", cascade="all, delete-orphan")


class AiFeedback(Base):
    __tablename__ = "ai_feedback"

    id = Column(String(36), primary_key=True, default=_uuid)
    message_id = Column(
        String(36),
        ForeignKey("ai_conversation_history.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False)
    accuracy_rating = Column(Integer, nullable=True)
    relevance_rating = Column(Integer, nullable=True)
    helpfulness_rating = Column(Integer, nullable=True)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    message = relationship("AiConversationMessage", back_populates="feedback")


class AiOutcome(Base):
    """A recommendation the assistant made, kept so its outcome can be scored later."""

    __tablename__ = "ai_outcome_tracking"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    exercise_id = Column(String(36), nullable=True)
    program_id = Column(String(36), nullable=True)
    conversation_message_id = Column(String(36), nullable=True)
    recommendation_type = Column(String(32), nullable=False)
    predicted_value = Column(JSONB, nullable=False, default=dict)
    actual_value = Column(JSONB, nullable=True)
    accuracy_score = Column(Float, nullable=True)
    outcome_positive = Column(Boolean, nullable=True)
    measured_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
