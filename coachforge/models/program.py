"""Generated program tables."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import relationship

from coachforge.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Program(Base):
    __tablename__ = "programs"

    id = Column(String(36), primary_key=True, default=_uuid)
    # Persisting the same generation twice returns the existing row.
    generation_id = Column(String(36), nullable=True, unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(ARRAY(String), nullable=False, default=list)
    difficulty = Column(String(20), nullable=False)
    duration_weeks = Column(Integer, nullable=False)
    sessions_per_week = Column(Integer, nullable=False)
    split_type = Column(String(32), nullable=True)
    periodization = Column(String(32), nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    is_ai_generated = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    ai_generation_params = Column(JSONB, nullable=True)
    created_by = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    exercises = relationship(
        "ProgramExercise",
        back_populates="program",
        order_by=lambda: [
            ProgramExercise.week_number,
            ProgramExercise.day_of_week,
            ProgramExercise.order_index,
        ],
        cascade="all, delete-orphan",
    )
    assignments = relationship("ProgramAssignment", back_populates="program", cascade="all, delete-orphan")


class ProgramExercise(Base):
    __tablename__ = "program_exercises"

    id = Column(Integer, primary_key=True, autoincrement=True)
    program_id = Column(String(36), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    exercise_id = Column(String(36), nullable=False)
    slot_id = Column(String(32), nullable=False)
    week_number = Column(Integer, nullable=False)
    day_of_week = Column(Integer, nullable=False)
    order_index = Column(Integer, nullable=False)
    sets = Column(Integer, nullable=False)
    reps = Column(String(32), nullable=False)
    rest_seconds = Column(Integer, nullable=True)
    rpe_target = Column(Float, nullable=True)
    tempo = Column(String(16), nullable=True)
    group_tag = Column(String(16), nullable=True)
    technique = Column(String(20), nullable=False, default="straight_set")
    notes = Column(Text, nullable=True)

    program = relationship("Program", back_populates="exercises")


class ProgramAssignment(Base):
    __tablename__ = "program_assignments"

    id = Column(String(36), primary_key=True, default=_uuid)
    program_id = Column(String(36), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    assigned_by = Column(String(64), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="active")
    notes = Column(Text, nullable=True)
    current_week = Column(Integer, nullable=False, default=1)
    total_weeks = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    program = relationship("Program", back_populates="assignments")
