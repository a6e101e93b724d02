"""Platform tables this service reads but does not own.

Users, client questionnaires and the exercise library are maintained by the
wider coaching platform; the generation pipeline only queries them.
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB

from coachforge.db.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="client", index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ClientProfile(Base):
    __tablename__ = "client_profiles"

    user_id = Column(String(64), primary_key=True)
    goals = Column(ARRAY(String), nullable=True)
    experience_level = Column(String(20), nullable=True)
    date_of_birth = Column(String(10), nullable=True)  # birth year or ISO date
    gender = Column(String(20), nullable=True)
    sport = Column(String(100), nullable=True)
    weight_kg = Column(Float, nullable=True)
    height_cm = Column(Float, nullable=True)
    weight_unit = Column(String(3), nullable=True)  # "kg" or "lbs"
    training_years = Column(Float, nullable=True)
    movement_confidence = Column(String(32), nullable=True)
    injuries = Column(ARRAY(String), nullable=True)
    injury_details = Column(Text, nullable=True)
    available_equipment = Column(ARRAY(String), nullable=True)
    preferred_session_minutes = Column(Integer, nullable=True)
    preferred_training_days = Column(Integer, nullable=True)
    preferred_day_names = Column(ARRAY(Integer), nullable=True)
    preferred_techniques = Column(ARRAY(String), nullable=True)
    time_efficiency_preference = Column(String(32), nullable=True)
    exercise_likes = Column(Text, nullable=True)
    exercise_dislikes = Column(Text, nullable=True)
    training_background = Column(Text, nullable=True)
    sleep_hours = Column(Float, nullable=True)
    stress_level = Column(String(20), nullable=True)
    occupation_activity_level = Column(String(32), nullable=True)
    additional_notes = Column(Text, nullable=True)


class Exercise(Base):
    __tablename__ = "exercises"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    category = Column(ARRAY(String), nullable=True)
    difficulty = Column(String(20), nullable=True)
    difficulty_score = Column(Float, nullable=True)
    muscle_group = Column(String(50), nullable=True)
    movement_pattern = Column(String(20), nullable=True)
    primary_muscles = Column(ARRAY(String), nullable=True)
    secondary_muscles = Column(ARRAY(String), nullable=True)
    force_type = Column(String(10), nullable=True)
    laterality = Column(String(12), nullable=True)
    equipment_required = Column(ARRAY(String), nullable=True)
    is_bodyweight = Column(Boolean, nullable=True)
    is_compound = Column(Boolean, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class ExerciseProgress(Base):
    """One logged session of one exercise. Weights are stored in kilograms."""

    __tablename__ = "exercise_progress"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    exercise_id = Column(String(36), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=False)
    sets_completed = Column(Integer, nullable=True)
    reps_completed = Column(Integer, nullable=True)
    weight_kg = Column(Float, nullable=True)
    rpe = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    set_details = Column(JSONB, nullable=True)


class AssessmentResult(Base):
    __tablename__ = "assessment_results"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    computed_levels = Column(JSONB, nullable=False, default=dict)
    max_difficulty_score = Column(Float, nullable=True)
    feedback = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
