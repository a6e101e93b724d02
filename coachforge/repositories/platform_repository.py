"""Read-only queries against platform-owned tables."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coachforge.models.ai import AiGenerationLog
from coachforge.models.platform import AssessmentResult, ClientProfile, Exercise, ExerciseProgress, User
from coachforge.models.program import Program, ProgramAssignment

_EXERCISE_FIELDS = (
    "id", "name", "category", "difficulty", "difficulty_score", "muscle_group",
    "movement_pattern", "primary_muscles", "secondary_muscles", "force_type",
    "laterality", "equipment_required", "is_bodyweight", "is_compound",
)


def profile_to_dict(profile: ClientProfile) -> dict[str, Any]:
    return {c.name: getattr(profile, c.name) for c in ClientProfile.__table__.columns}


def progress_to_dict(entry: ExerciseProgress) -> dict[str, Any]:
    return {
        "date": entry.completed_at.isoformat() if entry.completed_at else None,
        "sets": entry.sets_completed,
        "reps": entry.reps_completed,
        "weight_kg": entry.weight_kg,
        "rpe": entry.rpe,
        "notes": entry.notes,
        "set_details": entry.set_details,
    }


class PlatformRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_clients(self, limit: int = 500) -> list[User]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User)
                .where(User.role == "client")
                .order_by(User.first_name, User.last_name)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_user(self, user_id: str) -> User | None:
        async with self._session_factory() as session:
            return await session.get(User, user_id)

    async def get_client_profile(self, user_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            profile = await session.get(ClientProfile, user_id)
            return profile_to_dict(profile) if profile else None

    async def list_exercises(self) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Exercise).where(Exercise.is_active.is_(True)).order_by(Exercise.name)
            )
            return [
                {field: getattr(e, field) for field in _EXERCISE_FIELDS}
                for e in result.scalars().all()
            ]

    async def get_exercise(self, exercise_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            exercise = await session.get(Exercise, exercise_id)
            return {field: getattr(exercise, field) for field in _EXERCISE_FIELDS} if exercise else None

    async def exercise_history(self, user_id: str, exercise_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Logged sessions of one exercise, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ExerciseProgress)
                .where(ExerciseProgress.user_id == user_id, ExerciseProgress.exercise_id == exercise_id)
                .order_by(ExerciseProgress.completed_at.desc())
                .limit(limit)
            )
            return [progress_to_dict(p) for p in result.scalars().all()]

    async def related_exercise_history(
        self,
        user_id: str,
        movement_pattern: str,
        exclude_exercise_id: str,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Recent sessions of other exercises that share a movement pattern."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ExerciseProgress, Exercise.name)
                .join(Exercise, Exercise.id == ExerciseProgress.exercise_id)
                .where(
                    ExerciseProgress.user_id == user_id,
                    ExerciseProgress.exercise_id != exclude_exercise_id,
                    func.lower(Exercise.movement_pattern) == movement_pattern.lower(),
                )
                .order_by(ExerciseProgress.completed_at.desc())
                .limit(limit)
            )
            return [
                {"exercise_name": name, **progress_to_dict(entry)}
                for entry, name in result.all()
            ]

    async def latest_assessment(self, user_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AssessmentResult)
                .where(AssessmentResult.user_id == user_id)
                .order_by(AssessmentResult.created_at.desc())
                .limit(1)
            )
            assessment = result.scalar_one_or_none()
            if assessment is None:
                return None
            return {
                "computed_levels": assessment.computed_levels or {},
                "max_difficulty_score": assessment.max_difficulty_score,
                "feedback": assessment.feedback,
            }

    async def clients_created_since(self, since: datetime) -> list[User]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User)
                .where(User.role == "client", User.created_at >= since)
                .order_by(User.created_at.desc())
            )
            return list(result.scalars().all())

    async def count_clients(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(User).where(User.role == "client")
            )
            return result.scalar_one()

    async def program_assignment_stats(self) -> list[tuple[str, int, int]]:
        """``(program name, total assignments, active assignments)`` per active program."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    Program.name,
                    func.count(ProgramAssignment.id),
                    func.count(ProgramAssignment.id).filter(ProgramAssignment.status == "active"),
                )
                .outerjoin(ProgramAssignment, ProgramAssignment.program_id == Program.id)
                .where(Program.is_active.is_(True))
                .group_by(Program.id, Program.name)
                .order_by(Program.name)
            )
            return [(name, total, active) for name, total, active in result]

    async def generation_stats(self, limit: int = 500) -> dict[str, int]:
        async with self._session_factory() as session:
            recent = (
                select(AiGenerationLog.status, AiGenerationLog.tokens_used)
                .order_by(AiGenerationLog.created_at.desc())
                .limit(limit)
                .subquery()
            )
            result = await session.execute(
                select(
                    func.count(),
                    func.count().filter(recent.c.status == "completed"),
                    func.count().filter(recent.c.status == "failed"),
                    func.coalesce(func.sum(recent.c.tokens_used), 0),
                ).select_from(recent)
            )
            total, completed, failed, tokens = result.one()
            return {"total": total, "completed": completed, "failed": failed, "tokens": int(tokens)}
