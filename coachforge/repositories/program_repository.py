from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from coachforge.models.program import Program, ProgramAssignment, ProgramExercise
from coachforge.schemas.program import ExerciseAssignment, ProgramSkeleton

logger = logging.getLogger(__name__)


@dataclass
class ProgramDraft:
    """Everything needed to persist one generated program."""

    generation_id: str
    created_by: str
    name: str
    description: str
    category: list[str]
    difficulty: str
    duration_weeks: int
    sessions_per_week: int
    skeleton: ProgramSkeleton
    assignment: ExerciseAssignment
    is_public: bool = False
    generation_params: dict[str, Any] = field(default_factory=dict)


def build_exercise_rows(skeleton: ProgramSkeleton, assignment: ExerciseAssignment) -> list[ProgramExercise]:
    bound = {a.slot_id: a for a in assignment.assignments}
    rows = []
    for week in skeleton.weeks:
        for day in week.days:
            for order, slot in enumerate(day.slots):
                assigned = bound.get(slot.slot_id)
                if assigned is None:
                    continue
                rows.append(ProgramExercise(
                    exercise_id=assigned.exercise_id,
                    slot_id=slot.slot_id,
                    week_number=week.week_number,
                    day_of_week=day.day_of_week,
                    order_index=order,
                    sets=slot.sets,
                    reps=slot.reps,
                    rest_seconds=slot.rest_seconds,
                    rpe_target=slot.rpe_target,
                    tempo=slot.tempo,
                    group_tag=slot.group_tag,
                    technique=slot.technique,
                    notes=assigned.notes,
                ))
    return rows


class ProgramRepository:
    """Program persistence; ``save`` is idempotent on the generation id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, program_id: str) -> Program | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Program)
                .options(selectinload(Program.exercises))
                .where(Program.id == program_id)
            )
            return result.scalar_one_or_none()

    async def get_by_generation(self, generation_id: str) -> Program | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Program).where(Program.generation_id == generation_id)
            )
            return result.scalar_one_or_none()

    async def save(self, draft: ProgramDraft) -> str:
        existing = await self.get_by_generation(draft.generation_id)
        if existing is not None:
            logger.info(f"Program for generation {draft.generation_id} already saved as {existing.id}")
            return existing.id

        program = Program(
            generation_id=draft.generation_id,
            name=draft.name,
            description=draft.description,
            category=draft.category,
            difficulty=draft.difficulty,
            duration_weeks=draft.duration_weeks,
            sessions_per_week=draft.sessions_per_week,
            split_type=draft.skeleton.split_type,
            periodization=draft.skeleton.periodization,
            is_public=draft.is_public,
            is_ai_generated=True,
            is_active=True,
            ai_generation_params=draft.generation_params,
            created_by=draft.created_by,
        )
        program.exercises = build_exercise_rows(draft.skeleton, draft.assignment)
        try:
            async with self._session_factory.begin() as session:
                session.add(program)
                await session.flush()
                return program.id
        except IntegrityError:
            # Lost a race with a concurrent save of the same generation
            existing = await self.get_by_generation(draft.generation_id)
            if existing is None:
                raise
            return existing.id

    async def assign(
        self,
        program_id: str,
        client_id: str,
        assigned_by: str,
        total_weeks: int,
        start_date: date | None = None,
    ) -> str:
        start = start_date or date.today()
        async with self._session_factory.begin() as session:
            assignment = ProgramAssignment(
                program_id=program_id,
                user_id=client_id,
                assigned_by=assigned_by,
                start_date=start,
                end_date=start + timedelta(weeks=total_weeks),
                status="active",
                current_week=1,
                total_weeks=total_weeks,
            )
            session.add(assignment)
            await session.flush()
            return assignment.id
