from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coachforge.models.ai import AiConversationMessage, AiFeedback, AiOutcome


@dataclass(frozen=True)
class SimilarMessage:
    id: str
    session_id: str
    content: str
    metadata: dict[str, Any]
    similarity: float


# pgvector cosine distance over the float[] column
_SIMILARITY_SQL = text(
    """
    SELECT id, session_id, content, metadata,
           1 - (CAST(embedding AS vector) <=> CAST(:query AS vector)) AS similarity
    FROM ai_conversation_history
    WHERE feature = :feature
      AND role = 'assistant'
      AND embedding IS NOT NULL
      AND (CAST(:exclude_session AS text) IS NULL OR session_id <> :exclude_session)
      AND 1 - (CAST(embedding AS vector) <=> CAST(:query AS vector)) >= :threshold
    ORDER BY CAST(embedding AS vector) <=> CAST(:query AS vector)
    LIMIT :limit
    """
)


class ConversationRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def save(
        self,
        *,
        user_id: str,
        feature: str,
        session_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        tokens_input: int | None = None,
        tokens_output: int | None = None,
        model_used: str | None = None,
    ) -> str:
        async with self._session_factory.begin() as session:
            message = AiConversationMessage(
                user_id=user_id,
                feature=feature,
                session_id=session_id,
                role=role,
                content=content,
                meta=metadata or {},
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                model_used=model_used,
            )
            session.add(message)
            await session.flush()
            return message.id

    async def get(self, message_id: str) -> AiConversationMessage | None:
        async with self._session_factory() as session:
            return await session.get(AiConversationMessage, message_id)

    async def update_embedding(self, message_id: str, embedding: list[float]) -> None:
        async with self._session_factory.begin() as session:
            await session.execute(
                update(AiConversationMessage)
                .where(AiConversationMessage.id == message_id)
                .values(embedding=embedding)
            )

    async def search_similar(
        self,
        embedding: list[float],
        feature: str,
        *,
        exclude_session: str | None,
        threshold: float,
        limit: int,
    ) -> list[SimilarMessage]:
        query_vector = "[" + ",".join(f"{v:.6f}" for v in embedding) + "]"
        async with self._session_factory() as session:
            result = await session.execute(_SIMILARITY_SQL, {
                "query": query_vector,
                "feature": feature,
                "exclude_session": exclude_session,
                "threshold": threshold,
                "limit": limit,
            })
            return [
                SimilarMessage(
                    id=row.id,
                    session_id=row.session_id,
                    content=row.content,
                    metadata=row.metadata or {},
                    similarity=float(row.similarity),
                )
                for row in result
            ]

    async def average_ratings(self, message_ids: list[str]) -> dict[str, float]:
        """Mean of all non-null ratings per message; unrated messages are absent."""
        if not message_ids:
            return {}
        rating_sum = (
            func.coalesce(AiFeedback.accuracy_rating, 0)
            + func.coalesce(AiFeedback.relevance_rating, 0)
            + func.coalesce(AiFeedback.helpfulness_rating, 0)
        )
        rating_count = (
            func.count(AiFeedback.accuracy_rating)
            + func.count(AiFeedback.relevance_rating)
            + func.count(AiFeedback.helpfulness_rating)
        )
        async with self._session_factory() as session:
            result = await session.execute(
                select(AiFeedback.message_id, func.sum(rating_sum), rating_count)
                .where(AiFeedback.message_id.in_(message_ids))
                .group_by(AiFeedback.message_id)
            )
            return {
                message_id: float(total) / count
                for message_id, total, count in result
                if count
            }

    async def add_feedback(
        self,
        *,
        message_id: str,
        user_id: str,
        accuracy_rating: int | None = None,
        relevance_rating: int | None = None,
        helpfulness_rating: int | None = None,
        comment: str | None = None,
    ) -> str:
        async with self._session_factory.begin() as session:
            feedback = AiFeedback(
                message_id=message_id,
                user_id=user_id,
                accuracy_rating=accuracy_rating,
                relevance_rating=relevance_rating,
                helpfulness_rating=helpfulness_rating,
                comment=comment,
            )
            session.add(feedback)
            await session.flush()
            return feedback.id

    async def record_outcome(
        self,
        *,
        user_id: str,
        recommendation_type: str,
        predicted_value: dict[str, Any],
        exercise_id: str | None = None,
        program_id: str | None = None,
        conversation_message_id: str | None = None,
    ) -> str:
        async with self._session_factory.begin() as session:
            outcome = AiOutcome(
                user_id=user_id,
                recommendation_type=recommendation_type,
                predicted_value=predicted_value,
                exercise_id=exercise_id,
                program_id=program_id,
                conversation_message_id=conversation_message_id,
            )
            session.add(outcome)
            await session.flush()
            return outcome.id
