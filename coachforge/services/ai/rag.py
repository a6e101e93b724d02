"""Retrieval of similar past assistant turns to ground new prompts.

Retrieval is strictly best-effort: it runs under a hard timeout and any
failure yields no context rather than an error.
"""
import asyncio
import logging
from typing import Any

from pydantic import BaseModel, Field

from coachforge.config.settings import Settings, get_settings
from coachforge.llm.embedding_provider import EmbeddingProvider
from coachforge.repositories.conversation_repository import ConversationRepository

logger = logging.getLogger(__name__)


class RagContext(BaseModel):
    id: str
    content: str
    feature: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    similarity: float
    avg_rating: float | None = None


def metadata_summary(metadata: dict[str, Any]) -> str:
    parts = []
    for key, label in (
        ("exercise_name", "Exercise"),
        ("model", "Model"),
        ("step", "Step"),
        ("client_id", "Client"),
    ):
        if metadata.get(key):
            parts.append(f"{label}: {metadata[key]}")
    return " | ".join(parts)


def format_context(results: list[RagContext], preview_chars: int = 800) -> str:
    if not results:
        return ""
    sections = []
    for idx, result in enumerate(results, start=1):
        summary = metadata_summary(result.metadata)
        rating = f" (quality: {result.avg_rating:.1f}/5)" if result.avg_rating else ""
        content = result.content
        if len(content) > preview_chars:
            content = content[:preview_chars] + "..."
        sections.append(
            f"### Scenario {idx}{rating}\n"
            f"Context: {result.feature}{f' | {summary}' if summary else ''}\n"
            f"Response: {content}"
        )
    return (
        "## Similar Past Scenarios\n\n"
        "The following are relevant past AI responses. Use them as reference to maintain "
        "consistency and quality, but adapt to the current situation.\n\n"
        + "\n\n".join(sections)
    )


def augment_prompt(base_prompt: str, context: str) -> str:
    if not context:
        return base_prompt
    return f"{base_prompt}\n\n{context}"


class RagService:
    def __init__(
        self,
        conversations: ConversationRepository,
        embedder: EmbeddingProvider,
        settings: Settings | None = None,
    ):
        self.conversations = conversations
        self.embedder = embedder
        self.settings = settings or get_settings()

    async def retrieve(
        self,
        query: str,
        feature: str,
        *,
        exclude_session: str | None = None,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> list[RagContext]:
        """Top matches for ``query``; empty on timeout or any failure."""
        try:
            async with asyncio.timeout(self.settings.rag_timeout_seconds):
                return await self._retrieve(
                    query,
                    feature,
                    exclude_session,
                    self.settings.rag_similarity_threshold if threshold is None else threshold,
                    limit or self.settings.rag_result_limit,
                )
        except TimeoutError:
            logger.warning(f"Context retrieval for {feature} timed out")
            return []
        except Exception as e:
            logger.warning(f"Context retrieval for {feature} failed: {e}")
            return []

    async def _retrieve(
        self,
        query: str,
        feature: str,
        exclude_session: str | None,
        threshold: float,
        limit: int,
    ) -> list[RagContext]:
        embedding = await self.embedder.embed(query[:self.settings.rag_embed_max_chars])
        matches = await self.conversations.search_similar(
            embedding,
            feature,
            exclude_session=exclude_session,
            threshold=threshold,
            limit=limit,
        )
        if not matches:
            return []
        ratings = await self.conversations.average_ratings([m.id for m in matches])

        results = []
        for match in matches:
            rating = ratings.get(match.id)
            if rating is not None and rating < self.settings.rag_min_rating:
                continue
            results.append(RagContext(
                id=match.id,
                content=match.content,
                feature=feature,
                metadata=match.metadata,
                similarity=match.similarity,
                avg_rating=rating,
            ))
        return results[:limit]

    async def context_for(
        self,
        query: str,
        feature: str,
        *,
        exclude_session: str | None = None,
    ) -> str:
        results = await self.retrieve(query, feature, exclude_session=exclude_session)
        return format_context(results, self.settings.rag_content_preview_chars)

    async def embed_message(self, message_id: str) -> None:
        """Embed an assistant turn so later retrievals can find it."""
        message = await self.conversations.get(message_id)
        if message is None or message.role != "assistant":
            return
        summary = metadata_summary(message.meta or {})
        text = f"Feature: {message.feature}{f' | {summary}' if summary else ''}\n{message.content}"
        embedding = await self.embedder.embed(text[:self.settings.rag_embed_max_chars])
        await self.conversations.update_embedding(message_id, embedding)
