"""Tests for best-effort retrieval of past assistant turns."""
import pytest

from coachforge.repositories.conversation_repository import SimilarMessage
from coachforge.services.ai.rag import RagContext, RagService, augment_prompt, format_context

from tests.fakes import FakeConversations, FakeEmbedder


def similar(message_id: str, content: str = "Use goblet squats.", **metadata) -> SimilarMessage:
    return SimilarMessage(
        id=message_id,
        session_id="s-old",
        content=content,
        metadata=metadata,
        similarity=0.8,
    )


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_returns_matches_with_ratings(self, settings):
        conversations = FakeConversations()
        conversations.matches = [similar("m1", step="selection"), similar("m2")]
        conversations.ratings = {"m1": 4.5}
        embedder = FakeEmbedder()
        rag = RagService(conversations, embedder, settings)

        results = await rag.retrieve("squat " * 1000, "program_generation")

        assert [r.id for r in results] == ["m1", "m2"]
        assert results[0].avg_rating == 4.5
        assert results[1].avg_rating is None
        assert results[0].metadata == {"step": "selection"}
        assert len(embedder.texts[0]) == settings.rag_embed_max_chars

    @pytest.mark.asyncio
    async def test_poorly_rated_matches_are_dropped(self, settings):
        conversations = FakeConversations()
        conversations.matches = [similar("low"), similar("unrated"), similar("ok")]
        conversations.ratings = {"low": 1.5, "ok": 2.0}
        rag = RagService(conversations, FakeEmbedder(), settings)

        results = await rag.retrieve("query", "program_chat", limit=5)

        assert [r.id for r in results] == ["unrated", "ok"]

    @pytest.mark.asyncio
    async def test_timeout_yields_nothing(self, settings):
        conversations = FakeConversations()
        conversations.matches = [similar("m1")]
        rag = RagService(conversations, FakeEmbedder(delay=1), settings)

        assert await rag.retrieve("query", "program_chat") == []

    @pytest.mark.asyncio
    async def test_embedding_failure_yields_nothing(self, settings):
        conversations = FakeConversations()
        conversations.matches = [similar("m1")]
        rag = RagService(conversations, FakeEmbedder(error=RuntimeError("embedding API down")), settings)

        assert await rag.retrieve("query", "program_chat") == []
        assert await rag.context_for("query", "program_chat") == ""

    @pytest.mark.asyncio
    async def test_context_for_formats_results(self, settings):
        conversations = FakeConversations()
        conversations.matches = [similar("m1", "Three full-body days.", client_id="c1")]
        conversations.ratings = {"m1": 4.0}
        rag = RagService(conversations, FakeEmbedder(), settings)

        context = await rag.context_for("plan", "program_chat")

        assert context.startswith("## Similar Past Scenarios")
        assert "### Scenario 1 (quality: 4.0/5)" in context
        assert "Context: program_chat | Client: c1" in context
        assert "Response: Three full-body days." in context


class TestFormatting:
    def test_long_content_is_truncated(self):
        result = RagContext(id="m1", content="x" * 50, feature="admin_chat", similarity=0.9)

        text = format_context([result], preview_chars=10)

        assert "Response: " + "x" * 10 + "..." in text
        assert "quality" not in text

    def test_empty_context_leaves_prompt_alone(self):
        assert format_context([]) == ""
        assert augment_prompt("base", "") == "base"
        assert augment_prompt("base", "extra") == "base\n\nextra"


class TestEmbedMessage:
    @pytest.mark.asyncio
    async def test_assistant_turn_is_embedded(self, settings):
        conversations = FakeConversations()
        message_id = await conversations.save(
            feature="program_generation",
            role="assistant",
            content='{"weeks": []}',
            metadata={"step": "architecture"},
        )
        embedder = FakeEmbedder(vector=[1.0, 0.0])
        rag = RagService(conversations, embedder, settings)

        await rag.embed_message(message_id)

        assert embedder.texts == ['Feature: program_generation | Step: architecture\n{"weeks": []}']
        assert conversations.messages[message_id].embedding == [1.0, 0.0]

    @pytest.mark.asyncio
    async def test_user_turns_and_missing_messages_are_skipped(self, settings):
        conversations = FakeConversations()
        message_id = await conversations.save(feature="program_chat", role="user", content="hello")
        embedder = FakeEmbedder()
        rag = RagService(conversations, embedder, settings)

        await rag.embed_message(message_id)
        await rag.embed_message("msg-404")

        assert embedder.texts == []
