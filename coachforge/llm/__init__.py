"""LLM adapter package."""
from coachforge.llm.base import (
    LLMProvider,
    LLMConfig,
    LLMResponse,
    Message,
    StreamChunk,
    ToolCall,
    ToolSpec,
)
from coachforge.llm.completion import CompletionClient
from coachforge.llm.embedding_provider import EmbeddingProvider

__all__ = [
    "LLMProvider",
    "LLMConfig",
    "LLMResponse",
    "Message",
    "StreamChunk",
    "ToolCall",
    "ToolSpec",
    "CompletionClient",
    "EmbeddingProvider",
    "get_llm_provider",
    "get_embedding_provider",
    "get_completion_client",
    "cleanup_llm_provider",
]


# Module-level singleton instances
_provider_instance: LLMProvider | None = None
_embedding_instance: EmbeddingProvider | None = None


def get_llm_provider() -> LLMProvider:
    """
    Get the singleton LLM provider instance.

    Returns the appropriate provider based on settings.
    Uses singleton pattern to reuse HTTP connections and prevent resource leaks.
    """
    global _provider_instance

    if _provider_instance is not None:
        return _provider_instance

    from coachforge.config.settings import get_settings

    settings = get_settings()

    if settings.llm_provider == "openai":
        from coachforge.llm.openai_provider import OpenAIProvider
        _provider_instance = OpenAIProvider()
    else:
        raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")

    return _provider_instance


def get_embedding_provider() -> EmbeddingProvider:
    """Get the singleton embedding provider instance."""
    global _embedding_instance

    if _embedding_instance is None:
        _embedding_instance = EmbeddingProvider()
    return _embedding_instance


def get_completion_client() -> CompletionClient:
    """Completion client bound to the shared provider."""
    return CompletionClient(get_llm_provider())


async def cleanup_llm_provider():
    """
    Clean up the LLM and embedding provider singletons.

    Closes HTTP connections and releases resources.
    Should be called during application shutdown.
    """
    global _provider_instance, _embedding_instance

    if _provider_instance is not None:
        await _provider_instance.close()
        _provider_instance = None
    if _embedding_instance is not None:
        await _embedding_instance.close()
        _embedding_instance = None
