import httpx
import pytest

from coachforge.core.exceptions import ProviderRequestError, TransientProviderError
from coachforge.llm.embedding_provider import EmbeddingProvider


def provider(handler, dimensions: int = 3) -> EmbeddingProvider:
    return EmbeddingProvider(
        base_url="http://ollama.test",
        model="nomic-embed-text",
        dimensions=dimensions,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_embed_returns_first_vector():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3]]})

    vector = await provider(handler).embed("hinge pattern")

    assert vector == [0.1, 0.2, 0.3]
    assert seen[0].url.path == "/api/embed"


@pytest.mark.asyncio
@pytest.mark.parametrize("response, error", [
    (httpx.Response(503, text="loading model"), TransientProviderError),
    (httpx.Response(404, text="model not found"), ProviderRequestError),
    (httpx.Response(200, json={"embeddings": []}), ProviderRequestError),
    (httpx.Response(200, json={"embeddings": [[0.1, 0.2]]}), ProviderRequestError),
])
async def test_failures_are_completion_errors(response, error):
    with pytest.raises(error):
        await provider(lambda request: response).embed("text")


@pytest.mark.asyncio
async def test_connection_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientProviderError):
        await provider(handler).embed("text")


@pytest.mark.asyncio
async def test_health_check_requires_pulled_model():
    pulled = provider(lambda r: httpx.Response(200, json={"models": [{"name": "nomic-embed-text:latest"}]}))
    missing = provider(lambda r: httpx.Response(200, json={"models": [{"name": "llama3:8b"}]}))

    assert await pulled.health_check() is True
    assert await missing.health_check() is False
