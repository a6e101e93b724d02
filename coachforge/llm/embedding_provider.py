"""Text embeddings for retrieval over past assistant turns."""
from typing import List, Optional

import httpx

from coachforge.config.settings import get_settings
from coachforge.core.exceptions import ProviderRequestError, TransientProviderError


class EmbeddingProvider:
    """
    Ollama ``/api/embed`` client.

    Failures are raised as completion errors so callers treat embeddings
    and completions alike. Vectors of the wrong length are rejected, since
    the similarity search compares them against stored vectors.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        dimensions: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = base_url or settings.ollama_base_url
        self.model = model or settings.ollama_embedding_model
        self.timeout = timeout or settings.ollama_embedding_timeout
        self.dimensions = dimensions or settings.embedding_dimensions
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def embed(self, text: str) -> List[float]:
        """
        Embed one text.

        Raises:
            TransientProviderError: timeouts, connection failures, 429 and 5xx
            ProviderRequestError: other HTTP errors, or an empty or mis-sized vector
        """
        client = await self._get_client()
        try:
            response = await client.post("/api/embed", json={"model": self.model, "input": text})
        except httpx.TransportError as e:
            raise TransientProviderError(f"Embedding request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(
                f"Embedding API returned {response.status_code}", response.status_code,
            )
        if response.status_code >= 400:
            raise ProviderRequestError(
                f"Embedding API returned {response.status_code}: {response.text[:200]}",
                response.status_code,
            )

        embeddings = response.json().get("embeddings") or []
        if not embeddings or not embeddings[0]:
            raise ProviderRequestError(f"No embedding returned by {self.model}")
        vector = embeddings[0]
        if self.dimensions and len(vector) != self.dimensions:
            raise ProviderRequestError(
                f"{self.model} returned {len(vector)} dimensions, expected {self.dimensions}"
            )
        return vector

    async def health_check(self) -> bool:
        """True when Ollama answers and the embedding model is pulled."""
        try:
            client = await self._get_client()
            response = await client.get("/api/tags")
        except httpx.HTTPError:
            return False
        if response.status_code != 200:
            return False
        names = {m.get("name", "").split(":")[0] for m in response.json().get("models", [])}
        return self.model.split(":")[0] in names
