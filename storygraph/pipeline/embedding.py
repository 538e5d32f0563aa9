"""Embedding generation for sentences, facets and entity names.

Embeddings are used in three places:

- **Stage 1**: one vector per sentence, averaged per segment to rank known
  entities for incremental runs.
- **Stage 4**: one vector per facet at entity creation; the entity vector is
  the mention-weighted mean of its facet vectors.
- **Registry fallback**: entity-name vectors compared against registry
  entries when the extraction service cites a registry index that does not
  exist.

The embedding service contract is batch-in, batch-out and order-preserving.
"""

import os
from abc import ABC, abstractmethod
from typing import Sequence

import httpx


class EmbeddingGeneratorInterface(ABC):
    """Generate fixed-dimension vectors for text.

    Vectors are immutable tuples of floats so they can be stored on frozen
    models and shared freely.
    """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Dimensionality of generated embeddings."""

    @abstractmethod
    async def generate(self, text: str) -> tuple[float, ...]:
        """Embed a single string."""

    @abstractmethod
    async def generate_batch(self, texts: Sequence[str]) -> list[tuple[float, ...]]:
        """Embed many strings in one request.

        Args:
            texts: Input strings. Order is preserved in the output.

        Returns:
            One vector per input, in input order.
        """


class OllamaEmbeddingGenerator(EmbeddingGeneratorInterface):
    """Embedding generator backed by Ollama's ``/api/embed`` endpoint.

    One HTTP request per batch; the response order matches the input order.
    The dimension is learned from the first response.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        ollama_host: str | None = None,
        timeout: float = 30.0,
        batch_size: int = 64,
    ):
        self.model = model
        self.ollama_host: str = ollama_host or os.getenv("OLLAMA_HOST") or "http://localhost:11434"
        self.timeout = timeout
        self.batch_size = batch_size
        self._dimension: int | None = None

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            raise RuntimeError("Dimension not yet determined. Call generate() at least once first.")
        return self._dimension

    def _url(self) -> str:
        return f"{self.ollama_host.rstrip('/')}/api/embed"

    async def _request_batch(self, client: httpx.AsyncClient, texts: list[str]) -> list[tuple[float, ...]]:
        response = await client.post(self._url(), json={"model": self.model, "input": texts})
        response.raise_for_status()
        data = response.json()
        emb_list = data.get("embeddings")
        if not isinstance(emb_list, list):
            raise ValueError(f"Unexpected response format: {str(data)[:200]}")
        if len(emb_list) != len(texts):
            raise ValueError(f"Embedding count {len(emb_list)} does not match input count {len(texts)}")
        if self._dimension is None and emb_list:
            self._dimension = len(emb_list[0])
        return [tuple(float(x) for x in emb) for emb in emb_list]

    async def generate(self, text: str) -> tuple[float, ...]:
        return (await self.generate_batch([text]))[0]

    async def generate_batch(self, texts: Sequence[str]) -> list[tuple[float, ...]]:
        if not texts:
            return []
        results: list[tuple[float, ...]] = []
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for i in range(0, len(texts), self.batch_size):
                results.extend(await self._request_batch(client, list(texts[i : i + self.batch_size])))
        return results
