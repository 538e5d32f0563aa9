"""Content-hash keyed embedding cache.

Sentence embeddings are expensive and sentences repeat across document
versions: editing one paragraph leaves every other sentence unchanged. The
cache is keyed by the sha256 of the text, so an unchanged sentence is never
re-embedded while the process lives.

Typical usage:
    ```python
    generator = CachedEmbeddingGenerator(
        base_generator=OllamaEmbeddingGenerator(),
        cache=InMemoryEmbeddingsCache(EmbeddingCacheConfig(max_cache_size=50_000)),
    )
    vectors = await generator.generate_batch(sentences)
    ```
"""

import hashlib
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from .embedding import EmbeddingGeneratorInterface


def content_hash(text: str) -> str:
    """sha256 hex digest of the UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class EmbeddingCacheConfig(BaseModel):
    model_config = {"frozen": True}

    max_cache_size: int = Field(10000, gt=0, description="Maximum number of embeddings kept (LRU eviction)")


class EmbeddingsCacheInterface(ABC):
    """Cache of embeddings keyed by content hash."""

    @abstractmethod
    async def get(self, key: str) -> Optional[tuple[float, ...]]:
        """Cached vector for a content hash, or None."""

    @abstractmethod
    async def put(self, key: str, embedding: tuple[float, ...]) -> None:
        """Store a vector under a content hash."""

    @abstractmethod
    def get_stats(self) -> dict[str, int]:
        """Return ``hits``, ``misses`` and ``size``."""


class InMemoryEmbeddingsCache(EmbeddingsCacheInterface):
    """LRU cache held in an OrderedDict."""

    def __init__(self, config: EmbeddingCacheConfig | None = None):
        self.config = config or EmbeddingCacheConfig()
        self._cache: OrderedDict[str, tuple[float, ...]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    async def get(self, key: str) -> Optional[tuple[float, ...]]:
        if key in self._cache:
            self._cache.move_to_end(key)
            self._hits += 1
            return self._cache[key]
        self._misses += 1
        return None

    async def put(self, key: str, embedding: tuple[float, ...]) -> None:
        if key in self._cache:
            self._cache.move_to_end(key)
        self._cache[key] = embedding
        while len(self._cache) > self.config.max_cache_size:
            self._cache.popitem(last=False)

    def get_stats(self) -> dict[str, int]:
        return {"hits": self._hits, "misses": self._misses, "size": len(self._cache)}


class CachedEmbeddingGenerator(EmbeddingGeneratorInterface):
    """Wraps a generator; only cache misses reach the underlying service.

    ``generate_batch`` sends all misses in one batch and preserves input order.
    """

    def __init__(self, base_generator: EmbeddingGeneratorInterface, cache: EmbeddingsCacheInterface):
        self.base_generator = base_generator
        self.cache = cache

    @property
    def dimension(self) -> int:
        return self.base_generator.dimension

    async def generate(self, text: str) -> tuple[float, ...]:
        return (await self.generate_batch([text]))[0]

    async def generate_batch(self, texts: Sequence[str]) -> list[tuple[float, ...]]:
        keys = [content_hash(t) for t in texts]
        results: list[Optional[tuple[float, ...]]] = [await self.cache.get(k) for k in keys]

        # Deduplicate misses so repeated sentences cost one embedding.
        missing: dict[str, str] = {}
        for key, text, found in zip(keys, texts, results):
            if found is None and key not in missing:
                missing[key] = text
        if missing:
            fresh = await self.base_generator.generate_batch(list(missing.values()))
            by_key = dict(zip(missing.keys(), fresh))
            for key, emb in by_key.items():
                await self.cache.put(key, emb)
            results = [r if r is not None else by_key[k] for k, r in zip(keys, results)]
        return [r for r in results if r is not None]

    def get_cache_stats(self) -> dict[str, int]:
        return self.cache.get_stats()
