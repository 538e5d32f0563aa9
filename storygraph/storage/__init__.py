"""Storage interfaces and in-memory implementations."""

from storygraph.storage.interfaces import (
    DocumentStoreInterface,
    GraphStoreInterface,
    ProgressChannelInterface,
    SentenceStoreInterface,
)
from storygraph.storage.memory import (
    InMemoryDocumentStore,
    InMemoryGraphStore,
    InMemoryProgressChannel,
    InMemorySentenceStore,
)

__all__ = [
    "DocumentStoreInterface",
    "GraphStoreInterface",
    "ProgressChannelInterface",
    "SentenceStoreInterface",
    "InMemoryDocumentStore",
    "InMemoryGraphStore",
    "InMemoryProgressChannel",
    "InMemorySentenceStore",
]
