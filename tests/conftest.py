"""Test fixtures and fakes for the narrative pipeline.

This module provides:
- A deterministic hash-based embedding generator (no network)
- A scripted LLM client keyed by task name, for exercising the adapter's
  parsing, validation and retry logic
- ``StoryScriptService``, a rule-based extraction service that "reads" the
  Alice and Bob story by keyword, for end-to-end pipeline tests
- Pytest fixtures for fresh in-memory stores
- Factory helpers for entities, facets and edges

The scripted story is::

    Alice met Bob at the old mill. Later, Bob betrayed Alice.
"""

import hashlib
import json
from collections import Counter
from typing import Any, Sequence

import pytest

from storyschema.document import AnalysisStatus, DocumentRecord
from storyschema.edge import CausalEdge, EdgeType, StructuralEdge, parse_edge
from storyschema.entity import EntityType, Facet, FacetType, StoryEntity
from storyschema.extraction import (
    ArcPhase,
    EntityExtractionResponse,
    ExistingMatch,
    HigherOrderResponse,
    MatchConfidence,
    RawEntity,
    RawFacet,
    RawMention,
    RawNarrativeThread,
)
from storyschema.narrative import ArcType
from storyschema.segment import Segment

from storygraph.config import PipelineConfig, RetryConfig
from storygraph.pipeline.embedding import EmbeddingGeneratorInterface
from storygraph.pipeline.interfaces import (
    CharacterSummary,
    EntityContext,
    EventSummary,
    ExtractionServiceInterface,
    RegistryEntry,
    ThreadCandidate,
)
from storygraph.pipeline.llm_client import ExtractionRequest, LLMClientInterface, LLMResponse
from storygraph.storage.memory import (
    InMemoryDocumentStore,
    InMemoryGraphStore,
    InMemoryProgressChannel,
    InMemorySentenceStore,
)

STORY = "Alice met Bob at the old mill. Later, Bob betrayed Alice."
DOCUMENT_ID = "doc-1"
USER_ID = "user-1"


def story_segments() -> list[Segment]:
    """The story split into its two sentences."""
    split = STORY.index(" Later")
    return [
        Segment(id="seg-1", start=0, end=split),
        Segment(id="seg-2", start=split, end=len(STORY)),
    ]


# --- Embeddings ---


class MockEmbeddingGenerator(EmbeddingGeneratorInterface):
    """Deterministic embeddings derived from a sha256 of the text.

    Equal texts get equal vectors; different texts get unrelated ones.
    """

    def __init__(self, dimension: int = 8):
        self._dimension = dimension
        self.calls: list[list[str]] = []

    @property
    def dimension(self) -> int:
        return self._dimension

    async def generate(self, text: str) -> tuple[float, ...]:
        self.calls.append([text])
        return self._vector(text)

    async def generate_batch(self, texts: Sequence[str]) -> list[tuple[float, ...]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    def _vector(self, text: str) -> tuple[float, ...]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return tuple((digest[i] / 127.5) - 1.0 for i in range(self._dimension))


# --- LLM client ---


class FakeLLMClient(LLMClientInterface):
    """Replays scripted answers per task and records every request.

    Each scripted item is a dict (sent as JSON text), a raw string, an
    ``LLMResponse`` or an exception to raise. The last item of a task is
    repeated once the script runs out.
    """

    def __init__(self, script: dict[str, list[Any]] | None = None):
        self.script = {task: list(items) for task, items in (script or {}).items()}
        self.requests: list[ExtractionRequest] = []

    def calls(self, task: str) -> int:
        return sum(1 for r in self.requests if r.task == task)

    async def complete(self, request: ExtractionRequest) -> LLMResponse:
        self.requests.append(request)
        items = self.script.get(request.task)
        if not items:
            raise AssertionError(f"No scripted response for {request.task}")
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, LLMResponse):
            return item
        if isinstance(item, dict):
            return LLMResponse(text=json.dumps(item))
        return LLMResponse(text=item)


async def no_sleep(_: float) -> None:
    """Retry delay that returns immediately."""


# --- Scripted extraction service ---


_LEXICON: list[tuple[str, str, EntityType, int | None]] = [
    # (entity name, quote that reveals it, type, document order)
    ("Alice", "Alice", EntityType.CHARACTER, None),
    ("Bob", "Bob", EntityType.CHARACTER, None),
    ("old mill", "old mill", EntityType.LOCATION, None),
    ("meeting", "met", EntityType.EVENT, 0),
    ("betrayal", "betrayed", EntityType.EVENT, 1),
]

_FACETS: dict[str, list[tuple[str, FacetType, str]]] = {
    # quote that must be present -> facets for an entity
    "met": [("Alice", FacetType.TRAIT, "trusting")],
    "betrayed": [("Bob", FacetType.STATE, "resentful"), ("Alice", FacetType.STATE, "betrayed")],
}


class StoryScriptService(ExtractionServiceInterface):
    """Keyword-driven stand-in for the extraction service.

    Entities are found by their quote in the segment and matched to registry
    entries by exact name with high confidence. Relationships, threads and
    arcs follow the story's fixed plot.
    """

    def __init__(self):
        self.calls: Counter[str] = Counter()
        self.registries: list[list[RegistryEntry]] = []

    async def extract_entities(
        self,
        segment_text: str,
        segment_index: int,
        total_segments: int,
        registry: Sequence[RegistryEntry],
        previous_segment_text: str | None = None,
    ) -> EntityExtractionResponse:
        self.calls["extract_entities"] += 1
        self.registries.append(list(registry))
        known = {e.name: e.registry_index for e in registry}
        entities, mentions, facets = [], [], []
        for name, quote, entity_type, order in _LEXICON:
            if quote not in segment_text:
                continue
            match = None
            if name in known:
                match = ExistingMatch(registry_index=known[name], confidence=MatchConfidence.HIGH, reason="same name")
            entities.append(RawEntity(name=name, type=entity_type, document_order=order, existing_match=match))
            mentions.append(RawMention(entity_name=name, text=quote))
        names = {e.name for e in entities}
        for quote, facet_rows in _FACETS.items():
            if quote in segment_text:
                facets.extend(
                    RawFacet(entity_name=owner, facet_type=ft, content=content)
                    for owner, ft, content in facet_rows
                    if owner in names
                )
        return EntityExtractionResponse(entities=entities, facets=facets, mentions=mentions)

    async def extract_relationships(
        self,
        segment_text: str,
        segment_index: int,
        entities: Sequence[EntityContext],
    ) -> list[CausalEdge | StructuralEdge]:
        self.calls["extract_relationships"] += 1
        ids = {e.name: e.id for e in entities}
        rules = [
            ("Alice", "Bob", EdgeType.CONNECTED_TO),
            ("Alice", "meeting", EdgeType.PARTICIPATES_IN),
            ("Bob", "meeting", EdgeType.PARTICIPATES_IN),
            ("meeting", "old mill", EdgeType.LOCATED_AT),
            ("Bob", "betrayal", EdgeType.PARTICIPATES_IN),
        ]
        return [
            StructuralEdge(from_id=ids[a], to_id=ids[b], edge_type=t)
            for a, b, t in rules
            if a in ids and b in ids
        ]

    async def extract_cross_segment_relationships(
        self,
        entities: Sequence[EntityContext],
        existing_edges: Sequence[CausalEdge | StructuralEdge],
        document_summary: str | None = None,
    ) -> list[CausalEdge | StructuralEdge]:
        self.calls["extract_cross_segment_relationships"] += 1
        ids = {e.name: e.id for e in entities}
        known = {e.key for e in existing_edges}
        edges = [
            parse_edge({"fromId": ids["meeting"], "toId": ids["betrayal"], "edgeType": "ENABLES", "strength": 0.6}),
            parse_edge({"fromId": ids["Bob"], "toId": ids["Alice"], "edgeType": "OPPOSES"}),
            parse_edge({"fromId": ids["Alice"], "toId": ids["betrayal"], "edgeType": "PARTICIPATES_IN"}),
        ]
        return [e for e in edges if e.key not in known]

    async def analyze_higher_order(
        self,
        events: Sequence[EventSummary],
        characters: Sequence[CharacterSummary],
        thread_candidates: Sequence[ThreadCandidate],
        document_summary: str | None = None,
    ) -> HigherOrderResponse:
        self.calls["analyze_higher_order"] += 1
        event_ids = {e.name: e.id for e in events}
        character_ids = {c.name: c.id for c in characters}
        threads = [
            RawNarrativeThread(name="The betrayal", is_primary=True, event_ids=list(c.event_ids))
            for c in thread_candidates[:1]
        ]
        phases = []
        if "Bob" in character_ids:
            phases = [
                ArcPhase(
                    character_id=character_ids["Bob"],
                    phase_index=1,
                    phase_name="Traitor",
                    arc_type=ArcType.FALL,
                    trigger_event_id=event_ids.get("betrayal"),
                    state_facets=["Resentful"],
                ),
                ArcPhase(
                    character_id=character_ids["Bob"],
                    phase_index=0,
                    phase_name="Friend",
                    arc_type=ArcType.FALL,
                ),
            ]
        return HigherOrderResponse(narrative_threads=threads, arc_phases=phases)


# --- Factories ---


def make_test_entity(
    entity_id: str,
    name: str | None = None,
    entity_type: EntityType = EntityType.CHARACTER,
    document_id: str = DOCUMENT_ID,
    document_order: int | None = None,
) -> StoryEntity:
    """Create a StoryEntity with sensible defaults."""
    return StoryEntity(
        id=entity_id,
        document_id=document_id,
        user_id=USER_ID,
        type=entity_type,
        name=name or entity_id,
        document_order=document_order,
    )


def make_test_facet(
    entity_id: str,
    content: str,
    facet_type: FacetType = FacetType.TRAIT,
    embedding: tuple[float, ...] | None = None,
) -> Facet:
    return Facet(id=f"{entity_id}:{content}", entity_id=entity_id, type=facet_type, content=content, embedding=embedding)


def causal(from_id: str, to_id: str, edge_type: EdgeType = EdgeType.CAUSES, strength: float = 0.8) -> CausalEdge:
    return CausalEdge(from_id=from_id, to_id=to_id, edge_type=edge_type, strength=strength)


def structural(from_id: str, to_id: str, edge_type: EdgeType = EdgeType.CONNECTED_TO) -> StructuralEdge:
    return StructuralEdge(from_id=from_id, to_id=to_id, edge_type=edge_type)


# --- Fixtures ---


@pytest.fixture
def embedding_generator() -> MockEmbeddingGenerator:
    return MockEmbeddingGenerator()


@pytest.fixture
def graph_store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    """Document store holding the story document at version 1, analyzing."""
    store = InMemoryDocumentStore()
    store.add(DocumentRecord(document_id=DOCUMENT_ID, version=1, analysis_status=AnalysisStatus.ANALYZING))
    return store


@pytest.fixture
def sentence_store() -> InMemorySentenceStore:
    return InMemorySentenceStore()


@pytest.fixture
def progress_channel() -> InMemoryProgressChannel:
    return InMemoryProgressChannel()


@pytest.fixture
def story_service() -> StoryScriptService:
    return StoryScriptService()


@pytest.fixture
def fast_config() -> PipelineConfig:
    """Default configuration with zero retry delays."""
    return PipelineConfig(retry=RetryConfig(delays=(0.0,)))
