"""Pipeline interface definitions for narrative extraction.

This module defines the extraction-service boundary used by the seven-stage
pipeline, together with the context records each extraction task is given:

- **Stage 2 (entities)**: a segment, its neighbour as read-only context, and
  a bounded snapshot of the runtime registry (``RegistryEntry``).
- **Stages 5-6 (relationships)**: resolved entities with key facets
  (``EntityContext``), plus, across segments, their segment membership and the
  edges already known.
- **Stage 7 (higher-order)**: events with causal links and participants
  (``EventSummary``), characters with state facets (``CharacterSummary``), and
  algorithmic thread candidates (``ThreadCandidate``).

Every call is independent of the others and may be retried; implementations
validate answers against the ids they were given and raise a transient error
on any mismatch rather than coercing the answer.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from pydantic import BaseModel, Field

from storyschema.edge import CausalEdge, EdgeType, StructuralEdge
from storyschema.entity import EntityType
from storyschema.extraction import EntityExtractionResponse, HigherOrderResponse


class RegistryEntry(BaseModel):
    """A registry entry as shown to the extraction service."""

    model_config = {"frozen": True}

    registry_index: int = Field(..., ge=0, description="Position the service refers back to")
    id: str
    name: str
    type: EntityType
    aliases: tuple[str, ...] = ()
    key_facets: tuple[str, ...] = ()
    mention_count: int = 0


class EntityContext(BaseModel):
    """A resolved entity as shown to relationship extraction."""

    model_config = {"frozen": True}

    id: str
    name: str
    type: str
    key_facets: tuple[str, ...] = ()
    segment_ids: tuple[str, ...] = ()


class CausalLink(BaseModel):
    model_config = {"frozen": True}

    edge_type: EdgeType
    target_id: str
    strength: float


class EventSummary(BaseModel):
    model_config = {"frozen": True}

    id: str
    name: str
    document_order: int
    connected_character_ids: tuple[str, ...] = ()
    causal_edges: tuple[CausalLink, ...] = ()


class CharacterSummary(BaseModel):
    model_config = {"frozen": True}

    id: str
    name: str
    participates_in_event_ids: tuple[str, ...] = ()
    state_facets_by_segment: tuple[tuple[int, tuple[str, ...]], ...] = ()


class ThreadCandidate(BaseModel):
    """A connected component of the causal event graph."""

    model_config = {"frozen": True}

    event_ids: tuple[str, ...]
    character_ids: tuple[str, ...] = ()


class ExtractionServiceInterface(ABC):
    """The text-extraction service, one method per task."""

    @abstractmethod
    async def extract_entities(
        self,
        segment_text: str,
        segment_index: int,
        total_segments: int,
        registry: Sequence[RegistryEntry],
        previous_segment_text: str | None = None,
    ) -> EntityExtractionResponse:
        """Entities, facets, mentions and merge signals for one segment."""

    @abstractmethod
    async def extract_relationships(
        self,
        segment_text: str,
        segment_index: int,
        entities: Sequence[EntityContext],
    ) -> list[CausalEdge | StructuralEdge]:
        """Edges evidenced strictly within one segment, between the given entities."""

    @abstractmethod
    async def extract_cross_segment_relationships(
        self,
        entities: Sequence[EntityContext],
        existing_edges: Sequence[CausalEdge | StructuralEdge],
        document_summary: str | None = None,
    ) -> list[CausalEdge | StructuralEdge]:
        """Edges evidenced across segment boundaries, excluding existing ones."""

    @abstractmethod
    async def analyze_higher_order(
        self,
        events: Sequence[EventSummary],
        characters: Sequence[CharacterSummary],
        thread_candidates: Sequence[ThreadCandidate],
        document_summary: str | None = None,
    ) -> HigherOrderResponse:
        """Named narrative threads and flattened character arc phases."""
