"""Payloads exchanged with the text-extraction service, and the per-run
records derived from them.

The ``*Response`` models mirror the JSON the service is asked to return for
each task. They are validated at the adapter boundary; anything that fails
validation is treated as a malformed response and retried.

``ExtractedEntity`` and ``MergeSignal`` are what Stage 2 produces and what the
Stage 2 checkpoint stores.
"""

from enum import Enum

from pydantic import Field

from storyschema.base import StoryModel
from storyschema.entity import EntityType, FacetInput, FacetType
from storyschema.narrative import ArcType


class MatchConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    """Treated as "no match": a new entity is created and a merge signal recorded."""

    @property
    def merges(self) -> bool:
        return self is not MatchConfidence.LOW


class ExistingMatch(StoryModel):
    """The service's claim that an extracted entity is a known registry entry."""

    registry_index: int
    confidence: MatchConfidence
    reason: str = ""


# --- Stage 2 response -------------------------------------------------------


class RawEntity(StoryModel):
    name: str = Field(..., min_length=1)
    type: EntityType
    document_order: int | None = None
    existing_match: ExistingMatch | None = None


class RawFacet(StoryModel):
    entity_name: str
    facet_type: FacetType
    content: str = Field(..., min_length=1)


class RawMention(StoryModel):
    entity_name: str
    text: str = Field(..., min_length=1)


class RawMergeSignal(StoryModel):
    extracted_entity_name: str
    registry_index: int
    confidence: MatchConfidence
    evidence: str = ""


class EntityExtractionResponse(StoryModel):
    entities: list[RawEntity] = Field(default_factory=list)
    facets: list[RawFacet] = Field(default_factory=list)
    mentions: list[RawMention] = Field(default_factory=list)
    merge_signals: list[RawMergeSignal] = Field(default_factory=list)


# --- Stage 5/6 response -----------------------------------------------------


class RawRelationship(StoryModel):
    """Untagged edge proposal; converted with ``storyschema.edge.parse_edge``."""

    from_id: str
    to_id: str
    edge_type: str
    description: str = ""
    strength: float | None = None


class RelationshipResponse(StoryModel):
    relationships: list[RawRelationship] = Field(default_factory=list)


# --- Stage 7 response -------------------------------------------------------


class RawNarrativeThread(StoryModel):
    name: str = Field(..., min_length=1)
    is_primary: bool = False
    event_ids: list[str] = Field(default_factory=list)
    description: str = ""


class ArcPhase(StoryModel):
    """One row of a character's arc, flattened as the service returns it."""

    character_id: str
    phase_index: int = Field(..., ge=0)
    phase_name: str
    arc_type: ArcType
    trigger_event_id: str | None = None
    state_facets: list[str] = Field(default_factory=list)


class HigherOrderResponse(StoryModel):
    narrative_threads: list[RawNarrativeThread] = Field(default_factory=list)
    arc_phases: list[ArcPhase] = Field(default_factory=list)


# --- Per-run records --------------------------------------------------------


class ExtractedMention(StoryModel):
    text: str


class ExtractedEntity(StoryModel):
    """One entity instance found in one segment, with its resolved id."""

    segment_id: str
    entity_id: str = Field(..., description="Id assigned by the registry in Stage 2")
    name: str
    type: EntityType
    document_order: int | None = None
    facets: list[FacetInput] = Field(default_factory=list)
    mentions: list[ExtractedMention] = Field(default_factory=list)


class MergeSignal(StoryModel):
    """A low-confidence identity claim kept for later review."""

    extracted_entity_name: str
    entity_id: str | None = Field(None, description="Id the extracted entity resolved to")
    registry_index: int
    confidence: MatchConfidence
    evidence: str = ""
