"""Story entities and the evidence attached to them.

- **StoryEntity**: a node of the story graph (character, location, event,
  concept, other). The UUID assigned at first discovery is the durable
  identity; names and aliases are only labels.
- **Facet**: a short typed attribute. Facets are append-only and are
  deduplicated by ``(type, content)`` before persistence.
- **Mention**: a verbatim quote anchored to an absolute document offset.
  Mentions are evidence and are never mutated after creation.
"""

from enum import Enum

from pydantic import Field

from storyschema.base import StoryModel


class EntityType(str, Enum):
    CHARACTER = "character"
    LOCATION = "location"
    EVENT = "event"
    CONCEPT = "concept"
    OTHER = "other"


class FacetType(str, Enum):
    NAME = "name"
    APPEARANCE = "appearance"
    TRAIT = "trait"
    STATE = "state"
    """Temporary condition; state facets feed character arcs."""


class MentionSource(str, Enum):
    EXTRACTION = "extraction"
    NAME_MATCH = "name_match"
    REFERENCE = "reference"
    SEMANTIC = "semantic"


class FacetInput(StoryModel):
    """A facet as proposed by extraction, before it has an id."""

    type: FacetType
    content: str = Field(..., min_length=1)

    @property
    def key(self) -> tuple[str, str]:
        """Exact-match deduplication key."""
        return (self.type.value, self.content)


class Facet(FacetInput):
    """A persisted facet owned by one entity."""

    id: str
    entity_id: str
    embedding: tuple[float, ...] | None = None


class StoryEntity(StoryModel):
    """A story node scoped to one document."""

    id: str = Field(..., description="UUID assigned at first discovery")
    document_id: str
    user_id: str
    type: EntityType
    name: str
    aliases: tuple[str, ...] = ()
    document_order: int | None = Field(None, description="Narrative order, mostly for events")


class Mention(StoryModel):
    """A verbatim quote evidencing an entity's presence in the text."""

    id: str
    entity_id: str
    document_id: str
    segment_id: str
    relative_start: int = Field(..., ge=0, description="Offset inside the segment")
    relative_end: int = Field(..., ge=0)
    absolute_start: int = Field(..., ge=0, description="Offset inside the document")
    absolute_end: int = Field(..., ge=0)
    text: str
    version_number: int = Field(..., description="Document version the quote was extracted under")
    source: MentionSource = MentionSource.EXTRACTION
    confidence: int = Field(100, ge=0, le=100)
