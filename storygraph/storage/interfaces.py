"""Storage interface definitions for the story graph pipeline.

The pipeline talks to four collaborators, all async:

- **GraphStoreInterface**: the long-lived owner of entities, facets, mentions,
  edges, threads, arcs and states. Every write is individually idempotent so
  a resumed or partially retried run never double-creates state.
- **DocumentStoreInterface**: the document record's version, analysis status
  and stored checkpoint.
- **SentenceStoreInterface**: sentence embeddings computed in Stage 1.
- **ProgressChannelInterface**: one-way, best-effort progress broadcast.
"""

from abc import ABC, abstractmethod
from typing import Any, Sequence

from storyschema.document import AnalysisStatus
from storyschema.edge import EdgeType, StoryEdge
from storyschema.entity import EntityType, Facet, Mention, StoryEntity
from storyschema.narrative import CharacterArc, CharacterState, NarrativeThread, StateTransition
from storyschema.segment import Sentence


class GraphStoreInterface(ABC):
    """Abstract interface for the story graph store."""

    # --- entities ---

    @abstractmethod
    async def create_entity(self, entity: StoryEntity) -> bool:
        """Create the entity keyed by its caller-supplied id.

        Returns True if it was created, False if an entity with that id
        already existed (no-op, not an error).
        """

    @abstractmethod
    async def get_entity(self, entity_id: str) -> StoryEntity | None:
        """Retrieve an entity by id, or None."""

    @abstractmethod
    async def list_entities(
        self,
        document_id: str,
        entity_type: EntityType | None = None,
    ) -> list[StoryEntity]:
        """Entities of one document in creation order, optionally filtered by type."""

    @abstractmethod
    async def add_aliases(self, entity_id: str, aliases: Sequence[str]) -> StoryEntity:
        """Append aliases not already present; returns the updated entity."""

    # --- facets, mentions, embeddings ---

    @abstractmethod
    async def add_facets(self, facets: Sequence[Facet]) -> list[Facet]:
        """Persist facets, skipping any whose (type, content) the entity already has.

        Returns the facets actually added.
        """

    @abstractmethod
    async def get_facets(self, entity_id: str) -> list[Facet]:
        """Facets of one entity in insertion order."""

    @abstractmethod
    async def add_mention(self, mention: Mention) -> bool:
        """Persist a mention; returns False if an identical one exists."""

    @abstractmethod
    async def get_mentions(self, entity_id: str) -> list[Mention]:
        """Mentions of one entity in insertion order."""

    @abstractmethod
    async def set_entity_embedding(self, entity_id: str, embedding: tuple[float, ...]) -> None:
        """Replace the aggregate embedding of an entity."""

    @abstractmethod
    async def get_entity_embedding(self, entity_id: str) -> tuple[float, ...] | None:
        """Aggregate embedding of an entity, if computed."""

    # --- edges ---

    @abstractmethod
    async def would_create_cycle(self, from_id: str, to_id: str) -> bool:
        """True if a causal edge from_id -> to_id would close a causal cycle."""

    @abstractmethod
    async def create_edge(self, edge: StoryEdge) -> bool:
        """Insert an edge idempotently, keyed by (from_id, to_id, edge_type).

        Returns True if created, False if already present.

        Raises:
            CausalCycleError: a causal edge would close a cycle.
            UnknownEntityError: either endpoint is not stored.
        """

    @abstractmethod
    async def list_edges(
        self,
        document_id: str,
        edge_types: Sequence[EdgeType] | None = None,
    ) -> list[StoryEdge]:
        """Edges whose source entity belongs to the document."""

    # --- narrative structure ---

    @abstractmethod
    async def create_thread(self, thread: NarrativeThread) -> tuple[NarrativeThread, bool]:
        """Create a thread unless one with the same name exists for the document.

        Returns (stored thread, created).
        """

    @abstractmethod
    async def link_thread_event(self, thread_id: str, event_id: str, order: int) -> None:
        """Attach an event to a thread at a position; idempotent per (thread, event)."""

    @abstractmethod
    async def get_thread_events(self, thread_id: str) -> list[str]:
        """Event ids of a thread in ascending order."""

    @abstractmethod
    async def list_threads(self, document_id: str) -> list[NarrativeThread]:
        """Threads of one document."""

    @abstractmethod
    async def create_arc(self, arc: CharacterArc) -> tuple[CharacterArc, bool]:
        """Create the arc unless the character already has one; returns (arc, created)."""

    @abstractmethod
    async def create_state(self, state: CharacterState) -> bool:
        """Create a state keyed by (arc_id, phase_index); returns created."""

    @abstractmethod
    async def get_states(self, arc_id: str) -> list[CharacterState]:
        """States of an arc in ascending phase order."""

    @abstractmethod
    async def create_state_transition(self, transition: StateTransition) -> bool:
        """Create a CHANGES_TO edge between two states; returns created."""

    @abstractmethod
    async def list_arcs(self, document_id: str) -> list[CharacterArc]:
        """Arcs of one document."""


class DocumentStoreInterface(ABC):
    """Abstract interface for the document fields the pipeline uses."""

    @abstractmethod
    async def get_version(self, document_id: str) -> int | None:
        """Current content version, or None if the document is unknown."""

    @abstractmethod
    async def get_analysis_status(self, document_id: str) -> AnalysisStatus | None:
        """Status polled before every stage."""

    @abstractmethod
    async def set_analysis_status(self, document_id: str, status: AnalysisStatus) -> None:
        """Update the status (used by callers and tests to pause or cancel)."""

    @abstractmethod
    async def get_checkpoint(self, document_id: str) -> dict[str, Any] | None:
        """Raw stored checkpoint payload."""

    @abstractmethod
    async def set_checkpoint(self, document_id: str, checkpoint: dict[str, Any] | None) -> None:
        """Store (or with None, clear) the checkpoint payload."""


class SentenceStoreInterface(ABC):
    @abstractmethod
    async def save_sentences(self, document_id: str, sentences: Sequence[Sentence]) -> None:
        """Replace all stored sentences of a document."""

    @abstractmethod
    async def get_by_segment_ids(self, document_id: str, segment_ids: Sequence[str]) -> list[Sentence]:
        """Sentences of the given segments, in document order."""


class ProgressChannelInterface(ABC):
    @abstractmethod
    async def publish(self, document_id: str, event: dict[str, Any]) -> None:
        """Broadcast one progress event. Delivery is best-effort."""
