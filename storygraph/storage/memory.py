"""In-memory storage implementations for testing and development.

Dictionary-based implementations of the storage interfaces. Suitable for unit
tests, development and small documents. Nothing is persisted, and there is no
concurrency control: the surrounding system must not run two analyses of the
same document at once.

The graph store enforces the same contract a database-backed store must:
idempotent writes keyed by caller-supplied ids, exact-match facet
deduplication, and rejection of causal edges that would close a cycle.
"""

from collections import defaultdict, deque
from typing import Any, Sequence

from storyschema.document import AnalysisStatus, DocumentRecord
from storyschema.edge import CAUSAL_EDGE_TYPES, EdgeType, StoryEdge
from storyschema.entity import EntityType, Facet, Mention, StoryEntity
from storyschema.narrative import CharacterArc, CharacterState, NarrativeThread, StateTransition
from storyschema.segment import Sentence

from storygraph.errors import CausalCycleError, UnknownEntityError
from storygraph.storage.interfaces import (
    DocumentStoreInterface,
    GraphStoreInterface,
    ProgressChannelInterface,
    SentenceStoreInterface,
)


class InMemoryGraphStore(GraphStoreInterface):
    """Story graph held in plain dicts.

    Example:
        ```python
        store = InMemoryGraphStore()
        created = await store.create_entity(entity)
        await store.create_edge(edge)
        ```
    """

    def __init__(self) -> None:
        self._entities: dict[str, StoryEntity] = {}
        self._facets: dict[str, list[Facet]] = defaultdict(list)
        self._mentions: dict[str, list[Mention]] = defaultdict(list)
        self._embeddings: dict[str, tuple[float, ...]] = {}
        self._edges: dict[tuple[str, str, str], StoryEdge] = {}
        self._causal_out: dict[str, set[str]] = defaultdict(set)
        self._threads: dict[str, NarrativeThread] = {}
        self._thread_events: dict[str, dict[str, int]] = defaultdict(dict)
        self._arcs: dict[str, CharacterArc] = {}
        self._states: dict[tuple[str, int], CharacterState] = {}
        self._transitions: dict[tuple[str, str], StateTransition] = {}

    # --- entities ---

    async def create_entity(self, entity: StoryEntity) -> bool:
        if entity.id in self._entities:
            return False
        self._entities[entity.id] = entity
        return True

    async def get_entity(self, entity_id: str) -> StoryEntity | None:
        return self._entities.get(entity_id)

    async def list_entities(
        self,
        document_id: str,
        entity_type: EntityType | None = None,
    ) -> list[StoryEntity]:
        return [
            e
            for e in self._entities.values()
            if e.document_id == document_id and (entity_type is None or e.type == entity_type)
        ]

    async def add_aliases(self, entity_id: str, aliases: Sequence[str]) -> StoryEntity:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise UnknownEntityError(f"Unknown entity {entity_id}")
        known = {entity.name, *entity.aliases}
        new = [a for a in dict.fromkeys(aliases) if a not in known]
        if new:
            entity = entity.model_copy(update={"aliases": entity.aliases + tuple(new)})
            self._entities[entity_id] = entity
        return entity

    # --- facets, mentions, embeddings ---

    async def add_facets(self, facets: Sequence[Facet]) -> list[Facet]:
        added: list[Facet] = []
        for facet in facets:
            if facet.entity_id not in self._entities:
                raise UnknownEntityError(f"Unknown entity {facet.entity_id}")
            existing = self._facets[facet.entity_id]
            if any(f.key == facet.key for f in existing):
                continue
            existing.append(facet)
            added.append(facet)
        return added

    async def get_facets(self, entity_id: str) -> list[Facet]:
        return list(self._facets.get(entity_id, ()))

    async def add_mention(self, mention: Mention) -> bool:
        existing = self._mentions[mention.entity_id]
        for m in existing:
            if (m.absolute_start, m.absolute_end, m.version_number) == (
                mention.absolute_start,
                mention.absolute_end,
                mention.version_number,
            ):
                return False
        existing.append(mention)
        return True

    async def get_mentions(self, entity_id: str) -> list[Mention]:
        return list(self._mentions.get(entity_id, ()))

    async def set_entity_embedding(self, entity_id: str, embedding: tuple[float, ...]) -> None:
        self._embeddings[entity_id] = tuple(embedding)

    async def get_entity_embedding(self, entity_id: str) -> tuple[float, ...] | None:
        return self._embeddings.get(entity_id)

    # --- edges ---

    async def would_create_cycle(self, from_id: str, to_id: str) -> bool:
        """Breadth-first search for an existing causal path to_id -> from_id."""
        if from_id == to_id:
            return True
        seen = {to_id}
        queue = deque([to_id])
        while queue:
            node = queue.popleft()
            for nxt in self._causal_out.get(node, ()):
                if nxt == from_id:
                    return True
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        return False

    async def create_edge(self, edge: StoryEdge) -> bool:
        for endpoint in (edge.from_id, edge.to_id):
            if endpoint not in self._entities:
                raise UnknownEntityError(f"Unknown entity {endpoint}")
        if edge.key in self._edges:
            return False
        if edge.edge_type in CAUSAL_EDGE_TYPES:
            if await self.would_create_cycle(edge.from_id, edge.to_id):
                raise CausalCycleError(edge.from_id, edge.to_id)
            self._causal_out[edge.from_id].add(edge.to_id)
        self._edges[edge.key] = edge
        return True

    async def list_edges(
        self,
        document_id: str,
        edge_types: Sequence[EdgeType] | None = None,
    ) -> list[StoryEdge]:
        wanted = set(edge_types) if edge_types is not None else None
        return [
            e
            for e in self._edges.values()
            if self._entities[e.from_id].document_id == document_id
            and (wanted is None or e.edge_type in wanted)
        ]

    # --- narrative structure ---

    async def create_thread(self, thread: NarrativeThread) -> tuple[NarrativeThread, bool]:
        for existing in self._threads.values():
            if existing.document_id == thread.document_id and existing.name == thread.name:
                return existing, False
        self._threads[thread.id] = thread
        return thread, True

    async def link_thread_event(self, thread_id: str, event_id: str, order: int) -> None:
        if thread_id not in self._threads:
            raise UnknownEntityError(f"Unknown thread {thread_id}")
        if event_id not in self._entities:
            raise UnknownEntityError(f"Unknown entity {event_id}")
        self._thread_events[thread_id].setdefault(event_id, order)

    async def get_thread_events(self, thread_id: str) -> list[str]:
        links = self._thread_events.get(thread_id, {})
        return sorted(links, key=links.__getitem__)

    async def list_threads(self, document_id: str) -> list[NarrativeThread]:
        return [t for t in self._threads.values() if t.document_id == document_id]

    async def create_arc(self, arc: CharacterArc) -> tuple[CharacterArc, bool]:
        for existing in self._arcs.values():
            if existing.character_id == arc.character_id:
                return existing, False
        if arc.character_id not in self._entities:
            raise UnknownEntityError(f"Unknown entity {arc.character_id}")
        self._arcs[arc.id] = arc
        return arc, True

    async def create_state(self, state: CharacterState) -> bool:
        key = (state.arc_id, state.phase_index)
        if key in self._states:
            return False
        self._states[key] = state
        return True

    async def get_states(self, arc_id: str) -> list[CharacterState]:
        states = [s for (a, _), s in self._states.items() if a == arc_id]
        return sorted(states, key=lambda s: s.phase_index)

    async def create_state_transition(self, transition: StateTransition) -> bool:
        key = (transition.from_state_id, transition.to_state_id)
        if key in self._transitions:
            return False
        self._transitions[key] = transition
        return True

    async def get_state_transitions(self, arc_id: str) -> list[StateTransition]:
        """Transitions between states of one arc, in phase order."""
        state_ids = [s.id for s in await self.get_states(arc_id)]
        order = {sid: i for i, sid in enumerate(state_ids)}
        found = [t for t in self._transitions.values() if t.from_state_id in order]
        return sorted(found, key=lambda t: order[t.from_state_id])

    async def list_arcs(self, document_id: str) -> list[CharacterArc]:
        return [a for a in self._arcs.values() if a.document_id == document_id]


class InMemoryDocumentStore(DocumentStoreInterface):
    """Document records keyed by id."""

    def __init__(self) -> None:
        self._documents: dict[str, DocumentRecord] = {}

    def add(self, record: DocumentRecord) -> None:
        self._documents[record.document_id] = record

    def get(self, document_id: str) -> DocumentRecord | None:
        return self._documents.get(document_id)

    def _update(self, document_id: str, **changes: Any) -> None:
        record = self._documents.get(document_id) or DocumentRecord(document_id=document_id)
        self._documents[document_id] = record.model_copy(update=changes)

    async def get_version(self, document_id: str) -> int | None:
        record = self._documents.get(document_id)
        return record.version if record else None

    async def get_analysis_status(self, document_id: str) -> AnalysisStatus | None:
        record = self._documents.get(document_id)
        return record.analysis_status if record else None

    async def set_analysis_status(self, document_id: str, status: AnalysisStatus) -> None:
        self._update(document_id, analysis_status=status)

    async def get_checkpoint(self, document_id: str) -> dict[str, Any] | None:
        record = self._documents.get(document_id)
        return record.analysis_checkpoint if record else None

    async def set_checkpoint(self, document_id: str, checkpoint: dict[str, Any] | None) -> None:
        self._update(document_id, analysis_checkpoint=checkpoint)


class InMemorySentenceStore(SentenceStoreInterface):
    def __init__(self) -> None:
        self._sentences: dict[str, list[Sentence]] = {}

    async def save_sentences(self, document_id: str, sentences: Sequence[Sentence]) -> None:
        self._sentences[document_id] = sorted(sentences, key=lambda s: s.start)

    async def get_by_segment_ids(self, document_id: str, segment_ids: Sequence[str]) -> list[Sentence]:
        wanted = set(segment_ids)
        return [s for s in self._sentences.get(document_id, ()) if s.segment_id in wanted]

    async def count(self, document_id: str) -> int:
        return len(self._sentences.get(document_id, ()))


class InMemoryProgressChannel(ProgressChannelInterface):
    """Records every published event; handy for asserting progress in tests."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, document_id: str, event: dict[str, Any]) -> None:
        self.events.append((document_id, event))

    def stages(self, document_id: str) -> list[int]:
        return [e["stage"] for d, e in self.events if d == document_id]
