"""Higher-order narrative analysis (Stage 7).

Thread candidates are found algorithmically: connected components of the
undirected graph over event entities whose edges are the causal edges
(``CAUSES``, ``ENABLES``, ``PREVENTS``). The extraction service then names
and refines them into narrative threads and splits each character's
involvement into ordered arc phases.

Arc phases are materialized per character as one Arc plus one State per
phase, in ascending ``phase_index``; only the last state is current.
Consecutive states are joined by a CHANGES_TO transition that carries the
destination phase's trigger event; a missing trigger on a non-initial phase
is flagged as a narrative gap.
"""

import heapq
import logging
import math
import uuid
from collections import defaultdict
from typing import Iterable, Mapping, Sequence

import numpy as np
from pydantic import BaseModel

from storyschema.edge import CAUSAL_EDGE_TYPES, CausalEdge, EdgeType
from storyschema.entity import EntityType, FacetType, StoryEntity
from storyschema.extraction import ArcPhase, ExtractedEntity
from storyschema.narrative import CharacterArc, CharacterState, NarrativeThread, StateTransition
from storyschema.segment import Segment

from storygraph.storage.interfaces import GraphStoreInterface

from .interfaces import CausalLink, CharacterSummary, EventSummary, ExtractionServiceInterface, ThreadCandidate

logger = logging.getLogger(__name__)


class AnalysisResult(BaseModel):
    model_config = {"frozen": True}

    skipped: bool = False
    threads_created: int = 0
    arcs_processed: int = 0
    states_created: int = 0
    gaps_detected: int = 0


def detect_thread_candidates(
    event_ids: Sequence[str],
    causal_pairs: Iterable[tuple[str, str]],
    characters_by_event: Mapping[str, Sequence[str]] | None = None,
) -> list[ThreadCandidate]:
    """Connected components over events, using causal edges as undirected links.

    Traversal is an explicit-stack depth-first search. Components are listed in
    the order of their first event, and events inside a component keep the
    order of ``event_ids``.
    """
    characters_by_event = characters_by_event or {}
    known = set(event_ids)
    adjacency: dict[str, set[str]] = {e: set() for e in event_ids}
    for a, b in causal_pairs:
        if a in known and b in known and a != b:
            adjacency[a].add(b)
            adjacency[b].add(a)

    position = {e: i for i, e in enumerate(event_ids)}
    visited: set[str] = set()
    candidates: list[ThreadCandidate] = []
    for start in event_ids:
        if start in visited:
            continue
        component: list[str] = []
        stack = [start]
        visited.add(start)
        while stack:
            node = stack.pop()
            component.append(node)
            for neighbour in adjacency[node]:
                if neighbour not in visited:
                    visited.add(neighbour)
                    stack.append(neighbour)
        component.sort(key=position.__getitem__)
        characters = dict.fromkeys(c for e in component for c in characters_by_event.get(e, ()))
        candidates.append(ThreadCandidate(event_ids=tuple(component), character_ids=tuple(characters)))
    return candidates


def compute_causal_order(
    node_ids: Sequence[str],
    causal_pairs: Iterable[tuple[str, str]],
    document_orders: Mapping[str, int | None] | None = None,
) -> dict[str, int]:
    """Topological positions via Kahn's algorithm.

    Ties are broken by document order (missing order sorts last), then by
    input order. Nodes caught in a cycle get no position.
    """
    document_orders = document_orders or {}
    known = set(node_ids)
    successors: dict[str, list[str]] = {n: [] for n in node_ids}
    in_degree = {n: 0 for n in node_ids}
    for a, b in causal_pairs:
        if a in known and b in known:
            successors[a].append(b)
            in_degree[b] += 1

    seq = 0

    def rank(node: str) -> tuple[float, int]:
        order = document_orders.get(node)
        return (math.inf if order is None else order, seq)

    heap: list[tuple[float, int, str]] = []
    for node in node_ids:
        if in_degree[node] == 0:
            heapq.heappush(heap, (*rank(node), node))
            seq += 1

    positions: dict[str, int] = {}
    while heap:
        _, _, node = heapq.heappop(heap)
        positions[node] = len(positions)
        for nxt in successors[node]:
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                heapq.heappush(heap, (*rank(nxt), nxt))
                seq += 1

    if len(positions) < len(known):
        logger.warning("Cycle in causal graph: %d nodes excluded from ordering", len(known) - len(positions))
    return positions


def _facets_match(state_facet: str, facet_content: str) -> bool:
    a, b = state_facet.lower().strip(), facet_content.lower().strip()
    return bool(a and b) and (a in b or b in a)


def _order_key(entity: StoryEntity) -> float:
    return math.inf if entity.document_order is None else entity.document_order


class HigherOrderAnalyzer:
    """Builds the Stage 7 context, calls the service and persists the answer."""

    def __init__(self, service: ExtractionServiceInterface, graph_store: GraphStoreInterface):
        self.service = service
        self.graph_store = graph_store

    async def _context(
        self,
        document_id: str,
        events: list[StoryEntity],
        extracted: Sequence[ExtractedEntity],
        segments: Sequence[Segment],
    ) -> tuple[list[EventSummary], list[CharacterSummary], list[ThreadCandidate], list[tuple[str, str]]]:
        characters = await self.graph_store.list_entities(document_id, EntityType.CHARACTER)
        character_ids = {c.id for c in characters}
        event_ids = {e.id for e in events}

        causal = [
            e
            for e in await self.graph_store.list_edges(document_id, sorted(CAUSAL_EDGE_TYPES))
            if isinstance(e, CausalEdge)
        ]
        participates = await self.graph_store.list_edges(document_id, [EdgeType.PARTICIPATES_IN])

        characters_by_event: dict[str, list[str]] = defaultdict(list)
        events_by_character: dict[str, list[str]] = defaultdict(list)
        for edge in participates:
            pair = (edge.from_id, edge.to_id)
            for character_id, event_id in (pair, pair[::-1]):
                if character_id in character_ids and event_id in event_ids:
                    if character_id not in characters_by_event[event_id]:
                        characters_by_event[event_id].append(character_id)
                        events_by_character[character_id].append(event_id)

        causal_by_source: dict[str, list[CausalLink]] = defaultdict(list)
        for edge in causal:
            causal_by_source[edge.from_id].append(
                CausalLink(edge_type=edge.edge_type, target_id=edge.to_id, strength=edge.strength)
            )

        event_summaries = [
            EventSummary(
                id=e.id,
                name=e.name,
                document_order=e.document_order if e.document_order is not None else i,
                connected_character_ids=tuple(characters_by_event.get(e.id, ())),
                causal_edges=tuple(causal_by_source.get(e.id, ())),
            )
            for i, e in enumerate(events)
        ]

        segment_index = {s.id: i for i, s in enumerate(segments)}
        character_summaries: list[CharacterSummary] = []
        for character in characters:
            states: dict[int, list[str]] = defaultdict(list)
            for record in extracted:
                if record.entity_id != character.id or record.segment_id not in segment_index:
                    continue
                for facet in record.facets:
                    if facet.type == FacetType.STATE:
                        states[segment_index[record.segment_id]].append(facet.content)
            character_summaries.append(
                CharacterSummary(
                    id=character.id,
                    name=character.name,
                    participates_in_event_ids=tuple(events_by_character.get(character.id, ())),
                    state_facets_by_segment=tuple((idx, tuple(s)) for idx, s in sorted(states.items())),
                )
            )

        pairs = [(e.from_id, e.to_id) for e in causal]
        candidates = detect_thread_candidates([e.id for e in events], pairs, characters_by_event)
        return event_summaries, character_summaries, candidates, pairs

    async def analyze(
        self,
        document_id: str,
        extracted: Sequence[ExtractedEntity],
        segments: Sequence[Segment],
        document_summary: str | None = None,
    ) -> AnalysisResult:
        events = sorted(await self.graph_store.list_entities(document_id, EntityType.EVENT), key=_order_key)
        if len(events) < 2:
            logger.info("Skipping higher-order analysis: %d events", len(events))
            return AnalysisResult(skipped=True)

        event_summaries, characters, candidates, pairs = await self._context(document_id, events, extracted, segments)
        logger.info("Detected %d thread candidates over %d events", len(candidates), len(events))

        response = await self.service.analyze_higher_order(event_summaries, characters, candidates, document_summary)

        threads_created = 0
        for thread in response.narrative_threads:
            stored, created = await self.graph_store.create_thread(
                NarrativeThread(
                    id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"thread:{document_id}:{thread.name}")),
                    document_id=document_id,
                    name=thread.name,
                    is_primary=thread.is_primary,
                    description=thread.description,
                )
            )
            if created:
                threads_created += 1
                for order, event_id in enumerate(dict.fromkeys(thread.event_ids)):
                    await self.graph_store.link_thread_event(stored.id, event_id, order)

        causal_positions = compute_causal_order(
            [e.id for e in events], pairs, {e.id: e.document_order for e in events}
        )
        document_orders = {e.id: e.document_order for e in events}
        arcs, states, gaps = await self.process_character_arcs(
            document_id, response.arc_phases, document_orders, causal_positions
        )
        return AnalysisResult(
            threads_created=threads_created,
            arcs_processed=arcs,
            states_created=states,
            gaps_detected=gaps,
        )

    async def process_character_arcs(
        self,
        document_id: str,
        phases: Sequence[ArcPhase],
        document_orders: Mapping[str, int | None],
        causal_positions: Mapping[str, int] | None = None,
    ) -> tuple[int, int, int]:
        """Persist arcs, states and transitions. Returns (arcs, states created, gaps)."""
        causal_positions = causal_positions or {}
        by_character: dict[str, list[ArcPhase]] = defaultdict(list)
        for phase in phases:
            by_character[phase.character_id].append(phase)

        states_created = gaps = 0
        for character_id, character_phases in by_character.items():
            character_phases.sort(key=lambda p: p.phase_index)
            arc, _ = await self.graph_store.create_arc(
                CharacterArc(
                    id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"arc:{document_id}:{character_id}")),
                    document_id=document_id,
                    character_id=character_id,
                    arc_type=character_phases[0].arc_type,
                )
            )
            facets = await self.graph_store.get_facets(character_id)

            previous: CharacterState | None = None
            for i, phase in enumerate(character_phases):
                linked = [f for f in facets if any(_facets_match(s, f.content) for s in phase.state_facets)]
                vectors = [f.embedding for f in linked if f.embedding is not None]
                trigger = phase.trigger_event_id
                trigger_order = document_orders.get(trigger) if trigger else None
                state = CharacterState(
                    id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"state:{arc.id}:{phase.phase_index}")),
                    arc_id=arc.id,
                    character_id=character_id,
                    phase_index=phase.phase_index,
                    phase_name=phase.phase_name,
                    document_order=trigger_order if trigger_order is not None else phase.phase_index,
                    causal_order=causal_positions.get(trigger, phase.phase_index) if trigger else phase.phase_index,
                    is_current=i == len(character_phases) - 1,
                    facet_ids=tuple(f.id for f in linked),
                    embedding=tuple(float(x) for x in np.mean(np.asarray(vectors, dtype=float), axis=0))
                    if vectors
                    else None,
                )
                if await self.graph_store.create_state(state):
                    states_created += 1
                if previous is not None:
                    gap = trigger is None
                    gaps += gap
                    await self.graph_store.create_state_transition(
                        StateTransition(
                            from_state_id=previous.id,
                            to_state_id=state.id,
                            trigger_event_id=trigger,
                            gap_detected=gap,
                        )
                    )
                previous = state

        logger.info("Processed %d character arcs (%d states, %d gaps)", len(by_character), states_created, gaps)
        return len(by_character), states_created, gaps
