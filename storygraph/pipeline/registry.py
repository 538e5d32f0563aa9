"""Runtime entity registry for Stage 2.

The registry is the run-scoped accumulator of entities discovered so far. It
is owned by exactly one pipeline run and passed explicitly through each
segment step; it is never module-level state.

Before each segment, a bounded snapshot (the most-mentioned entries, with
aliases and a few representative facets) is sent to the extraction service.
After each segment, the answer is absorbed: entities the service matched with
``medium`` or ``high`` confidence accumulate onto the cited entry; anything
else becomes a new entry with the next ``registry_index``. A ``low``
confidence match never merges, and is kept as a merge signal for review.

When the service cites a registry index that does not exist, the registry
falls back to comparing name embeddings against same-type entries and merges
into the closest entry above the similarity threshold.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from storyschema.entity import EntityType, FacetInput
from storyschema.extraction import (
    EntityExtractionResponse,
    ExtractedEntity,
    ExtractedMention,
    MatchConfidence,
    MergeSignal,
    RawEntity,
)

from storygraph.storage.interfaces import GraphStoreInterface

from .embedding import EmbeddingGeneratorInterface
from .interfaces import RegistryEntry

logger = logging.getLogger(__name__)


def _normalize(name: str) -> str:
    return " ".join(name.lower().split())


@dataclass
class _Entry:
    registry_index: int
    id: str
    name: str
    type: EntityType
    aliases: list[str] = field(default_factory=list)
    facets: list[FacetInput] = field(default_factory=list)
    mention_count: int = 0
    embedding: tuple[float, ...] | None = None
    name_embedding: tuple[float, ...] | None = None

    @property
    def names(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)

    def absorb(self, name: str, facets: Sequence[FacetInput], mention_count: int) -> None:
        if name not in self.names:
            self.aliases.append(name)
        known = {f.key for f in self.facets}
        for facet in facets:
            if facet.key not in known:
                self.facets.append(facet)
                known.add(facet.key)
        self.mention_count += mention_count


class EntityRegistry:
    """Arena of registry entries keyed by entity id.

    Attributes:
        entity_id_by_name: Every literal name seen, mapped to the id it first
            resolved to.
        extracted_entities: One record per entity instance per segment, in
            document order.
        merge_signals: Low-confidence identity claims collected so far.
    """

    def __init__(
        self,
        embedding_generator: EmbeddingGeneratorInterface | None = None,
        match_threshold: float = 0.85,
        key_facet_count: int = 3,
    ):
        self.embedding_generator = embedding_generator
        self.match_threshold = match_threshold
        self.key_facet_count = key_facet_count
        self._entries: dict[str, _Entry] = {}
        self._by_index: dict[int, str] = {}
        self._by_name: dict[str, str] = {}
        self.entity_id_by_name: dict[str, str] = {}
        self.extracted_entities: list[ExtractedEntity] = []
        self.merge_signals: list[MergeSignal] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entries

    def names_of(self, entity_id: str) -> tuple[str, ...]:
        return self._entries[entity_id].names

    def index_map(self) -> dict[int, str]:
        return dict(self._by_index)

    def entry_at(self, registry_index: int) -> RegistryEntry | None:
        entity_id = self._by_index.get(registry_index)
        return self._view(self._entries[entity_id]) if entity_id else None

    def _view(self, entry: _Entry) -> RegistryEntry:
        return RegistryEntry(
            registry_index=entry.registry_index,
            id=entry.id,
            name=entry.name,
            type=entry.type,
            aliases=tuple(entry.aliases),
            key_facets=tuple(f.content for f in entry.facets[: self.key_facet_count]),
            mention_count=entry.mention_count,
        )

    def _add_entry(self, entity_id: str, name: str, entity_type: EntityType) -> _Entry:
        entry = _Entry(registry_index=len(self._by_index), id=entity_id, name=name, type=entity_type)
        self._entries[entity_id] = entry
        self._by_index[entry.registry_index] = entity_id
        self._by_name.setdefault(_normalize(name), entity_id)
        return entry

    async def seed_from_store(self, graph_store: GraphStoreInterface, document_id: str) -> None:
        """Rebuild entries from entities already persisted for the document."""
        for entity in await graph_store.list_entities(document_id):
            if entity.id in self._entries:
                continue
            entry = self._add_entry(entity.id, entity.name, entity.type)
            facets = await graph_store.get_facets(entity.id)
            entry.absorb(entity.name, [FacetInput(type=f.type, content=f.content) for f in facets], 0)
            entry.aliases.extend(a for a in entity.aliases if a not in entry.names)
            entry.mention_count = len(await graph_store.get_mentions(entity.id))
            entry.embedding = await graph_store.get_entity_embedding(entity.id)
            for name in entry.names:
                self.entity_id_by_name.setdefault(name, entity.id)
                self._by_name.setdefault(_normalize(name), entity.id)
        logger.info("Seeded registry with %d persisted entities for %s", len(self._entries), document_id)

    def snapshot(self, limit: int = 50, query_embedding: Sequence[float] | None = None) -> list[RegistryEntry]:
        """The entries to show the service for the next segment.

        Ranked by mention count, or, given a segment embedding, by similarity
        of each entry's stored embedding to it (entries without one rank last).
        """
        entries = list(self._entries.values())
        if query_embedding is not None:
            with_vec = [e for e in entries if e.embedding is not None]
            scores: dict[str, float] = {}
            if with_vec:
                sims = cosine_similarity(
                    np.asarray([query_embedding], dtype=float),
                    np.asarray([e.embedding for e in with_vec], dtype=float),
                )[0]
                scores = {e.id: float(s) for e, s in zip(with_vec, sims)}
            entries.sort(key=lambda e: (-scores.get(e.id, -2.0), -e.mention_count, e.registry_index))
        else:
            entries.sort(key=lambda e: (-e.mention_count, e.registry_index))
        return [self._view(e) for e in entries[:limit]]

    async def _closest_by_name(self, raw: RawEntity) -> _Entry | None:
        if self.embedding_generator is None:
            return None
        candidates = [e for e in self._entries.values() if e.type == raw.type]
        if not candidates:
            return None
        missing = [e for e in candidates if e.name_embedding is None]
        if missing:
            vectors = await self.embedding_generator.generate_batch([e.name for e in missing])
            for entry, vec in zip(missing, vectors):
                entry.name_embedding = vec
        query = await self.embedding_generator.generate(raw.name)
        sims = cosine_similarity(
            np.asarray([query], dtype=float),
            np.asarray([e.name_embedding for e in candidates], dtype=float),
        )[0]
        best = int(np.argmax(sims))
        if sims[best] >= self.match_threshold:
            return candidates[best]
        return None

    async def absorb(self, segment_id: str, response: EntityExtractionResponse) -> list[ExtractedEntity]:
        """Merge one segment's extraction into the registry.

        Returns the ExtractedEntity records produced for this segment, each
        carrying the id it resolved to.
        """
        produced: list[ExtractedEntity] = []
        signalled: set[tuple[str, int]] = set()

        for raw in response.entities:
            facets = [
                FacetInput(type=f.facet_type, content=f.content) for f in response.facets if f.entity_name == raw.name
            ]
            mentions = [ExtractedMention(text=m.text) for m in response.mentions if m.entity_name == raw.name]

            entry: _Entry | None = None
            low_match = None
            match = raw.existing_match
            if match is not None:
                cited_id = self._by_index.get(match.registry_index)
                cited = self._entries[cited_id] if cited_id else None
                if cited is None:
                    logger.warning(
                        "Entity %r cites registry index %d which does not exist", raw.name, match.registry_index
                    )
                    if match.confidence.merges:
                        cited = await self._closest_by_name(raw)
                        if cited is not None:
                            logger.info("Matched %r to %r by name similarity", raw.name, cited.name)
                if match.confidence.merges:
                    entry = cited
                else:
                    low_match = match
            elif _normalize(raw.name) in self._by_name:
                entry = self._entries[self._by_name[_normalize(raw.name)]]

            if entry is None:
                entry = self._add_entry(str(uuid.uuid4()), raw.name, raw.type)

            entry.absorb(raw.name, facets, len(mentions))
            self._by_name.setdefault(_normalize(raw.name), entry.id)
            self.entity_id_by_name.setdefault(raw.name, entry.id)
            if low_match is not None:
                self.merge_signals.append(
                    MergeSignal(
                        extracted_entity_name=raw.name,
                        entity_id=entry.id,
                        registry_index=low_match.registry_index,
                        confidence=MatchConfidence.LOW,
                        evidence=low_match.reason,
                    )
                )
                signalled.add((raw.name, low_match.registry_index))

            record = ExtractedEntity(
                segment_id=segment_id,
                entity_id=entry.id,
                name=raw.name,
                type=raw.type,
                document_order=raw.document_order,
                facets=facets,
                mentions=mentions,
            )
            produced.append(record)

        ids_here = {r.name: r.entity_id for r in produced}
        for signal in response.merge_signals:
            if (signal.extracted_entity_name, signal.registry_index) in signalled:
                continue
            signalled.add((signal.extracted_entity_name, signal.registry_index))
            self.merge_signals.append(
                MergeSignal(
                    extracted_entity_name=signal.extracted_entity_name,
                    entity_id=ids_here.get(signal.extracted_entity_name),
                    registry_index=signal.registry_index,
                    confidence=signal.confidence,
                    evidence=signal.evidence,
                )
            )

        self.extracted_entities.extend(produced)
        return produced
