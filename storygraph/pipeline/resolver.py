"""Text grounding (Stage 3) and entity creation (Stage 4).

Grounding locates every extracted mention quote inside the text of the
segment it came from. Quotes that cannot be found verbatim cannot be anchored
to the document and are dropped.

Creation turns the registry's output into durable graph state, one resolved
id at a time:

1. Union the facets of every instance sharing the id, deduplicated by
   ``(type, content)``.
2. If the entity does not exist, create it keyed by its pre-assigned id and
   embed its facets. Creation is create-or-no-op, so re-running the stage
   after a crash never duplicates anything.
3. If it already exists, add aliases and only the facets whose content it
   does not already have.
4. Persist the grounded mentions, then recompute the entity embedding as the
   mention-weighted mean of its facet embeddings.
"""

import logging
import uuid
from collections import defaultdict
from typing import Sequence

import numpy as np
from pydantic import BaseModel, Field

from storyschema.entity import Facet, FacetInput, Mention, MentionSource, StoryEntity
from storyschema.extraction import ExtractedEntity
from storyschema.segment import Segment

from storygraph.storage.interfaces import GraphStoreInterface

from .embedding import EmbeddingGeneratorInterface

logger = logging.getLogger(__name__)


class GroundedMention(BaseModel):
    model_config = {"frozen": True}

    entity_id: str
    segment_id: str
    text: str
    relative_start: int
    relative_end: int
    absolute_start: int
    absolute_end: int


class GroundingReport(BaseModel):
    model_config = {"frozen": True}

    mentions: list[GroundedMention] = Field(default_factory=list)
    dropped: int = 0

    def for_entity(self, entity_id: str) -> list[GroundedMention]:
        return [m for m in self.mentions if m.entity_id == entity_id]


class CreationResult(BaseModel):
    model_config = {"frozen": True}

    entity_ids: list[str] = Field(default_factory=list, description="Unique resolved ids in first-seen order")
    created: int = 0
    augmented: int = 0
    facets_added: int = 0
    mentions_added: int = 0


def ground_mentions(
    extracted: Sequence[ExtractedEntity],
    segments: Sequence[Segment],
    document_content: str,
) -> GroundingReport:
    """Anchor every mention quote to an absolute document offset.

    A quote repeated within one segment is matched to successive occurrences.
    """
    by_id = {s.id: s for s in segments}
    next_search: dict[tuple[str, str], int] = defaultdict(int)
    grounded: list[GroundedMention] = []
    dropped = 0
    for entity in extracted:
        segment = by_id.get(entity.segment_id)
        if segment is None:
            dropped += len(entity.mentions)
            continue
        segment_text = segment.text_of(document_content)
        for mention in entity.mentions:
            key = (segment.id, mention.text)
            index = segment_text.find(mention.text, next_search[key])
            if index == -1:
                index = segment_text.find(mention.text)
            if index == -1 or not mention.text:
                dropped += 1
                continue
            next_search[key] = index + 1
            grounded.append(
                GroundedMention(
                    entity_id=entity.entity_id,
                    segment_id=segment.id,
                    text=mention.text,
                    relative_start=index,
                    relative_end=index + len(mention.text),
                    absolute_start=segment.start + index,
                    absolute_end=segment.start + index + len(mention.text),
                )
            )
    return GroundingReport(mentions=grounded, dropped=dropped)


def _facet_id(entity_id: str, facet: FacetInput) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"facet:{entity_id}:{facet.type.value}:{facet.content}"))


def _mention_id(entity_id: str, start: int, end: int, version: int) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"mention:{entity_id}:{start}:{end}:{version}"))


def mention_weighted_embedding(facets: Sequence[Facet], mentions: Sequence[Mention]) -> tuple[float, ...] | None:
    """Weighted mean of facet embeddings.

    Each facet weighs 1 plus the number of mentions whose quote contains the
    facet content (case-insensitive). Facets without embeddings are ignored.
    """
    embedded = [f for f in facets if f.embedding is not None]
    if not embedded:
        return None
    quotes = [m.text.lower() for m in mentions]
    weights = np.asarray([1 + sum(f.content.lower() in q for q in quotes) for f in embedded], dtype=float)
    matrix = np.asarray([f.embedding for f in embedded], dtype=float)
    return tuple(float(x) for x in np.average(matrix, axis=0, weights=weights))


class EntityCreator:
    """Persists resolved entities, facets and mentions idempotently."""

    def __init__(self, graph_store: GraphStoreInterface, embedding_generator: EmbeddingGeneratorInterface):
        self.graph_store = graph_store
        self.embedding_generator = embedding_generator

    async def _create(self, entity: StoryEntity, facets: list[FacetInput]) -> tuple[bool, int]:
        created = await self.graph_store.create_entity(entity)
        if not created:
            return False, 0
        vectors = await self.embedding_generator.generate_batch([f.content for f in facets]) if facets else []
        added = await self.graph_store.add_facets(
            [
                Facet(id=_facet_id(entity.id, f), entity_id=entity.id, type=f.type, content=f.content, embedding=v)
                for f, v in zip(facets, vectors)
            ]
        )
        return True, len(added)

    async def _augment(self, entity_id: str, aliases: Sequence[str], facets: list[FacetInput]) -> int:
        if aliases:
            await self.graph_store.add_aliases(entity_id, aliases)
        existing = {f.content for f in await self.graph_store.get_facets(entity_id)}
        new = [f for f in facets if f.content not in existing]
        added = await self.graph_store.add_facets(
            [Facet(id=_facet_id(entity_id, f), entity_id=entity_id, type=f.type, content=f.content) for f in new]
        )
        return len(added)

    async def recompute_embedding(self, entity_id: str) -> tuple[float, ...] | None:
        facets = await self.graph_store.get_facets(entity_id)
        mentions = await self.graph_store.get_mentions(entity_id)
        embedding = mention_weighted_embedding(facets, mentions)
        if embedding is not None:
            await self.graph_store.set_entity_embedding(entity_id, embedding)
        return embedding

    async def create_entities(
        self,
        document_id: str,
        user_id: str,
        extracted: Sequence[ExtractedEntity],
        grounding: GroundingReport,
        version_number: int,
    ) -> CreationResult:
        instances: dict[str, list[ExtractedEntity]] = defaultdict(list)
        for record in extracted:
            instances[record.entity_id].append(record)

        created_count = augmented = facets_added = mentions_added = 0
        for entity_id, group in instances.items():
            first = group[0]
            names = list(dict.fromkeys(r.name for r in group))
            facets = list({f.key: f for r in group for f in r.facets}.values())
            orders = [r.document_order for r in group if r.document_order is not None]

            existing = await self.graph_store.get_entity(entity_id)
            created = False
            if existing is None:
                entity = StoryEntity(
                    id=entity_id,
                    document_id=document_id,
                    user_id=user_id,
                    type=first.type,
                    name=first.name,
                    aliases=tuple(names[1:]),
                    document_order=min(orders) if orders else None,
                )
                created, added = await self._create(entity, facets)
                facets_added += added
            if created:
                created_count += 1
            else:
                facets_added += await self._augment(entity_id, names, facets)
                augmented += 1

            for gm in grounding.for_entity(entity_id):
                mention = Mention(
                    id=_mention_id(entity_id, gm.absolute_start, gm.absolute_end, version_number),
                    entity_id=entity_id,
                    document_id=document_id,
                    segment_id=gm.segment_id,
                    relative_start=gm.relative_start,
                    relative_end=gm.relative_end,
                    absolute_start=gm.absolute_start,
                    absolute_end=gm.absolute_end,
                    text=gm.text,
                    version_number=version_number,
                    source=MentionSource.EXTRACTION,
                    confidence=100,
                )
                if await self.graph_store.add_mention(mention):
                    mentions_added += 1

            await self.recompute_embedding(entity_id)

        logger.info(
            "Created %d entities, augmented %d, added %d facets and %d mentions",
            created_count,
            augmented,
            facets_added,
            mentions_added,
        )
        return CreationResult(
            entity_ids=list(instances),
            created=created_count,
            augmented=augmented,
            facets_added=facets_added,
            mentions_added=mentions_added,
        )
