"""Relationship extraction (Stages 5 and 6) and the graph writer.

Stage 5 asks, per segment with at least two resolved entities, for edges
evidenced strictly within that segment. Stage 6 asks once for edges evidenced
across segments, but only when some entity appears in more than one segment;
when every entity is confined to a single segment the pass is skipped, even
though cross-segment relations between such entities could exist.

Both stages write through ``GraphWriter``: a causal edge that would close a
cycle is dropped without failing the stage, and any other store error on a
single edge is logged and that edge skipped.
"""

import logging
from collections import defaultdict
from typing import Sequence

from pydantic import BaseModel

from storyschema.edge import CausalEdge, StructuralEdge
from storyschema.extraction import ExtractedEntity
from storyschema.segment import Segment

from storygraph.errors import CausalCycleError, GraphStoreError
from storygraph.storage.interfaces import GraphStoreInterface

from .interfaces import EntityContext, ExtractionServiceInterface

logger = logging.getLogger(__name__)


class WriteReport(BaseModel):
    written: int = 0
    already_present: int = 0
    dropped_cycles: int = 0
    failed: int = 0

    def merge(self, other: "WriteReport") -> "WriteReport":
        return WriteReport(
            written=self.written + other.written,
            already_present=self.already_present + other.already_present,
            dropped_cycles=self.dropped_cycles + other.dropped_cycles,
            failed=self.failed + other.failed,
        )

    @property
    def accepted(self) -> int:
        return self.written + self.already_present


class GraphWriter:
    """Idempotent edge persistence that tolerates causal cycle rejections."""

    def __init__(self, graph_store: GraphStoreInterface):
        self.graph_store = graph_store

    async def write_edges(self, edges: Sequence[CausalEdge | StructuralEdge]) -> WriteReport:
        report = WriteReport()
        for edge in edges:
            try:
                created = await self.graph_store.create_edge(edge)
            except CausalCycleError:
                logger.debug("Dropped %s %s -> %s: would create a cycle", edge.edge_type.value, edge.from_id, edge.to_id)
                report.dropped_cycles += 1
                continue
            except GraphStoreError as e:
                logger.warning("Failed to write %s %s -> %s: %s", edge.edge_type.value, edge.from_id, edge.to_id, e)
                report.failed += 1
                continue
            if created:
                report.written += 1
            else:
                report.already_present += 1
        return report


def build_entity_contexts(
    extracted: Sequence[ExtractedEntity],
    key_facet_count: int = 3,
) -> dict[str, EntityContext]:
    """One context per resolved id: first name, type, key facets and the segments it appears in."""
    grouped: dict[str, list[ExtractedEntity]] = defaultdict(list)
    for record in extracted:
        grouped[record.entity_id].append(record)
    contexts: dict[str, EntityContext] = {}
    for entity_id, group in grouped.items():
        facets = list(dict.fromkeys(f.content for r in group for f in r.facets))
        contexts[entity_id] = EntityContext(
            id=entity_id,
            name=group[0].name,
            type=group[0].type.value,
            key_facets=tuple(facets[:key_facet_count]),
            segment_ids=tuple(dict.fromkeys(r.segment_id for r in group)),
        )
    return contexts


class RelationshipExtractor:
    """Runs the intra-segment and cross-segment relationship passes."""

    def __init__(
        self,
        service: ExtractionServiceInterface,
        writer: GraphWriter,
        key_facet_count: int = 3,
    ):
        self.service = service
        self.writer = writer
        self.key_facet_count = key_facet_count

    async def extract_intra_segment(
        self,
        segments: Sequence[Segment],
        document_content: str,
        extracted: Sequence[ExtractedEntity],
    ) -> WriteReport:
        """Stage 5: one extraction call per segment holding two or more entities."""
        contexts = build_entity_contexts(extracted, self.key_facet_count)
        report = WriteReport()
        for index, segment in enumerate(segments):
            ids = list(dict.fromkeys(r.entity_id for r in extracted if r.segment_id == segment.id))
            if len(ids) < 2:
                continue
            edges = await self.service.extract_relationships(
                segment.text_of(document_content),
                index,
                [contexts[i] for i in ids],
            )
            report = report.merge(await self.writer.write_edges(edges))
        logger.info("Intra-segment relationships: %s", report.model_dump())
        return report

    async def extract_cross_segment(
        self,
        extracted: Sequence[ExtractedEntity],
        existing_edges: Sequence[CausalEdge | StructuralEdge],
        document_summary: str | None = None,
    ) -> WriteReport | None:
        """Stage 6: returns None when no entity spans more than one segment."""
        contexts = build_entity_contexts(extracted, self.key_facet_count)
        if not any(len(c.segment_ids) > 1 for c in contexts.values()):
            logger.info("Skipping cross-segment relationships: no entity spans multiple segments")
            return None
        edges = await self.service.extract_cross_segment_relationships(
            list(contexts.values()),
            existing_edges,
            document_summary,
        )
        report = await self.writer.write_edges(edges)
        logger.info("Cross-segment relationships: %s", report.model_dump())
        return report
