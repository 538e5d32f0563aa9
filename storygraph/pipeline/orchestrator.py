"""Seven-stage, checkpointable narrative extraction pipeline.

This module provides `NarrativePipeline`, which turns one document's text into
a narrative knowledge graph:

**Stage 1 - Segmentation:** detect segments (unless the caller supplies them),
    split sentences and embed them.
**Stage 2 - Entity extraction:** one extraction call per segment, strictly in
    document order, each shown a snapshot of the runtime entity registry.
**Stage 3 - Text grounding:** anchor mention quotes to document offsets.
**Stage 4 - Entity resolution:** persist entities, facets and mentions, then
    review merge signals and near-duplicate embeddings.
**Stage 5 - Intra-segment relationships**
**Stage 6 - Cross-segment relationships**
**Stage 7 - Higher-order analysis:** narrative threads and character arcs.

A checkpoint is written after each stage. Stage 2 caches everything needed
to skip its (non-deterministic) extraction calls; Stage 4 caches its name map.
The document's analysis status is polled before every stage: ``cancelling``
clears the checkpoint and raises `AnalysisCancelledError`, ``paused`` raises
`AnalysisPausedError` and leaves the checkpoint for the next invocation.

Example usage:
    ```python
    pipeline = NarrativePipeline(
        service=ExtractionAdapter(OllamaLLMClient()),
        embedding_generator=OllamaEmbeddingGenerator(),
        graph_store=InMemoryGraphStore(),
        document_store=document_store,
    )
    result = await pipeline.run("doc-1", "user-1", text, [], version_number=1)
    print(f"{result.entity_count} entities, {result.relationship_count} edges")
    ```
"""

from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field

from storyschema.checkpoint import FINAL_STAGE, Checkpoint, Stage2Output, Stage4Output
from storyschema.extraction import ExtractedEntity
from storyschema.segment import Segment

from storygraph.clock import RunClock, utc_now
from storygraph.config import PipelineConfig
from storygraph.errors import CheckpointInconsistencyError
from storygraph.logging import get_logger
from storygraph.storage.interfaces import (
    DocumentStoreInterface,
    GraphStoreInterface,
    ProgressChannelInterface,
    SentenceStoreInterface,
)
from storygraph.storage.memory import InMemorySentenceStore

from .analysis import HigherOrderAnalyzer
from .checkpoint import CheckpointManager, should_run_stage
from .embedding import EmbeddingGeneratorInterface
from .interfaces import ExtractionServiceInterface
from .merge_review import MergeReviewResult, find_merge_candidates, process_merge_signals, registry_index_map
from .registry import EntityRegistry
from .relationships import GraphWriter, RelationshipExtractor
from .resolver import EntityCreator, ground_mentions
from .segmenter import SentenceProcessor, detect_segments
from .stages import AnalysisStage, ProgressEvent, get_stage_label

logger = get_logger(__name__)


class PipelineResult(BaseModel):
    """Final counts of one completed run.

    Counts are read back from the graph store, so a resumed run reports the
    same numbers as an uninterrupted one.

    Attributes:
        entity_count: Distinct entities resolved from this run's extraction.
        relationship_count: Edges stored for the document.
        thread_count: Narrative threads stored for the document.
        arc_count: Character arcs stored for the document.
    """

    model_config = {"frozen": True}

    entity_count: int
    relationship_count: int
    thread_count: int
    arc_count: int


class NarrativePipeline(BaseModel):
    """Runs the seven stages for one document at a time.

    One pipeline may serve many documents sequentially; every per-run
    accumulator (the entity registry in particular) is created inside `run`.

    Attributes:
        config: Tunables; defaults match a local Ollama deployment.
        service: The text-extraction service (usually an `ExtractionAdapter`).
        embedding_generator: Embeds sentences, facets and names.
        graph_store: Owner of everything the pipeline extracts.
        document_store: Status polling and checkpoint persistence.
        sentence_store: Sentence embeddings from Stage 1.
        progress_channel: Optional best-effort progress broadcast.
        clock: Start time recorded in a fresh checkpoint; defaults to now.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    config: PipelineConfig = Field(default_factory=PipelineConfig)
    service: ExtractionServiceInterface
    embedding_generator: EmbeddingGeneratorInterface
    graph_store: GraphStoreInterface
    document_store: DocumentStoreInterface
    sentence_store: SentenceStoreInterface = Field(default_factory=InMemorySentenceStore)
    progress_channel: ProgressChannelInterface | None = None
    clock: RunClock | None = None

    async def _broadcast(self, document_id: str, stage: AnalysisStage, hint: str | None = None, entity_count: int = 0) -> None:
        if self.progress_channel is None or not self.config.broadcast_progress:
            return
        event = ProgressEvent(
            document_id=document_id,
            stage=stage,
            status_hint=hint or get_stage_label(stage),
            entity_count=entity_count,
            timestamp=utc_now(),
        )
        try:
            await self.progress_channel.publish(document_id, event.model_dump(mode="json", by_alias=True))
        except Exception as e:  # noqa: BLE001
            logger.warning({"msg": "Progress broadcast failed", "document_id": document_id, "stage": int(stage), "error": str(e)})

    async def _enter(self, manager: CheckpointManager, document_id: str, stage: AnalysisStage, entity_count: int = 0) -> None:
        await manager.check_for_interruption(document_id)
        logger.info({"msg": f"Stage {int(stage)}: {stage.name.lower()}", "document_id": document_id})
        await self._broadcast(document_id, stage, entity_count=entity_count)

    async def _extract_entities(
        self,
        document_id: str,
        document_content: str,
        segments: Sequence[Segment],
        sentences: SentenceProcessor,
        is_initial_extraction: bool,
    ) -> tuple[EntityRegistry, Stage2Output]:
        registry = EntityRegistry(
            embedding_generator=self.embedding_generator,
            match_threshold=self.config.registry_match_threshold,
            key_facet_count=self.config.registry_key_facets,
        )
        if not is_initial_extraction:
            await registry.seed_from_store(self.graph_store, document_id)

        total = len(segments)
        for index, segment in enumerate(segments):
            await self._broadcast(
                document_id,
                AnalysisStage.ENTITY_EXTRACTION,
                hint=f"Processing segment {index + 1} of {total}...",
                entity_count=len(registry),
            )
            query = None
            if not is_initial_extraction:
                query = await sentences.segment_embedding(document_id, segment.id)
            response = await self.service.extract_entities(
                segment.text_of(document_content),
                index,
                total,
                registry.snapshot(self.config.registry_limit, query),
                segments[index - 1].text_of(document_content) if index > 0 else None,
            )
            produced = await registry.absorb(segment.id, response)
            logger.debug({"msg": "Segment extracted", "segment": index, "entities": [e.name for e in produced]})

        output = Stage2Output(
            extracted_entities=registry.extracted_entities,
            entity_id_by_name=registry.entity_id_by_name,
            merge_signals=registry.merge_signals,
            registry_ids=registry.index_map(),
        )
        return registry, output

    async def _review_merges(
        self,
        document_id: str,
        stage2: Stage2Output,
        registry: EntityRegistry | None,
        entity_ids: Sequence[str],
        is_initial_extraction: bool,
    ) -> MergeReviewResult:
        signals = stage2.merge_signals
        index_map = registry.index_map() if registry is not None else stage2.registry_ids
        if not index_map:
            if is_initial_extraction:
                index_map = registry_index_map(stage2.extracted_entities)
            elif signals:
                # Seeded entries hold the low indexes and were not recorded.
                logger.info(
                    {
                        "msg": "Skipping merge signal review: registry indexes unknown for this checkpoint",
                        "document_id": document_id,
                        "signals": len(signals),
                    }
                )
                signals = []
        review = process_merge_signals(signals, index_map, stage2.entity_id_by_name)
        entities = [e for e in [await self.graph_store.get_entity(i) for i in entity_ids] if e is not None]
        embeddings = {e.id: await self.graph_store.get_entity_embedding(e.id) for e in entities}
        candidates = find_merge_candidates(entities, embeddings, self.config.merge_similarity_threshold)
        logger.info(
            {
                "msg": "Merge review",
                "document_id": document_id,
                "reviewed": review.reviewed_count,
                "auto_merged": review.auto_merged,
                "deferred": review.deferred_for_user_review,
                "no_action": review.no_action_needed,
                "similar_pairs": [(c.first.name, c.second.name, round(c.similarity, 3)) for c in candidates],
            }
        )
        return review

    async def _result(self, document_id: str, extracted: Sequence[ExtractedEntity]) -> PipelineResult:
        return PipelineResult(
            entity_count=len({r.entity_id for r in extracted}),
            relationship_count=len(await self.graph_store.list_edges(document_id)),
            thread_count=len(await self.graph_store.list_threads(document_id)),
            arc_count=len(await self.graph_store.list_arcs(document_id)),
        )

    async def run(
        self,
        document_id: str,
        user_id: str,
        document_content: str,
        segments: Sequence[Segment],
        version_number: int,
        *,
        document_title: str | None = None,
        document_summary: str | None = None,
        is_initial_extraction: bool = True,
    ) -> PipelineResult:
        """Run (or resume) the pipeline for one document.

        Args:
            document_id: Document being analyzed.
            user_id: Owner recorded on every created entity.
            document_content: Full document text.
            segments: Pre-computed segments; when empty they are detected.
            version_number: Content version; a checkpoint from another
                version is discarded.
            document_title: Used as summary context when no summary is given.
            document_summary: Optional context for Stages 6 and 7.
            is_initial_extraction: False seeds the registry from entities
                already persisted for the document.

        Returns:
            Final entity, relationship, thread and arc counts.

        Raises:
            AnalysisCancelledError: The document status became ``cancelling``.
            AnalysisPausedError: The document status became ``paused``.
            ExtractionFailedError: An extraction call exhausted its retries;
                the checkpoint is kept so the next run resumes at that stage.
            CheckpointInconsistencyError: The stored checkpoint is corrupt.
        """
        manager = CheckpointManager(self.document_store)
        # A checkpoint from another document version comes back as None.
        checkpoint: Checkpoint | None = await manager.load(document_id, version_number)

        if checkpoint is None:
            started_at = (self.clock or RunClock.start()).started_at
            checkpoint = await manager.start(document_id, version_number, started_at)
        else:
            started_at = checkpoint.started_at
            logger.info(
                {"msg": "Resuming from checkpoint", "document_id": document_id, "last_stage": checkpoint.last_stage_completed}
            )

        summary = document_summary or document_title
        if not segments:
            segments = detect_segments(document_content, document_id, self.config.segmentation)
        sentences = SentenceProcessor(
            self.embedding_generator,
            self.sentence_store,
            self.config.segmentation.min_sentence_length,
        )

        async def save(stage: AnalysisStage, **outputs) -> Checkpoint:
            return await manager.save(document_id, version_number, started_at, int(stage), **outputs)

        if checkpoint.last_stage_completed == FINAL_STAGE:
            logger.info({"msg": "Analysis already complete", "document_id": document_id})
            await manager.clear(document_id)
            return await self._result(document_id, checkpoint.stage2_output.extracted_entities)

        # Stage 1
        if should_run_stage(checkpoint, AnalysisStage.SEGMENTATION):
            await self._enter(manager, document_id, AnalysisStage.SEGMENTATION)
            stored = await sentences.process_document(document_id, document_content, segments)
            logger.info({"msg": "Segmented", "segments": len(segments), "sentences": len(stored)})
            checkpoint = await save(AnalysisStage.SEGMENTATION)

        # Stage 2
        registry: EntityRegistry | None = None
        if should_run_stage(checkpoint, AnalysisStage.ENTITY_EXTRACTION):
            await self._enter(manager, document_id, AnalysisStage.ENTITY_EXTRACTION)
            registry, stage2 = await self._extract_entities(
                document_id, document_content, segments, sentences, is_initial_extraction
            )
            logger.info(
                {
                    "msg": "Entities extracted",
                    "records": len(stage2.extracted_entities),
                    "entities": len(registry),
                    "merge_signals": len(stage2.merge_signals),
                }
            )
            checkpoint = await save(AnalysisStage.ENTITY_EXTRACTION, stage2_output=stage2)
        else:
            stage2 = getattr(checkpoint, "stage2_output", None)
            if stage2 is None:
                raise CheckpointInconsistencyError(f"Stage 2 marked complete for {document_id} without its output")
        extracted = stage2.extracted_entities
        entity_count = len({r.entity_id for r in extracted})

        # Stage 3
        if should_run_stage(checkpoint, AnalysisStage.TEXT_GROUNDING):
            await self._enter(manager, document_id, AnalysisStage.TEXT_GROUNDING, entity_count)
            grounding = ground_mentions(extracted, segments, document_content)
            logger.info({"msg": "Mentions grounded", "grounded": len(grounding.mentions), "dropped": grounding.dropped})
            checkpoint = await save(AnalysisStage.TEXT_GROUNDING)

        # Stage 4
        if should_run_stage(checkpoint, AnalysisStage.ENTITY_RESOLUTION):
            await self._enter(manager, document_id, AnalysisStage.ENTITY_RESOLUTION, entity_count)
            grounding = ground_mentions(extracted, segments, document_content)
            creator = EntityCreator(self.graph_store, self.embedding_generator)
            created = await creator.create_entities(document_id, user_id, extracted, grounding, version_number)
            await self._review_merges(document_id, stage2, registry, created.entity_ids, is_initial_extraction)
            stage4 = Stage4Output(entity_id_by_name=stage2.entity_id_by_name)
            checkpoint = await save(AnalysisStage.ENTITY_RESOLUTION, stage4_output=stage4)
        elif getattr(checkpoint, "stage4_output", None) is None:
            raise CheckpointInconsistencyError(f"Stage 4 marked complete for {document_id} without its output")

        relationships = RelationshipExtractor(self.service, GraphWriter(self.graph_store), self.config.key_facet_count)

        # Stage 5
        if should_run_stage(checkpoint, AnalysisStage.INTRA_SEGMENT_RELATIONSHIPS):
            await self._enter(manager, document_id, AnalysisStage.INTRA_SEGMENT_RELATIONSHIPS, entity_count)
            await relationships.extract_intra_segment(segments, document_content, extracted)
            checkpoint = await save(AnalysisStage.INTRA_SEGMENT_RELATIONSHIPS)

        # Stage 6
        if should_run_stage(checkpoint, AnalysisStage.CROSS_SEGMENT_RELATIONSHIPS):
            await self._enter(manager, document_id, AnalysisStage.CROSS_SEGMENT_RELATIONSHIPS, entity_count)
            existing = await self.graph_store.list_edges(document_id)
            await relationships.extract_cross_segment(extracted, existing, summary)
            checkpoint = await save(AnalysisStage.CROSS_SEGMENT_RELATIONSHIPS)

        # Stage 7
        if should_run_stage(checkpoint, AnalysisStage.HIGHER_ORDER_ANALYSIS):
            await self._enter(manager, document_id, AnalysisStage.HIGHER_ORDER_ANALYSIS, entity_count)
            analysis = await HigherOrderAnalyzer(self.service, self.graph_store).analyze(
                document_id, extracted, segments, summary
            )
            logger.info(analysis)
            checkpoint = await save(AnalysisStage.HIGHER_ORDER_ANALYSIS)

        await manager.clear(document_id)
        result = await self._result(document_id, extracted)
        logger.info({"msg": "Analysis complete", "document_id": document_id, **result.model_dump()})
        return result
