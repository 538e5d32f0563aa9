"""Pipeline stages, extraction-service adapter and supporting interfaces."""

from storygraph.pipeline.adapter import ExtractionAdapter
from storygraph.pipeline.analysis import HigherOrderAnalyzer, compute_causal_order, detect_thread_candidates
from storygraph.pipeline.caching import (
    CachedEmbeddingGenerator,
    EmbeddingCacheConfig,
    EmbeddingsCacheInterface,
    InMemoryEmbeddingsCache,
)
from storygraph.pipeline.checkpoint import CheckpointManager, is_checkpoint_valid, should_run_stage
from storygraph.pipeline.embedding import EmbeddingGeneratorInterface, OllamaEmbeddingGenerator
from storygraph.pipeline.interfaces import ExtractionServiceInterface
from storygraph.pipeline.llm_client import LLMClientInterface, OllamaLLMClient
from storygraph.pipeline.merge_review import find_merge_candidates, process_merge_signals
from storygraph.pipeline.orchestrator import NarrativePipeline, PipelineResult
from storygraph.pipeline.registry import EntityRegistry
from storygraph.pipeline.segmenter import detect_segments, split_sentences
from storygraph.pipeline.stages import AnalysisStage, get_stage_label

__all__ = [
    # Orchestration
    "NarrativePipeline",
    "PipelineResult",
    "AnalysisStage",
    "get_stage_label",
    "CheckpointManager",
    "should_run_stage",
    "is_checkpoint_valid",
    # Extraction service
    "ExtractionServiceInterface",
    "ExtractionAdapter",
    "LLMClientInterface",
    "OllamaLLMClient",
    # Stages
    "detect_segments",
    "split_sentences",
    "EntityRegistry",
    "detect_thread_candidates",
    "compute_causal_order",
    "HigherOrderAnalyzer",
    "find_merge_candidates",
    "process_merge_signals",
    # Embeddings and caching
    "EmbeddingGeneratorInterface",
    "OllamaEmbeddingGenerator",
    "EmbeddingsCacheInterface",
    "EmbeddingCacheConfig",
    "InMemoryEmbeddingsCache",
    "CachedEmbeddingGenerator",
]
