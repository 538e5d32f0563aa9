"""
Narrative knowledge graph extraction.

Turns a document's text into a graph of entities (characters, locations,
events, concepts), their facets and mentions, typed relationships, narrative
threads and character arcs, through a seven-stage, checkpointable pipeline.

This module uses lazy imports so that lightweight pieces do not pull in
numpy/sklearn. For example:

    # This does NOT import numpy:
    from storygraph.errors import AnalysisPausedError

    # This DOES import numpy (when the symbol is accessed):
    from storygraph import NarrativePipeline
"""

from typing import TYPE_CHECKING

from storygraph.config import PipelineConfig, load_pipeline_config
from storygraph.errors import (
    AnalysisCancelledError,
    AnalysisInterrupted,
    AnalysisPausedError,
    CheckpointInconsistencyError,
    ExtractionFailedError,
    StoryGraphError,
)

if TYPE_CHECKING:
    from storygraph.pipeline.orchestrator import NarrativePipeline, PipelineResult

__all__ = [
    "PipelineConfig",
    "load_pipeline_config",
    "StoryGraphError",
    "ExtractionFailedError",
    "AnalysisInterrupted",
    "AnalysisCancelledError",
    "AnalysisPausedError",
    "CheckpointInconsistencyError",
    "NarrativePipeline",
    "PipelineResult",
]

__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy import for the orchestrator to avoid loading numpy/sklearn on light imports."""
    if name in ("NarrativePipeline", "PipelineResult"):
        from storygraph.pipeline.orchestrator import NarrativePipeline, PipelineResult
        return {"NarrativePipeline": NarrativePipeline, "PipelineResult": PipelineResult}[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
