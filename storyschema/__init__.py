"""
Story Graph Schema - Data Model for Narrative Knowledge Graphs

This package contains only Pydantic models with no functional code. It
defines:

- Segments and sentences
- Story entities, facets and mentions
- Causal and structural edges (a tagged union)
- Narrative threads, character arcs and states
- Extraction-service payloads and per-run extraction records
- The versioned analysis checkpoint (a tagged union by completed stage)

These are used by storygraph (the pipeline and its stores).
"""

from storyschema.checkpoint import (
    CHECKPOINT_VERSION,
    Checkpoint,
    ExtractedCheckpoint,
    PendingCheckpoint,
    ResolvedCheckpoint,
    SegmentedCheckpoint,
    Stage2Output,
    Stage4Output,
    parse_checkpoint,
)
from storyschema.document import AnalysisStatus, DocumentRecord
from storyschema.edge import CAUSAL_EDGE_TYPES, CausalEdge, EdgeType, StoryEdge, StructuralEdge, parse_edge
from storyschema.entity import EntityType, Facet, FacetInput, FacetType, Mention, MentionSource, StoryEntity
from storyschema.extraction import ArcPhase, ExistingMatch, ExtractedEntity, ExtractedMention, MatchConfidence, MergeSignal
from storyschema.narrative import ArcType, CharacterArc, CharacterState, NarrativeThread, StateTransition, ThreadEvent
from storyschema.segment import Segment, Sentence

__all__ = [
    "ArcPhase",
    "AnalysisStatus",
    "ArcType",
    "CAUSAL_EDGE_TYPES",
    "CHECKPOINT_VERSION",
    "CausalEdge",
    "CharacterArc",
    "CharacterState",
    "Checkpoint",
    "DocumentRecord",
    "EdgeType",
    "EntityType",
    "ExistingMatch",
    "ExtractedCheckpoint",
    "ExtractedEntity",
    "ExtractedMention",
    "Facet",
    "FacetInput",
    "FacetType",
    "MatchConfidence",
    "Mention",
    "MentionSource",
    "MergeSignal",
    "NarrativeThread",
    "PendingCheckpoint",
    "ResolvedCheckpoint",
    "Segment",
    "SegmentedCheckpoint",
    "Sentence",
    "Stage2Output",
    "Stage4Output",
    "StateTransition",
    "StoryEdge",
    "StoryEntity",
    "StructuralEdge",
    "ThreadEvent",
    "parse_checkpoint",
    "parse_edge",
]

__version__ = "0.1.0"
