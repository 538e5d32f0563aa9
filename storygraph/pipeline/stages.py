"""Stage numbering, user-facing labels and progress events."""

from datetime import datetime
from enum import IntEnum

from pydantic import Field

from storyschema.base import StoryModel


class AnalysisStage(IntEnum):
    SEGMENTATION = 1
    ENTITY_EXTRACTION = 2
    TEXT_GROUNDING = 3
    ENTITY_RESOLUTION = 4
    INTRA_SEGMENT_RELATIONSHIPS = 5
    CROSS_SEGMENT_RELATIONSHIPS = 6
    HIGHER_ORDER_ANALYSIS = 7


STAGE_LABELS: dict[AnalysisStage, str] = {
    AnalysisStage.SEGMENTATION: "Reading through your document...",
    AnalysisStage.ENTITY_EXTRACTION: "Identifying characters, places, and key ideas...",
    AnalysisStage.TEXT_GROUNDING: "Finding where each entity appears...",
    AnalysisStage.ENTITY_RESOLUTION: "Connecting aliases and resolving identities...",
    AnalysisStage.INTRA_SEGMENT_RELATIONSHIPS: "Mapping how everything connects...",
    AnalysisStage.CROSS_SEGMENT_RELATIONSHIPS: "Finding connections across the story...",
    AnalysisStage.HIGHER_ORDER_ANALYSIS: "Spotting narrative arcs and themes...",
}


def get_stage_label(stage: int) -> str:
    return STAGE_LABELS[AnalysisStage(stage)]


class ProgressEvent(StoryModel):
    """One progress broadcast; serialized with camelCase keys."""

    document_id: str
    stage: AnalysisStage
    status_hint: str
    entity_count: int = Field(0, ge=0)
    timestamp: datetime
