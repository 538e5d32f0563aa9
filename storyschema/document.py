"""Document-level state the pipeline reads and writes.

Only the fields the pipeline needs are modeled: the content version, the
analysis status used for cooperative interruption, and the stored checkpoint.
"""

from enum import Enum
from typing import Any

from pydantic import Field

from storyschema.base import StoryModel


class AnalysisStatus(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    PAUSED = "paused"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"


class DocumentRecord(StoryModel):
    document_id: str
    version: int = Field(1, ge=1)
    analysis_status: AnalysisStatus = AnalysisStatus.IDLE
    analysis_checkpoint: dict[str, Any] | None = Field(
        None, description="Raw checkpoint payload as persisted; validated on load"
    )
