"""Segments and sentences: the text units the pipeline works over.

A segment is a contiguous, non-overlapping slice of one document version.
Segments are produced once per run and never mutated; they are the unit of
extraction. Sentences subdivide segments and carry embeddings used to rank
known entities for a segment.
"""

from pydantic import Field, model_validator

from storyschema.base import StoryModel


class Segment(StoryModel):
    """A contiguous slice ``[start, end)`` of the document text."""

    id: str = Field(..., description="Deterministic segment identifier")
    start: int = Field(..., ge=0, description="Absolute start offset (inclusive)")
    end: int = Field(..., ge=0, description="Absolute end offset (exclusive)")

    @model_validator(mode="after")
    def _ordered(self) -> "Segment":
        if self.end < self.start:
            raise ValueError("segment end must be >= start")
        return self

    @property
    def length(self) -> int:
        return self.end - self.start

    def text_of(self, document_content: str) -> str:
        """Return this segment's slice of the document."""
        return document_content[self.start : self.end]


class Sentence(StoryModel):
    """A sentence inside a segment, with its content hash and embedding."""

    document_id: str
    segment_id: str
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)
    text: str
    content_hash: str = Field(..., description="sha256 hex digest of the sentence text")
    embedding: tuple[float, ...] | None = None
