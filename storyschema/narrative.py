"""Higher-order narrative structure: threads, character arcs and states."""

from enum import Enum

from pydantic import Field

from storyschema.base import StoryModel


class ArcType(str, Enum):
    TRANSFORMATION = "transformation"
    GROWTH = "growth"
    FALL = "fall"
    REVELATION = "revelation"
    STATIC = "static"


class NarrativeThread(StoryModel):
    """A named strand of the story: an ordered subsequence of events."""

    id: str
    document_id: str
    name: str
    is_primary: bool = False
    description: str = ""


class ThreadEvent(StoryModel):
    thread_id: str
    event_id: str
    order: int = Field(..., ge=0)


class CharacterArc(StoryModel):
    """Owned by exactly one character entity."""

    id: str
    document_id: str
    character_id: str
    arc_type: ArcType


class CharacterState(StoryModel):
    id: str
    arc_id: str
    character_id: str
    phase_index: int = Field(..., ge=0)
    phase_name: str
    document_order: int
    causal_order: int
    is_current: bool = False
    facet_ids: tuple[str, ...] = ()
    embedding: tuple[float, ...] | None = None


class StateTransition(StoryModel):
    """A CHANGES_TO edge between consecutive states of one arc."""

    from_state_id: str
    to_state_id: str
    trigger_event_id: str | None = None
    gap_detected: bool = Field(False, description="No trigger event for a non-initial phase")
