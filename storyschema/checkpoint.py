"""Versioned analysis checkpoint, stored on the document record.

Persisted layout (camelCase on the wire)::

    {version: 1, documentVersion, startedAt, lastStageCompleted,
     stage2Output?: {extractedEntities, entityIdByName, mergeSignals,
                     registryIds},
     stage4Output?: {entityIdByName}}

The model is a tagged union keyed by ``lastStageCompleted``: each variant
declares exactly the cached payloads that are mandatory once that stage is
done. A stage-4-or-later checkpoint without its Stage 2 and Stage 4 payloads
cannot be constructed, so a corrupted record fails at load time instead of
being silently resumed.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import Discriminator, Field, Tag, TypeAdapter, field_validator

from storyschema.base import StoryModel
from storyschema.extraction import ExtractedEntity, MergeSignal

CHECKPOINT_VERSION = 1
FINAL_STAGE = 7


class Stage2Output(StoryModel):
    extracted_entities: list[ExtractedEntity] = Field(default_factory=list)
    entity_id_by_name: dict[str, str] = Field(default_factory=dict)
    merge_signals: list[MergeSignal] = Field(default_factory=list)
    registry_ids: dict[int, str] = Field(
        default_factory=dict, description="Registry index to entity id, as assigned during extraction"
    )


class Stage4Output(StoryModel):
    entity_id_by_name: dict[str, str] = Field(default_factory=dict)


class _CheckpointBase(StoryModel):
    version: Literal[1] = CHECKPOINT_VERSION
    document_version: int
    started_at: datetime

    @field_validator("started_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError("startedAt must be timezone-aware")
        return value


class PendingCheckpoint(_CheckpointBase):
    """Run started, nothing finished yet."""

    last_stage_completed: None = None


class SegmentedCheckpoint(_CheckpointBase):
    last_stage_completed: Literal[1]


class ExtractedCheckpoint(_CheckpointBase):
    last_stage_completed: Literal[2, 3]
    stage2_output: Stage2Output


class ResolvedCheckpoint(_CheckpointBase):
    last_stage_completed: Literal[4, 5, 6, 7]
    stage2_output: Stage2Output
    stage4_output: Stage4Output


def _checkpoint_tag(value: Any) -> str:
    if isinstance(value, dict):
        stage = value.get("lastStageCompleted", value.get("last_stage_completed"))
    else:
        stage = getattr(value, "last_stage_completed", None)
    if stage is None:
        return "pending"
    if not isinstance(stage, int) or isinstance(stage, bool):
        # Validated against the variant with the most required payloads.
        return "resolved"
    if stage < 2:
        return "segmented"
    if stage < 4:
        return "extracted"
    return "resolved"


Checkpoint = Annotated[
    Union[
        Annotated[PendingCheckpoint, Tag("pending")],
        Annotated[SegmentedCheckpoint, Tag("segmented")],
        Annotated[ExtractedCheckpoint, Tag("extracted")],
        Annotated[ResolvedCheckpoint, Tag("resolved")],
    ],
    Discriminator(_checkpoint_tag),
]

checkpoint_adapter: TypeAdapter[Checkpoint] = TypeAdapter(Checkpoint)


def parse_checkpoint(raw: dict[str, Any]) -> Checkpoint:
    """Validate a stored checkpoint dict into its variant.

    Raises:
        pydantic.ValidationError: payloads missing for the recorded stage.
    """
    return checkpoint_adapter.validate_python(raw)


def dump_checkpoint(checkpoint: Checkpoint) -> dict[str, Any]:
    return checkpoint.model_dump(mode="json", by_alias=True)
