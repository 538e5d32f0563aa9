"""Checkpoint persistence and cooperative interruption.

The checkpoint lives on the document record. It is written after each stage
completes, never mid-stage, so a stage interrupted by a failure or a pause is
simply re-run on resume. Every graph write a stage performs is idempotent,
which makes the re-run safe.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from storyschema.checkpoint import (
    CHECKPOINT_VERSION,
    Checkpoint,
    PendingCheckpoint,
    Stage2Output,
    Stage4Output,
    dump_checkpoint,
    parse_checkpoint,
)
from storyschema.document import AnalysisStatus

from storygraph.errors import AnalysisCancelledError, AnalysisPausedError, CheckpointInconsistencyError
from storygraph.storage.interfaces import DocumentStoreInterface

logger = logging.getLogger(__name__)


def should_run_stage(checkpoint: Checkpoint | None, stage: int) -> bool:
    """True unless the checkpoint records the stage (or a later one) as done."""
    if checkpoint is None or checkpoint.last_stage_completed is None:
        return True
    return checkpoint.last_stage_completed < stage


def is_checkpoint_valid(checkpoint: Checkpoint | None, document_version: int) -> bool:
    """A checkpoint is only resumable against the content version it was taken on."""
    return checkpoint is not None and checkpoint.document_version == document_version


class CheckpointManager:
    """Reads, merges and clears the checkpoint stored for a document."""

    def __init__(self, document_store: DocumentStoreInterface):
        self.document_store = document_store

    async def load(self, document_id: str, document_version: int | None = None) -> Checkpoint | None:
        """The stored checkpoint, or None if absent or of an unknown format version.

        Given a document version, a checkpoint taken on another version is
        cleared and treated as absent before its payloads are looked at.

        Raises:
            CheckpointInconsistencyError: The payload claims a completed stage
                whose cached output is missing or malformed.
        """
        raw = await self.document_store.get_checkpoint(document_id)
        if not raw:
            return None
        if not isinstance(raw, dict):
            raise CheckpointInconsistencyError(
                f"Stored checkpoint for {document_id} is a {type(raw).__name__}, not a mapping"
            )
        if raw.get("version") != CHECKPOINT_VERSION:
            logger.warning("Ignoring checkpoint for %s with version %r", document_id, raw.get("version"))
            return None
        if document_version is not None and raw.get("documentVersion") != document_version:
            logger.warning(
                "Discarding checkpoint for %s taken on document version %r (current %d)",
                document_id,
                raw.get("documentVersion"),
                document_version,
            )
            await self.clear(document_id)
            return None
        try:
            return parse_checkpoint(raw)
        except ValidationError as e:
            raise CheckpointInconsistencyError(f"Stored checkpoint for {document_id} is invalid: {e}") from e

    async def start(self, document_id: str, document_version: int, started_at: datetime) -> Checkpoint:
        checkpoint = PendingCheckpoint(document_version=document_version, started_at=started_at)
        await self.document_store.set_checkpoint(document_id, dump_checkpoint(checkpoint))
        return checkpoint

    async def save(
        self,
        document_id: str,
        document_version: int,
        started_at: datetime,
        stage: int,
        stage2_output: Stage2Output | None = None,
        stage4_output: Stage4Output | None = None,
    ) -> Checkpoint:
        """Record a completed stage, merging with what is already stored.

        The stored document version and start time are kept; the stage and any
        given outputs replace the stored ones.
        """
        existing = await self.document_store.get_checkpoint(document_id) or {}
        payload: dict[str, Any] = {
            "version": CHECKPOINT_VERSION,
            "documentVersion": existing.get("documentVersion", document_version),
            "startedAt": existing.get("startedAt", started_at.isoformat()),
            "lastStageCompleted": stage,
        }
        for key in ("stage2Output", "stage4Output"):
            if key in existing:
                payload[key] = existing[key]
        if stage2_output is not None:
            payload["stage2Output"] = stage2_output.model_dump(mode="json", by_alias=True)
        if stage4_output is not None:
            payload["stage4Output"] = stage4_output.model_dump(mode="json", by_alias=True)

        try:
            checkpoint = parse_checkpoint(payload)
        except ValidationError as e:
            raise CheckpointInconsistencyError(f"Cannot record stage {stage} for {document_id}: {e}") from e
        await self.document_store.set_checkpoint(document_id, dump_checkpoint(checkpoint))
        logger.debug("Checkpoint for %s advanced to stage %d", document_id, stage)
        return checkpoint

    async def clear(self, document_id: str) -> None:
        await self.document_store.set_checkpoint(document_id, None)

    async def check_for_interruption(self, document_id: str) -> None:
        """Poll the document status before a stage.

        Raises:
            AnalysisCancelledError: Status is ``cancelling``; the checkpoint is
                cleared first.
            AnalysisPausedError: Status is ``paused``; the checkpoint is kept.
        """
        status = await self.document_store.get_analysis_status(document_id)
        if status == AnalysisStatus.CANCELLING:
            await self.clear(document_id)
            raise AnalysisCancelledError(f"Analysis of {document_id} was cancelled")
        if status == AnalysisStatus.PAUSED:
            raise AnalysisPausedError(f"Analysis of {document_id} was paused")
