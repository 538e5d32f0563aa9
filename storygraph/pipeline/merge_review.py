"""Post-resolution review of entity identity.

Two sources of possible duplicates are reviewed after Stage 4:

- Merge signals: low-confidence identity claims the extraction service made
  against registry entries. They are never applied automatically; this
  module classifies them for later review.
- Embedding similarity: same-type entities whose aggregate embeddings are
  close enough to be worth a second look.

Nothing here mutates the graph.
"""

import logging
from collections import defaultdict
from enum import Enum
from typing import Mapping, Sequence

import numpy as np
from pydantic import BaseModel, Field
from sklearn.metrics.pairwise import cosine_similarity  # type: ignore

from storyschema.entity import StoryEntity
from storyschema.extraction import ExtractedEntity, MatchConfidence, MergeSignal

logger = logging.getLogger(__name__)


class MergeDecision(str, Enum):
    AUTO_MERGED = "auto_merged"
    DEFERRED = "deferred"
    NO_ACTION = "no_action"


class MergeAction(BaseModel):
    model_config = {"frozen": True}

    registry_index: int
    target_entity_id: str
    extracted_entity_name: str
    source_entity_id: str | None = None
    confidence: MatchConfidence
    decision: MergeDecision
    evidence: str = ""


class MergeReviewResult(BaseModel):
    model_config = {"frozen": True}

    reviewed_count: int = 0
    auto_merged: int = 0
    deferred_for_user_review: int = 0
    no_action_needed: int = 0
    merge_actions: list[MergeAction] = Field(default_factory=list)


class MergeCandidate(BaseModel):
    model_config = {"frozen": True}

    first: StoryEntity
    second: StoryEntity
    similarity: float


def find_merge_candidates(
    entities: Sequence[StoryEntity],
    embeddings: Mapping[str, Sequence[float] | None],
    threshold: float = 0.85,
) -> list[MergeCandidate]:
    """Same-type entity pairs whose embeddings meet the similarity threshold.

    Entities without an embedding are ignored. The result is sorted by
    similarity, highest first.

    Args:
        entities: Candidate entities, usually every entity of one document.
        embeddings: Aggregate embedding per entity id.
        threshold: Minimum cosine similarity for a pair to be reported.

    Returns:
        Candidate pairs, each listed once.
    """
    with_vectors = [e for e in entities if embeddings.get(e.id) is not None]
    if len(with_vectors) < 2:
        return []

    matrix = cosine_similarity(np.asarray([embeddings[e.id] for e in with_vectors], dtype=float))
    candidates: list[MergeCandidate] = []
    for i in range(len(with_vectors)):
        for j in range(i + 1, len(with_vectors)):
            if with_vectors[i].type != with_vectors[j].type:
                continue
            similarity = float(matrix[i, j])
            if similarity >= threshold:
                candidates.append(MergeCandidate(first=with_vectors[i], second=with_vectors[j], similarity=similarity))
    candidates.sort(key=lambda c: c.similarity, reverse=True)
    return candidates


def registry_index_map(extracted: Sequence[ExtractedEntity]) -> dict[int, str]:
    """Registry positions as assigned on a fresh run: first-seen order of resolved ids."""
    return dict(enumerate(dict.fromkeys(r.entity_id for r in extracted)))


def process_merge_signals(
    signals: Sequence[MergeSignal],
    registry_ids: Mapping[int, str],
    entity_id_by_name: Mapping[str, str],
) -> MergeReviewResult:
    """Classify merge signals per registry entry.

    A signal pointing at an index outside the registry is skipped with a
    warning. A signal whose extracted entity already resolved to the cited
    entry needs no action; a high-confidence one is recorded as auto-merged
    (the merge itself is left to the caller); anything else is deferred for
    user review.
    """
    by_index: dict[int, list[MergeSignal]] = defaultdict(list)
    for signal in signals:
        by_index[signal.registry_index].append(signal)

    actions: list[MergeAction] = []
    reviewed = auto = deferred = no_action = 0
    for registry_index, group in sorted(by_index.items()):
        target_id = registry_ids.get(registry_index)
        if target_id is None:
            logger.warning("Merge signal cites unknown registry index %d; skipping", registry_index)
            continue
        for signal in group:
            reviewed += 1
            source_id = signal.entity_id or entity_id_by_name.get(signal.extracted_entity_name)
            if source_id == target_id:
                decision = MergeDecision.NO_ACTION
                no_action += 1
            elif signal.confidence == MatchConfidence.HIGH:
                decision = MergeDecision.AUTO_MERGED
                auto += 1
            else:
                decision = MergeDecision.DEFERRED
                deferred += 1
            actions.append(
                MergeAction(
                    registry_index=registry_index,
                    target_entity_id=target_id,
                    extracted_entity_name=signal.extracted_entity_name,
                    source_entity_id=source_id,
                    confidence=signal.confidence,
                    decision=decision,
                    evidence=signal.evidence,
                )
            )

    return MergeReviewResult(
        reviewed_count=reviewed,
        auto_merged=auto,
        deferred_for_user_review=deferred,
        no_action_needed=no_action,
        merge_actions=actions,
    )
