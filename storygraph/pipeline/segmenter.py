"""Segment and sentence detection (Stage 1).

Segmentation must be deterministic: the same text always yields the same
segments with the same ids, so a checkpoint keyed by document version stays
valid across resumed runs.

Segment boundaries are taken at blank lines and scene markers (``***``,
``---``, markdown headings, screenplay ``INT.``/``EXT.``/``FADE``). Regions
are merged up to a minimum size, and oversized regions are split at a word
boundary near the target maximum. Segments cover the document contiguously
and never overlap.
"""

import logging
import re
import uuid
from typing import Sequence

import numpy as np

from storyschema.segment import Segment, Sentence

from storygraph.config import SegmentationConfig
from storygraph.storage.interfaces import SentenceStoreInterface

from .caching import content_hash
from .embedding import EmbeddingGeneratorInterface

logger = logging.getLogger(__name__)

_BLANK_LINE = re.compile(r"\n\s*\n")
_SCENE_MARKER = re.compile(
    r"^(?:\*{3,}|-{3,}|#{1,3}\s+.+|(?:INT\.|EXT\.|INT/EXT\.).*|FADE (?:IN|OUT|TO)[:.].*)\s*$",
    re.MULTILINE,
)
_SENTENCE_END = re.compile(r"([.!?]+)(\s+|$)")
_LAST_WORD = re.compile(r"(\S+)$")

ABBREVIATIONS = frozenset(
    {
        "mr", "mrs", "ms", "dr", "prof", "sr", "jr", "st", "ave", "blvd", "vs", "etc",
        "i.e", "e.g", "cf", "al", "vol", "no", "pp", "inc", "ltd", "corp", "co", "fig",
        "approx", "dept", "est",
    }
)


def _segment_id(document_id: str, start: int, end: int) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"storygraph:{document_id}:{start}:{end}"))


def _boundaries(text: str) -> list[int]:
    cuts = {m.end() for m in _BLANK_LINE.finditer(text)}
    cuts.update(m.start() for m in _SCENE_MARKER.finditer(text))
    return sorted(c for c in cuts if 0 < c < len(text))


def _split_oversized(text: str, start: int, end: int, config: SegmentationConfig) -> list[tuple[int, int]]:
    pieces: list[tuple[int, int]] = []
    while end - start > config.target_max_size:
        target = start + config.target_max_size
        lo = max(start + 1, target - config.split_search_window)
        hi = min(end - 1, target + config.split_search_window, start + config.hard_max_size)
        cut = target
        # Prefer the whitespace closest to the target.
        for offset in range(0, config.split_search_window + 1):
            for candidate in (target - offset, target + offset):
                if lo <= candidate <= hi and text[candidate - 1].isspace():
                    cut = candidate
                    break
            else:
                continue
            break
        pieces.append((start, cut))
        start = cut
    pieces.append((start, end))
    return pieces


def detect_segments(
    text: str,
    document_id: str,
    config: SegmentationConfig | None = None,
) -> list[Segment]:
    """Split document text into ordered, contiguous, non-overlapping segments.

    Args:
        text: Full document content.
        document_id: Used to derive deterministic segment ids.
        config: Size targets; defaults to SegmentationConfig().

    Returns:
        Segments covering ``[0, len(text))``; empty for empty text.
    """
    config = config or SegmentationConfig()
    if not text:
        return []
    if len(text) < config.min_document_length:
        return [Segment(id=_segment_id(document_id, 0, len(text)), start=0, end=len(text))]

    regions: list[tuple[int, int]] = []
    points = [0, *_boundaries(text), len(text)]
    current_start = 0
    for point in points[1:]:
        if point - current_start >= config.target_min_size or point == len(text):
            regions.append((current_start, point))
            current_start = point

    # A short tail joins the previous region when that stays under the hard max.
    if len(regions) > 1:
        tail_start, tail_end = regions[-1]
        prev_start, _ = regions[-2]
        if tail_end - tail_start < config.target_min_size and tail_end - prev_start <= config.hard_max_size:
            regions[-2:] = [(prev_start, tail_end)]

    spans: list[tuple[int, int]] = []
    for start, end in regions:
        spans.extend(_split_oversized(text, start, end, config))

    segments = [Segment(id=_segment_id(document_id, s, e), start=s, end=e) for s, e in spans]
    logger.debug("Detected %d segments for document %s", len(segments), document_id)
    return segments


def get_adjacent_segments(segments: Sequence[Segment], segment_ids: Sequence[str], distance: int = 1) -> list[str]:
    """Ids of the given segments plus their neighbours within ``distance``."""
    wanted = set(segment_ids)
    indexes = [i for i, s in enumerate(segments) if s.id in wanted]
    picked: set[int] = set()
    for i in indexes:
        picked.update(range(max(0, i - distance), min(len(segments), i + distance + 1)))
    return [segments[i].id for i in sorted(picked)]


def to_absolute_position(
    segments: Sequence[Segment],
    segment_id: str,
    relative_start: int,
    relative_end: int,
) -> tuple[int, int] | None:
    """Convert segment-relative offsets to document offsets, or None if out of range."""
    for segment in segments:
        if segment.id == segment_id:
            start, end = segment.start + relative_start, segment.start + relative_end
            if relative_start < 0 or end > segment.end or end < start:
                return None
            return start, end
    return None


def split_sentences(text: str, min_length: int = 10) -> list[tuple[int, int]]:
    """Sentence spans ``(start, end)`` relative to ``text``.

    Splits after runs of ``.``, ``!`` or ``?`` followed by whitespace or the
    end of text, except after known abbreviations and single-letter initials.
    Leading and trailing whitespace is trimmed; spans shorter than
    ``min_length`` are dropped.
    """
    spans: list[tuple[int, int]] = []
    sentence_start = 0

    def emit(start: int, end: int) -> None:
        chunk = text[start:end]
        lead = len(chunk) - len(chunk.lstrip())
        trail = len(chunk) - len(chunk.rstrip())
        s, e = start + lead, end - trail
        if e - s >= min_length:
            spans.append((s, e))

    for match in _SENTENCE_END.finditer(text):
        if match.group(1) == ".":
            word = _LAST_WORD.search(text[sentence_start : match.start(1)])
            if word:
                token = word.group(1).lstrip("\"'([").lower()
                if token in ABBREVIATIONS or (len(token) == 1 and token.isalpha()):
                    continue
        emit(sentence_start, match.end(1))
        sentence_start = match.end()

    if sentence_start < len(text):
        emit(sentence_start, len(text))
    return spans


def compute_average_embedding(vectors: Sequence[Sequence[float]]) -> tuple[float, ...] | None:
    """Element-wise mean of equal-length vectors, or None when empty."""
    if not vectors:
        return None
    return tuple(float(x) for x in np.mean(np.asarray(vectors, dtype=float), axis=0))


class SentenceProcessor:
    """Detects sentences per segment, embeds them in one batch and stores them."""

    def __init__(
        self,
        embedding_generator: EmbeddingGeneratorInterface,
        sentence_store: SentenceStoreInterface,
        min_sentence_length: int = 10,
    ):
        self.embedding_generator = embedding_generator
        self.sentence_store = sentence_store
        self.min_sentence_length = min_sentence_length

    def detect(self, document_id: str, content: str, segments: Sequence[Segment]) -> list[Sentence]:
        sentences: list[Sentence] = []
        for segment in segments:
            segment_text = segment.text_of(content)
            for rel_start, rel_end in split_sentences(segment_text, self.min_sentence_length):
                sentence_text = segment_text[rel_start:rel_end]
                sentences.append(
                    Sentence(
                        document_id=document_id,
                        segment_id=segment.id,
                        start=segment.start + rel_start,
                        end=segment.start + rel_end,
                        text=sentence_text,
                        content_hash=content_hash(sentence_text),
                    )
                )
        return sentences

    async def process_document(self, document_id: str, content: str, segments: Sequence[Segment]) -> list[Sentence]:
        """Detect, embed and persist all sentences of the document."""
        sentences = self.detect(document_id, content, segments)
        if sentences:
            vectors = await self.embedding_generator.generate_batch([s.text for s in sentences])
            sentences = [s.model_copy(update={"embedding": v}) for s, v in zip(sentences, vectors)]
        await self.sentence_store.save_sentences(document_id, sentences)
        logger.info("Embedded %d sentences across %d segments", len(sentences), len(segments))
        return sentences

    async def segment_embedding(self, document_id: str, segment_id: str) -> tuple[float, ...] | None:
        """Average sentence embedding of one segment."""
        sentences = await self.sentence_store.get_by_segment_ids(document_id, [segment_id])
        return compute_average_embedding([s.embedding for s in sentences if s.embedding is not None])
