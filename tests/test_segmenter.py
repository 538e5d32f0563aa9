"""Tests for segment detection, sentence splitting and sentence embeddings.

This module verifies:
- Short documents become a single segment; empty text yields none
- Segments cover the document contiguously, deterministically, within size limits
- Blank lines and scene markers are used as boundaries
- Sentence splitting respects abbreviations, initials and the minimum length
- SentenceProcessor embeds and persists sentences, and averages per segment
"""

from storygraph.config import SegmentationConfig
from storygraph.pipeline.segmenter import (
    SentenceProcessor,
    compute_average_embedding,
    detect_segments,
    get_adjacent_segments,
    split_sentences,
    to_absolute_position,
)

from tests.conftest import STORY, MockEmbeddingGenerator, story_segments


def _paragraphs(count: int, length: int = 400) -> str:
    return "\n\n".join(f"Paragraph {i}. " + ("word " * (length // 5)).strip() for i in range(count))


def _assert_covers(text, segments):
    assert segments[0].start == 0
    assert segments[-1].end == len(text)
    for a, b in zip(segments, segments[1:]):
        assert a.end == b.start


class TestDetectSegments:
    """Tests for detect_segments()."""

    def test_empty_text(self):
        assert detect_segments("", "doc") == []

    def test_short_document_is_single_segment(self):
        segments = detect_segments(STORY, "doc")
        assert len(segments) == 1
        assert (segments[0].start, segments[0].end) == (0, len(STORY))

    def test_covers_document_contiguously(self):
        text = _paragraphs(30)
        segments = detect_segments(text, "doc")
        assert len(segments) > 1
        _assert_covers(text, segments)

    def test_regions_merge_to_minimum(self):
        config = SegmentationConfig()
        text = _paragraphs(30)
        segments = detect_segments(text, "doc", config)
        assert all(s.length >= config.target_min_size for s in segments)

    def test_segments_never_exceed_hard_max(self):
        config = SegmentationConfig()
        text = ("lorem ipsum dolor " * 2000).strip()
        segments = detect_segments(text, "doc", config)
        assert len(segments) > 1
        assert all(s.length <= config.hard_max_size for s in segments)
        _assert_covers(text, segments)

    def test_oversized_split_lands_on_whitespace(self):
        text = ("lorem ipsum dolor " * 2000).strip()
        segments = detect_segments(text, "doc")
        for segment in segments[:-1]:
            assert text[segment.end - 1].isspace()

    def test_deterministic_ids(self):
        text = _paragraphs(30)
        first = detect_segments(text, "doc")
        second = detect_segments(text, "doc")
        assert [s.id for s in first] == [s.id for s in second]
        assert [s.id for s in detect_segments(text, "other")] != [s.id for s in first]

    def test_scene_marker_is_boundary(self):
        config = SegmentationConfig(min_document_length=10, target_min_size=20, target_max_size=6000)
        text = "The first scene goes on for a while.\n***\nThe second scene begins right here."
        segments = detect_segments(text, "doc", config)
        assert len(segments) == 2
        assert segments[1].text_of(text).startswith("***")


class TestSegmentHelpers:
    """Tests for adjacency and offset conversion."""

    def test_adjacent_segments(self):
        segments = story_segments()
        assert get_adjacent_segments(segments, ["seg-1"]) == ["seg-1", "seg-2"]
        assert get_adjacent_segments(segments, ["seg-2"], distance=0) == ["seg-2"]

    def test_to_absolute_position(self):
        segments = story_segments()
        start, end = to_absolute_position(segments, "seg-2", 1, 6)
        assert STORY[start:end] == "Later"

    def test_to_absolute_position_out_of_range(self):
        segments = story_segments()
        assert to_absolute_position(segments, "seg-1", 0, 500) is None
        assert to_absolute_position(segments, "missing", 0, 1) is None


class TestSplitSentences:
    """Tests for split_sentences()."""

    def test_basic_split(self):
        spans = split_sentences(STORY)
        assert [STORY[s:e] for s, e in spans] == ["Alice met Bob at the old mill.", "Later, Bob betrayed Alice."]

    def test_abbreviations_do_not_split(self):
        text = "Dr. Watson arrived at noon. Mr. Holmes was waiting for him."
        spans = split_sentences(text)
        assert [text[s:e] for s, e in spans] == ["Dr. Watson arrived at noon.", "Mr. Holmes was waiting for him."]

    def test_initials_do_not_split(self):
        text = "J. R. Tolkien wrote many books. He liked trees."
        spans = split_sentences(text, min_length=5)
        assert len(spans) == 2

    def test_short_sentences_dropped(self):
        text = "Yes. The long sentence stays here. No."
        spans = split_sentences(text)
        assert [text[s:e] for s, e in spans] == ["The long sentence stays here."]

    def test_trailing_text_without_punctuation(self):
        text = "A sentence that ends. And one that trails off"
        spans = split_sentences(text)
        assert text[spans[-1][0] : spans[-1][1]] == "And one that trails off"


class TestSentenceProcessor:
    """Tests for embedding and storing sentences."""

    async def test_process_document_embeds_in_one_batch(self, sentence_store):
        embedder = MockEmbeddingGenerator()
        processor = SentenceProcessor(embedder, sentence_store)

        sentences = await processor.process_document("doc", STORY, story_segments())

        assert len(sentences) == 2
        assert len(embedder.calls) == 1
        assert all(s.embedding is not None for s in sentences)
        assert await sentence_store.count("doc") == 2
        assert sentences[1].segment_id == "seg-2"
        assert STORY[sentences[1].start : sentences[1].end] == sentences[1].text

    async def test_segment_embedding_is_average(self, sentence_store):
        embedder = MockEmbeddingGenerator()
        processor = SentenceProcessor(embedder, sentence_store)
        sentences = await processor.process_document("doc", STORY, story_segments())

        embedding = await processor.segment_embedding("doc", "seg-1")

        assert embedding == sentences[0].embedding

    async def test_segment_embedding_missing(self, sentence_store):
        processor = SentenceProcessor(MockEmbeddingGenerator(), sentence_store)
        assert await processor.segment_embedding("doc", "seg-1") is None


def test_compute_average_embedding():
    assert compute_average_embedding([(1.0, 2.0), (3.0, 4.0)]) == (2.0, 3.0)
    assert compute_average_embedding([]) is None
