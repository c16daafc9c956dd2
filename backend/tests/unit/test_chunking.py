"""
Unit Tests — SemanticChunker
════════════════════════════
Pure-function tests: no I/O, no mocks except one forced internal failure.

Coverage targets:
  ✅ Short structured document → exactly one chunk covering the whole text
  ✅ Long documents → contiguous indices, bounded token counts, exact offsets
  ✅ Overlap carries trailing units; overlap_tokens=0 never repeats text
  ✅ ~4000 tokens at default options → 3 chunks, each later chunk opens with
     the tail of the previous one, even when that tail is part of one paragraph
  ✅ Oversized paragraphs split on sentences; run-on text on word windows
  ✅ Small chunks dropped and re-indexed; largest kept when all are small
  ✅ Classification: heading / list / table / paragraph
  ✅ Abbreviation-aware sentence boundaries
  ✅ Determinism, empty input, invalid options
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from docpipeline.processing.chunking import (
    ChunkingOptions,
    SemanticChunker,
    estimate_tokens,
    normalize_text,
)
from docpipeline.processing.errors import ErrorCode, ProcessingError
from docpipeline.schemas.documents import SemanticType


@pytest.fixture
def chunker() -> SemanticChunker:
    return SemanticChunker()


def _paragraph(words: int, seed: str = "word") -> str:
    """One line of distinct words ending with a period (53 tokens for 40 words)."""
    return " ".join(f"{seed}{i}" for i in range(words)) + "."


def _clause_paragraph(n: int, sentences: int = 11) -> str:
    """One line of short numbered sentences (about 176 tokens)."""
    return " ".join(
        f"Term {n}.{s} sets out the duties of each party in plain words."
        for s in range(sentences)
    )


def _long_document(paragraphs: int = 60) -> str:
    return "\n\n".join(_paragraph(40, seed=f"p{n}w") for n in range(paragraphs))


STRUCTURED_DOC = (
    "# Introduction\n\n"
    "First paragraph text here.\n\n"
    "## Details\n\n"
    "Second paragraph.\n\n"
    "Third paragraph body.\n\n"
    "## Summary\n\n"
    "Final words."
)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers: tokens + normalization
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.chunking
class TestTokenEstimateAndNormalization:

    @pytest.mark.parametrize("text,expected", [
        ("",               0),
        ("one two three",  4),
        ("$100 @home",     4),
    ])
    def test_estimate_tokens(self, text, expected):
        assert estimate_tokens(text) == expected

    def test_estimate_is_additive_over_words(self):
        left, right = "alpha beta", "gamma delta epsilon"
        combined = estimate_tokens(f"{left} {right}")
        assert combined <= estimate_tokens(left) + estimate_tokens(right)

    @pytest.mark.parametrize("raw,expected", [
        ("a\r\nb\r\n\r\n\r\n\r\nc",   "a\nb\n\nc"),
        ("  x    y  ",                "x y"),
        ("col1 \t  col2",             "col1\tcol2"),
        ("\u00a0hello\u200bworld",    "hello world"),
        ("line\r\rnext",              "line\n\nnext"),
    ])
    def test_normalize_text(self, raw, expected):
        assert normalize_text(raw) == expected

    def test_normalize_is_idempotent(self):
        once = normalize_text("A  b\r\n\r\n\r\n c\t\td ")
        assert normalize_text(once) == once


# ─────────────────────────────────────────────────────────────────────────────
# Classification + sentences
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.chunking
class TestClassification:

    @pytest.mark.parametrize("block,expected", [
        ("# Introduction",                          SemanticType.HEADING),
        ("SECTION ONE",                             SemanticType.HEADING),
        ("1.2 Scope of Work",                       SemanticType.HEADING),
        ("- apples\n- pears",                       SemanticType.LIST),
        ("1. first step",                           SemanticType.LIST),
        ("Name\tAge\nBob\t42",                      SemanticType.TABLE),
        ("| a | b |\n| c | d |",                    SemanticType.TABLE),
        ("This is a sentence. And another one.",    SemanticType.PARAGRAPH),
        ("intro line\n- only one marker\nplain",    SemanticType.PARAGRAPH),
    ])
    def test_classify(self, chunker, block, expected):
        assert chunker.classify(block) is expected

    def test_sentence_spans_skip_abbreviations(self, chunker):
        text = "Dr. Smith arrived. He sat down."
        spans = chunker.sentence_spans(text)
        assert [text[s:e] for s, e in spans] == ["Dr. Smith arrived.", "He sat down."]

    def test_sentence_spans_offset(self, chunker):
        spans = chunker.sentence_spans("One. Two.", offset=10)
        assert spans == [(10, 14), (15, 19)]

    def test_multi_dot_abbreviation(self, chunker):
        text = "Bring fruit, e.g. apples. Then leave."
        spans = chunker.sentence_spans(text)
        assert [text[s:e] for s, e in spans] == ["Bring fruit, e.g. apples.", "Then leave."]


# ─────────────────────────────────────────────────────────────────────────────
# Chunking
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.chunking
class TestChunking:

    def test_short_structured_document_is_one_chunk(self, chunker):
        chunks = chunker.chunk(STRUCTURED_DOC)
        assert len(chunks) == 1

        chunk = chunks[0]
        assert chunk.index == 0
        assert chunk.content == STRUCTURED_DOC
        assert chunk.start_position == 0
        assert chunk.end_position == len(STRUCTURED_DOC)
        assert chunk.semantic_type is SemanticType.PARAGRAPH
        assert chunk.metadata.unit_count == 7
        assert chunk.metadata.type_distribution == {"heading": 3, "paragraph": 4}

    def test_long_document_invariants(self, chunker):
        text = _long_document()
        opts = ChunkingOptions(max_tokens=200, overlap_tokens=60, min_chunk_size=0)
        chunks = chunker.chunk(text, opts)
        normalized = normalize_text(text)

        assert len(chunks) > 1
        assert [c.index for c in chunks] == list(range(len(chunks)))
        for chunk in chunks:
            assert chunk.token_count <= opts.max_tokens + opts.overlap_tokens
            assert normalized[chunk.start_position:chunk.end_position] == chunk.content
        assert chunks[0].start_position == 0
        assert chunks[-1].end_position == len(normalized)

    def test_overlap_repeats_trailing_unit(self, chunker):
        opts = ChunkingOptions(max_tokens=200, overlap_tokens=60, min_chunk_size=0)
        chunks = chunker.chunk(_long_document(), opts)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_position < prev.end_position
            assert prev.content.endswith(nxt.content.split("\n\n")[0])

    def test_zero_overlap_never_repeats(self, chunker):
        opts = ChunkingOptions(max_tokens=200, overlap_tokens=0, min_chunk_size=0)
        chunks = chunker.chunk(_long_document(), opts)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_position > prev.end_position

    def test_default_options_four_thousand_tokens(self, chunker):
        text = "\n\n".join(_clause_paragraph(n) for n in range(22))
        assert 3500 <= estimate_tokens(text) <= 4500

        chunks = chunker.chunk(text, ChunkingOptions())
        normalized = normalize_text(text)

        assert len(chunks) == 3
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_position < prev.end_position
            overlap = normalized[nxt.start_position:prev.end_position]
            assert prev.content.endswith(overlap)
            assert nxt.content.startswith(overlap)
            assert overlap.startswith("Term ")
            assert 0 < estimate_tokens(overlap) <= 150
        for chunk in chunks:
            assert chunk.token_count <= 1500 + 150

    def test_overlap_kept_when_last_unit_exceeds_overlap(self, chunker):
        text = "\n\n".join(_paragraph(150, seed=f"p{n}w") for n in range(20))
        opts = ChunkingOptions()
        chunks = chunker.chunk(text, opts)
        normalized = normalize_text(text)

        assert len(chunks) > 1
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_position < prev.end_position
            overlap = normalized[nxt.start_position:prev.end_position]
            assert prev.content.endswith(overlap)
            assert 0 < estimate_tokens(overlap) <= opts.overlap_tokens
        for chunk in chunks:
            assert chunk.token_count <= opts.max_tokens + opts.overlap_tokens

    def test_oversized_paragraph_splits_on_sentences(self, chunker):
        text = " ".join(f"This is sentence {i}." for i in range(100))
        opts = ChunkingOptions(max_tokens=50, overlap_tokens=10, min_chunk_size=0)
        chunks = chunker.chunk(text, opts)

        assert len(chunks) > 1
        for chunk in chunks:
            assert chunk.token_count <= 60
            assert chunk.content.startswith("This is sentence")
            assert chunk.content.endswith(".")

    def test_run_on_text_uses_word_windows(self, chunker):
        text = " ".join(["lorem"] * 500)
        opts = ChunkingOptions(max_tokens=100, overlap_tokens=0, min_chunk_size=0)
        chunks = chunker.chunk(text, opts)

        assert len(chunks) > 1
        assert all(c.token_count <= 100 for c in chunks)
        assert sum(len(c.content.split()) for c in chunks) == 500

    def test_small_chunks_dropped_and_reindexed(self, chunker):
        text = "\n\n".join([_paragraph(40, "a"), _paragraph(40, "b"), "Tail sentence here."])
        opts = ChunkingOptions(max_tokens=55, overlap_tokens=0, min_chunk_size=20)
        chunks = chunker.chunk(text, opts)

        assert len(chunks) == 2
        assert [c.index for c in chunks] == [0, 1]
        assert "Tail sentence here." not in chunks[-1].content

    def test_largest_chunk_kept_when_all_are_small(self, chunker):
        opts = ChunkingOptions(max_tokens=3, overlap_tokens=0, min_chunk_size=100)
        chunks = chunker.chunk("Alpha beta.\n\nGamma delta.", opts)
        assert len(chunks) == 1
        assert chunks[0].index == 0
        assert chunks[0].content == "Alpha beta."

    def test_single_small_chunk_always_kept(self, chunker):
        chunks = chunker.chunk("Tiny.", ChunkingOptions(min_chunk_size=500))
        assert len(chunks) == 1
        assert chunks[0].content == "Tiny."

    def test_dominant_type_ties_go_to_first_seen(self, chunker):
        chunks = chunker.chunk("Requirements\n\n- one\n- two\n- three")
        assert chunks[0].metadata.type_distribution == {"heading": 1, "list": 1}
        assert chunks[0].semantic_type is SemanticType.HEADING

    def test_offsets_refer_to_normalized_text(self, chunker):
        raw = "Title Line\r\n\r\n\r\n\r\nBody   text  here."
        chunks = chunker.chunk(raw)
        assert chunks[0].content == "Title Line\n\nBody text here."

    def test_chunking_is_deterministic(self, chunker):
        text = _long_document(20)
        opts = ChunkingOptions(max_tokens=150, overlap_tokens=40, min_chunk_size=0)
        assert chunker.chunk(text, opts) == chunker.chunk(text, opts)


# ─────────────────────────────────────────────────────────────────────────────
# Errors + options
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.chunking
class TestChunkingErrors:

    @pytest.mark.parametrize("text", ["", "   \n\t  "])
    def test_empty_text(self, chunker, text):
        with pytest.raises(ProcessingError) as exc_info:
            chunker.chunk(text)
        assert exc_info.value.code == ErrorCode.EMPTY_TEXT.value

    def test_internal_failure_is_wrapped(self, chunker, monkeypatch):
        def boom(normalized):
            raise RuntimeError("splitter crashed")

        monkeypatch.setattr(chunker, "split_units", boom)
        with pytest.raises(ProcessingError) as exc_info:
            chunker.chunk("Some text.")
        assert exc_info.value.code == ErrorCode.CHUNKING_FAILED.value
        assert "splitter crashed" in exc_info.value.message

    def test_overlap_must_be_below_max(self):
        with pytest.raises(ValidationError):
            ChunkingOptions(max_tokens=100, overlap_tokens=100)

    def test_max_tokens_must_be_positive(self):
        with pytest.raises(ValidationError):
            ChunkingOptions(max_tokens=0, overlap_tokens=0)

    def test_defaults(self):
        opts = ChunkingOptions()
        assert (opts.max_tokens, opts.overlap_tokens, opts.min_chunk_size) == (1500, 150, 100)
