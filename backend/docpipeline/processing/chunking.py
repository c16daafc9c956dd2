"""
Semantic Chunker  —  Structure-Aware, Token-Bounded Segmentation
═════════════════════════════════════════════════════════════════

Why not fixed-size chunks?
──────────────────────────
  Fixed windows split mid-sentence and separate headings from their body:

    "The supplier shall indemnify the
    [CHUNK BREAK]
    customer against all claims..."

  Downstream fact analysis then sees a clause without its subject.

Pipeline
────────
  1. Normalize whitespace (CRLF → LF, 3+ newlines → one blank line,
     space runs → one space, tab-bearing runs → one tab)
  2. Split on blank lines into semantic units with exact offsets and
     classify each: heading → list → table → paragraph
  3. Units over max_tokens are split on sentence boundaries
     (abbreviation-aware), word windows as a last resort
  4. Greedy packing: a unit that would overflow the budget closes the
     current chunk; the next chunk is seeded with the trailing units of the
     closed one that fit inside overlap_tokens, or with the trailing
     sentences (then words) of its last unit when that unit alone is larger
  5. Drop chunks below min_chunk_size unless only one chunk exists,
     then re-index

Guarantees
──────────
  - Non-empty text always yields at least one chunk
  - Indices are contiguous from 0
  - Every chunk except possibly the last carries ≤ max_tokens + overlap_tokens
  - Positions are character offsets into the *normalized* text and
    content == normalized[start_position:end_position]

Token counts are an estimate (words × 1.3 + punctuation × 0.2 + other
symbols × 0.3, rounded up) and will not match any particular tokenizer.
"""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from collections import Counter
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, model_validator

from docpipeline.processing.errors import ErrorCode, ProcessingError
from docpipeline.processing.rules import DEFAULT_CHUNKING_RULES, ChunkingRules
from docpipeline.schemas.documents import ChunkMetadata, DocumentChunk, SemanticType

logger = logging.getLogger(__name__)

_WORD_WEIGHT  = 1.3
_PUNCT_WEIGHT = 0.2
_OTHER_WEIGHT = 0.3

_PUNCT_RE = re.compile(r"[.!?,:;()\[\]{}'\"]")
_OTHER_RE = re.compile(r"[^\w\s.!?,:;()\[\]{}'\"]")

_BLOCK_RE        = re.compile(r"[^\n]+(?:\n[^\n]+)*")
_LINE_RE         = re.compile(r"[^\n]+")
_WORD_RE         = re.compile(r"\S+")
_SENTENCE_END_RE = re.compile(r"[.!?]+(?=\s)")
_TRAILING_TOKEN_RE = re.compile(r"(\S+)$")
_INLINE_WS_RE    = re.compile(r"[ \t]+")
_INVISIBLE_RE    = re.compile(r"[\u00a0\u200b\u200c\u200d\ufeff]")


# ---------------------------------------------------------------------------
# Options and internal unit
# ---------------------------------------------------------------------------

class ChunkingOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_tokens:     int = Field(1500, gt=0)
    overlap_tokens: int = Field(150, ge=0)
    min_chunk_size: int = Field(100, ge=0)

    @model_validator(mode="after")
    def _overlap_below_max(self) -> "ChunkingOptions":
        if self.overlap_tokens >= self.max_tokens:
            raise ValueError("overlap_tokens must be smaller than max_tokens")
        return self


@dataclass
class SemanticUnit:
    """A structurally coherent span of normalized text."""
    content:        str
    type:           SemanticType
    start_position: int
    end_position:   int
    token_count:    int


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def _raw_token_weight(text: str) -> float:
    return (
        len(text.split()) * _WORD_WEIGHT
        + len(_PUNCT_RE.findall(text)) * _PUNCT_WEIGHT
        + len(_OTHER_RE.findall(text)) * _OTHER_WEIGHT
    )


def estimate_tokens(text: str) -> int:
    """Approximate token count; additive over whitespace-separated words."""
    return math.ceil(_raw_token_weight(text))


def _collapse_inline(match: re.Match[str]) -> str:
    return "\t" if "\t" in match.group() else " "


def normalize_text(text: str) -> str:
    text = unicodedata.normalize("NFC", text)
    text = _INVISIBLE_RE.sub(" ", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [_INLINE_WS_RE.sub(_collapse_inline, line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

class SemanticChunker:
    """
    Stateless chunker; all heuristics come from the injected ChunkingRules.

    Usage:
        chunker = SemanticChunker()
        chunks = chunker.chunk(text, ChunkingOptions(max_tokens=800))
    """

    def __init__(self, rules: ChunkingRules = DEFAULT_CHUNKING_RULES) -> None:
        self._rules = rules

    def chunk(
        self,
        text: str,
        options: ChunkingOptions | None = None,
    ) -> list[DocumentChunk]:
        if not text or not text.strip():
            raise ProcessingError(ErrorCode.EMPTY_TEXT, "Cannot chunk empty text")

        opts = options or ChunkingOptions()
        try:
            normalized = normalize_text(text)
            units: list[SemanticUnit] = []
            for unit in self.split_units(normalized):
                units.extend(self._fit_unit(normalized, unit, opts.max_tokens))

            groups = self._pack(normalized, units, opts.max_tokens, opts.overlap_tokens)
            chunks = [self._build_chunk(normalized, i, g) for i, g in enumerate(groups)]
            chunks = self._filter_small(chunks, opts.min_chunk_size)
        except ProcessingError:
            raise
        except Exception as exc:
            raise ProcessingError.wrap(
                ErrorCode.CHUNKING_FAILED, "Failed to chunk text", exc,
                text_length=len(text),
            ) from exc

        logger.info(
            "SemanticChunker | chars=%d units=%d chunks=%d avg_tokens=%.0f",
            len(normalized), len(units), len(chunks),
            sum(c.token_count for c in chunks) / max(1, len(chunks)),
        )
        return chunks

    # ------------------------------------------------------------------
    # Unit detection
    # ------------------------------------------------------------------

    def split_units(self, normalized: str) -> list[SemanticUnit]:
        """Blank-line separated blocks of already-normalized text, classified."""
        return [
            self._make_unit(normalized, m.start(), m.end(), self.classify(m.group()))
            for m in _BLOCK_RE.finditer(normalized)
        ]

    def classify(self, block: str) -> SemanticType:
        rules = self._rules
        lines = block.split("\n")

        if len(lines) == 1 and len(block) < rules.heading_max_chars:
            if any(p.match(block) for p in rules.heading_patterns):
                return SemanticType.HEADING

        marked = sum(1 for line in lines if any(p.match(line) for p in rules.list_patterns))
        if len(lines) == 1 and marked == 1:
            return SemanticType.LIST
        if marked >= rules.list_min_lines and marked * 2 > len(lines):
            return SemanticType.LIST

        if len(lines) >= rules.table_min_rows and (
            all("\t" in line for line in lines) or all("|" in line for line in lines)
        ):
            return SemanticType.TABLE

        return SemanticType.PARAGRAPH

    def sentence_spans(self, text: str, offset: int = 0) -> list[tuple[int, int]]:
        """
        (start, end) spans of sentences in `text`, shifted by `offset`.
        A period after a known abbreviation is not a boundary.
        """
        spans: list[tuple[int, int]] = []
        start = 0
        for m in _SENTENCE_END_RE.finditer(text):
            if m.group() == ".":
                token = _TRAILING_TOKEN_RE.search(text, start, m.start())
                word = re.sub(r"^\W+", "", token.group(1)) if token else ""
                if word and self._rules.is_abbreviation(word):
                    continue
            spans.append((start, m.end()))
            start = m.end()
            while start < len(text) and text[start].isspace():
                start += 1
        if start < len(text):
            spans.append((start, len(text)))
        return [(s + offset, e + offset) for s, e in spans if e > s]

    # ------------------------------------------------------------------
    # Oversized units
    # ------------------------------------------------------------------

    def _fit_unit(self, text: str, unit: SemanticUnit, max_tokens: int) -> list[SemanticUnit]:
        if unit.token_count <= max_tokens:
            return [unit]

        spans = self._sub_spans(unit)
        if len(spans) <= 1:
            return self._word_windows(text, unit, max_tokens)

        pieces: list[SemanticUnit] = []
        for start, end in spans:
            piece = self._make_unit(text, start, end, unit.type)
            if piece.token_count <= max_tokens:
                pieces.append(piece)
            else:
                pieces.extend(self._word_windows(text, piece, max_tokens))
        return pieces

    def _sub_spans(self, unit: SemanticUnit) -> list[tuple[int, int]]:
        """Lines for lists and tables, sentences otherwise; absolute offsets."""
        if unit.type in (SemanticType.LIST, SemanticType.TABLE):
            return [
                (unit.start_position + m.start(), unit.start_position + m.end())
                for m in _LINE_RE.finditer(unit.content)
            ]
        return self.sentence_spans(unit.content, unit.start_position)

    def _word_windows(self, text: str, unit: SemanticUnit, max_tokens: int) -> list[SemanticUnit]:
        windows: list[SemanticUnit] = []
        start = end = None
        weight = 0.0
        for m in _WORD_RE.finditer(unit.content):
            w = _raw_token_weight(m.group())
            if start is not None and math.ceil(weight + w) > max_tokens:
                windows.append(self._make_unit(
                    text, unit.start_position + start, unit.start_position + end, unit.type,
                ))
                start, weight = None, 0.0
            if start is None:
                start = m.start()
            end = m.end()
            weight += w
        if start is not None:
            windows.append(self._make_unit(
                text, unit.start_position + start, unit.start_position + end, unit.type,
            ))
        return windows

    # ------------------------------------------------------------------
    # Packing
    # ------------------------------------------------------------------

    def _pack(
        self,
        text: str,
        units: list[SemanticUnit],
        max_tokens: int,
        overlap_tokens: int,
    ) -> list[list[SemanticUnit]]:
        groups: list[list[SemanticUnit]] = []
        current: list[SemanticUnit] = []
        current_tokens = 0

        for unit in units:
            overflow = current_tokens + unit.token_count > max_tokens
            # A chunk small enough to be carried whole is extended instead of closed
            if current and overflow and current_tokens > overlap_tokens:
                groups.append(current)
                current = self._overlap_seed(text, current, overlap_tokens)
                current_tokens = sum(u.token_count for u in current)

            current.append(unit)
            current_tokens += unit.token_count

        if current:
            groups.append(current)
        return groups

    def _overlap_seed(
        self,
        text: str,
        closed: list[SemanticUnit],
        overlap_tokens: int,
    ) -> list[SemanticUnit]:
        """Trailing units of `closed` within overlap_tokens, or the tail of its last unit."""
        if overlap_tokens <= 0:
            return []

        carry: list[SemanticUnit] = []
        carried = 0
        for prev in reversed(closed):
            if carried + prev.token_count > overlap_tokens:
                break
            carry.insert(0, prev)
            carried += prev.token_count
        if carry:
            return carry
        return [self._unit_tail(text, closed[-1], overlap_tokens)]

    def _unit_tail(self, text: str, unit: SemanticUnit, overlap_tokens: int) -> SemanticUnit:
        """Trailing sentences (or lines) of `unit` within overlap_tokens, else trailing words."""
        start = None
        carried = 0
        for span_start, span_end in reversed(self._sub_spans(unit)):
            tokens = estimate_tokens(text[span_start:span_end])
            if carried + tokens > overlap_tokens:
                break
            start, carried = span_start, carried + tokens
        if start is not None:
            return self._make_unit(text, start, unit.end_position, unit.type)

        words = list(_WORD_RE.finditer(unit.content))
        start = words[-1].start()
        weight = 0.0
        for m in reversed(words):
            weight += _raw_token_weight(m.group())
            if math.ceil(weight) > overlap_tokens:
                break
            start = m.start()
        return self._make_unit(text, unit.start_position + start, unit.end_position, unit.type)

    def _build_chunk(self, text: str, index: int, group: list[SemanticUnit]) -> DocumentChunk:
        start, end = group[0].start_position, group[-1].end_position
        content = text[start:end]
        distribution = Counter(u.type.value for u in group)
        dominant = max(distribution, key=distribution.__getitem__)
        return DocumentChunk(
            index=index,
            content=content,
            token_count=max(1, estimate_tokens(content)),
            start_position=start,
            end_position=end,
            semantic_type=SemanticType(dominant),
            metadata=ChunkMetadata(unit_count=len(group), type_distribution=dict(distribution)),
        )

    @staticmethod
    def _filter_small(chunks: list[DocumentChunk], min_chunk_size: int) -> list[DocumentChunk]:
        if len(chunks) <= 1:
            return chunks
        kept = [c for c in chunks if c.token_count >= min_chunk_size]
        if not kept:
            kept = [max(chunks, key=lambda c: c.token_count)]
        return [c.model_copy(update={"index": i}) for i, c in enumerate(kept)]

    @staticmethod
    def _make_unit(text: str, start: int, end: int, type_: SemanticType) -> SemanticUnit:
        content = text[start:end]
        return SemanticUnit(
            content=content,
            type=type_,
            start_position=start,
            end_position=end,
            token_count=estimate_tokens(content),
        )
