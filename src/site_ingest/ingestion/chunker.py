"""Sentence-bounded text chunking."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from site_ingest.errors import ChunkingFailure

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+(?=[A-Z0-9\"'(\[])")
TOKENS_PER_WORD = 1.33

_MAX_HEADING_WORDS = 12


def estimate_tokens(word_count: int) -> int:
    """Approximate model tokens for *word_count* whitespace-separated words."""
    return math.ceil(word_count * TOKENS_PER_WORD)


@dataclass
class TextChunk:
    """One segment produced by :class:`Chunker`.

    Attributes
    ----------
    index:
        0-based, contiguous position within the page.
    oversized:
        The chunk is a single sentence longer than the upper bound.
    split_reason:
        Why the chunk was closed: ``size_limit``, ``section_break``,
        ``oversized_sentence`` or ``end_of_content``.
    """

    index: int
    text: str
    token_count: int
    sentence_count: int
    paragraph_count: int
    has_heading: bool
    oversized: bool
    split_reason: str
    quality_score: float


@dataclass
class _Sentence:
    text: str
    words: int
    paragraph_end: bool
    heading: bool


class Chunker:
    """Greedily pack whole sentences into chunks of ``min_tokens``–``max_tokens``.

    A chunk is closed when the next sentence would push it past
    ``max_tokens`` and it already holds at least ``min_tokens``, or when a
    heading starts and the chunk is already large enough.  A sentence that
    alone exceeds ``max_tokens`` becomes its own chunk.  Sentences are never
    split, and the last chunk may be shorter than ``min_tokens``.
    """

    def __init__(self, min_tokens: int = 300, max_tokens: int = 400) -> None:
        if not 0 < min_tokens <= max_tokens:
            raise ValueError(f"Invalid token bounds: min={min_tokens}, max={max_tokens}")
        self.min_tokens = min_tokens
        self.max_tokens = max_tokens

    def chunk(self, clean_text: str) -> list[TextChunk]:
        """Split *clean_text* into ordered chunks.

        Raises
        ------
        ChunkingFailure
            When the text contains no words at all.
        """
        sentences = _sentences(_preprocess(clean_text or ""))
        if not sentences:
            raise ChunkingFailure("Content is empty after preprocessing")

        chunks: list[TextChunk] = []
        current: list[_Sentence] = []
        current_words = 0

        def flush(reason: str) -> None:
            nonlocal current, current_words
            if current:
                chunks.append(self._build(len(chunks), current, reason))
            current, current_words = [], 0

        for sentence in sentences:
            if estimate_tokens(sentence.words) > self.max_tokens:
                flush("oversized_sentence")
                chunks.append(self._build(len(chunks), [sentence], "oversized_sentence", oversized=True))
                continue

            big_enough = estimate_tokens(current_words) >= self.min_tokens
            if current and big_enough:
                if estimate_tokens(current_words + sentence.words) > self.max_tokens:
                    flush("size_limit")
                elif sentence.heading:
                    flush("section_break")

            current.append(sentence)
            current_words += sentence.words

        flush("end_of_content")
        return chunks

    def _build(
        self,
        index: int,
        sentences: list[_Sentence],
        reason: str,
        *,
        oversized: bool = False,
    ) -> TextChunk:
        parts: list[str] = []
        for i, sentence in enumerate(sentences):
            if i:
                parts.append("\n\n" if sentences[i - 1].paragraph_end else " ")
            parts.append(sentence.text)
        text = "".join(parts)

        tokens = estimate_tokens(sum(s.words for s in sentences))
        has_heading = any(s.heading for s in sentences)
        paragraph_count = max(1, sum(1 for s in sentences[:-1] if s.paragraph_end) + 1)
        return TextChunk(
            index=index,
            text=text,
            token_count=tokens,
            sentence_count=len(sentences),
            paragraph_count=paragraph_count,
            has_heading=has_heading,
            oversized=oversized,
            split_reason=reason,
            quality_score=self._quality(tokens, len(sentences), has_heading, sentences[-1].paragraph_end),
        )

    def _quality(self, tokens: int, sentence_count: int, has_heading: bool, ends_paragraph: bool) -> float:
        score = 70.0
        if has_heading:
            score += 15
        if ends_paragraph:
            score += 10
        if 2 <= sentence_count <= 8:
            score += 10
        elif sentence_count > 15:
            score -= 10
        if self.min_tokens <= tokens <= self.max_tokens:
            score += 10
        elif tokens < 200:
            score -= 15
        elif tokens > 500:
            score -= 10
        return max(0.0, min(100.0, score))


# ── Helpers ─────────────────────────────────────────────────────────────


def _preprocess(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _is_heading(paragraph: str) -> bool:
    if paragraph.startswith("#"):
        return True
    words = paragraph.split()
    return 0 < len(words) <= _MAX_HEADING_WORDS and paragraph[-1] not in ".!?:;,"


def _sentences(text: str) -> list[_Sentence]:
    units: list[_Sentence] = []
    for paragraph in re.split(r"\n\s*\n", text):
        paragraph = " ".join(line.strip() for line in paragraph.splitlines() if line.strip())
        if not paragraph:
            continue
        heading = _is_heading(paragraph)
        pieces = [paragraph] if heading else [p.strip() for p in SENTENCE_BOUNDARY.split(paragraph) if p.strip()]
        for i, piece in enumerate(pieces):
            units.append(
                _Sentence(
                    text=piece,
                    words=len(piece.split()),
                    paragraph_end=i == len(pieces) - 1,
                    heading=heading,
                )
            )
    return units
