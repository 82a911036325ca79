"""Chunking utilities for breaking section text into retrieval-sized units."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .keywords import extract_keywords
from .models import Chunk, ScoreHints, Section
from .sections import is_heading_line
from .tables import detect_dice_tables

_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z0-9])")
_ROLL_RANGE_RE = re.compile(r"\b\d{1,2}\s*[-–]\s*\d{1,2}\b")
_DICE_NOTATION_RE = re.compile(r"\b\d*[dD](?:3|6|8|10|12|20|66|100)\b")
_PIPE_ROW_RE = re.compile(r"\|.*\|")
_NUMBERED_LINE_RE = re.compile(r"^\s*\d", re.MULTILINE)
_LIST_LINE_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+\S", re.MULTILINE)
LOGGER = logging.getLogger(__name__)

DEFAULT_TARGET_CHARS = 1800
DEFAULT_OVERLAP_CHARS = 200
MIN_CHUNK_FLOOR = 80
MIN_CHUNK_RATIO = 0.2

Span = Tuple[int, int]


@dataclass(slots=True)
class ChunkingConfig:
    """Chunk sizing; a chunk body never exceeds ``target_chars - overlap_chars``."""

    target_chars: int = DEFAULT_TARGET_CHARS
    overlap_chars: int = DEFAULT_OVERLAP_CHARS
    min_chars: Optional[int] = None

    def __post_init__(self) -> None:
        if self.target_chars <= 0:
            raise ValueError("target_chars must be positive")
        if not 0 <= self.overlap_chars < self.target_chars:
            raise ValueError("overlap_chars must be non-negative and smaller than target_chars")
        if self.min_chars is None:
            self.min_chars = max(MIN_CHUNK_FLOOR, int(self.target_chars * MIN_CHUNK_RATIO))
        elif self.min_chars < 0:
            raise ValueError("min_chars must be non-negative")

    @property
    def body_chars(self) -> int:
        return self.target_chars - self.overlap_chars


@dataclass(slots=True)
class TextPiece:
    text: str
    overlap: int = 0

    @property
    def body(self) -> str:
        return self.text[self.overlap :]


def compute_score_hints(text: str, section_type: str = "other") -> ScoreHints:
    """Derive ranking flags from chunk text."""

    return ScoreHints(
        has_roll_ranges=bool(_ROLL_RANGE_RE.search(text)),
        has_table_pattern=(
            "\t" in text or bool(_PIPE_ROW_RE.search(text)) or len(_NUMBERED_LINE_RE.findall(text)) > 3
        ),
        has_dice_table=bool(detect_dice_tables(text)),
        has_list_pattern=len(_LIST_LINE_RE.findall(text)) >= 2,
        has_dice_notation=bool(_DICE_NOTATION_RE.search(text)),
        section_type=section_type,
    )


class SectionChunker:
    """Split section text into overlapping chunks respecting heading and sentence boundaries.

    Chunks are contiguous spans of the section text: dropping the ``overlap``
    prefix of every chunk after the first and concatenating the rest gives the
    original text back.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None) -> None:
        self.config = config or ChunkingConfig()

    def split_text(self, text: str) -> List[TextPiece]:
        if not text.strip():
            return []
        limit = self.config.body_chars
        units: List[Span] = []
        for start, end in self._blocks(text):
            if end - start <= limit:
                units.append((start, end))
            else:
                units.extend(self._split_oversized(text, start, end, limit))
        bodies = self._merge_small(self._pack(units, limit), limit)
        return self._apply_overlap(text, bodies)

    def chunk_section(self, section: Section, start_index: int = 0) -> List[Chunk]:
        chunks: List[Chunk] = []
        for offset, piece in enumerate(self.split_text(section.text)):
            chunks.append(
                Chunk(
                    text=piece.text,
                    order_index=start_index + offset,
                    page_start=section.page_start,
                    page_end=section.page_end,
                    section_path=list(section.section_path),
                    score_hints=compute_score_hints(piece.text, section.section_type),
                    keywords=extract_keywords(piece.text),
                    overlap_chars=piece.overlap,
                    section_id=section.id,
                )
            )
        LOGGER.debug("Section %r produced %s chunks", section.title, len(chunks))
        return chunks

    def chunk_sections(self, sections: Iterable[Section], start_index: int = 0) -> List[Chunk]:
        chunks: List[Chunk] = []
        for section in sections:
            chunks.extend(self.chunk_section(section, start_index + len(chunks)))
        return chunks

    def _blocks(self, text: str) -> List[Span]:
        # Heading lines stand alone; other blocks end at blank-line paragraph breaks.
        spans: List[Span] = []
        block_start = 0
        offset = 0
        previous_blank = False
        for line in text.splitlines(keepends=True):
            line_start, offset = offset, offset + len(line)
            if is_heading_line(line):
                if line_start > block_start:
                    spans.append((block_start, line_start))
                spans.append((line_start, offset))
                block_start = offset
                previous_blank = False
                continue
            blank = not line.strip()
            if not blank and previous_blank and line_start > block_start:
                spans.append((block_start, line_start))
                block_start = line_start
            previous_blank = blank
        if offset > block_start:
            spans.append((block_start, offset))
        return spans

    @staticmethod
    def _split_oversized(text: str, start: int, end: int, limit: int) -> List[Span]:
        boundaries = [start + match.end() for match in _SENTENCE_BOUNDARY_RE.finditer(text[start:end])]
        cuts = [start, *boundaries, end]
        pieces: List[Span] = []
        for piece_start, piece_end in zip(cuts, cuts[1:]):
            while piece_end - piece_start > limit:
                pieces.append((piece_start, piece_start + limit))
                piece_start += limit
            if piece_end > piece_start:
                pieces.append((piece_start, piece_end))
        return pieces

    @staticmethod
    def _pack(units: Iterable[Span], limit: int) -> List[Span]:
        bodies: List[Span] = []
        for start, end in units:
            if bodies and end - bodies[-1][0] <= limit:
                bodies[-1] = (bodies[-1][0], end)
            else:
                bodies.append((start, end))
        return bodies

    def _merge_small(self, bodies: Iterable[Span], limit: int) -> List[Span]:
        minimum = self.config.min_chars or 0
        merged: List[Span] = []
        for start, end in bodies:
            if merged:
                previous_start, previous_end = merged[-1]
                small = end - start < minimum or previous_end - previous_start < minimum
                if small and end - previous_start <= limit:
                    merged[-1] = (previous_start, end)
                    continue
            merged.append((start, end))
        return merged

    def _apply_overlap(self, text: str, bodies: Iterable[Span]) -> List[TextPiece]:
        overlap = self.config.overlap_chars
        pieces: List[TextPiece] = []
        for start, end in bodies:
            body = text[start:end]
            if not pieces or overlap == 0:
                pieces.append(TextPiece(body))
                continue
            prefix = pieces[-1].text[-overlap:]
            pieces.append(TextPiece(prefix + body, overlap=len(prefix)))
        return pieces
