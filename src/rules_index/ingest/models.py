"""Data models used by the indexing pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SourceKind(str, Enum):
    """Origin of an ingested rulebook."""

    PAGED_DOCUMENT = "paged-document"
    STRUCTURED_IMPORT = "structured-import"
    PASTED_TEXT = "pasted-text"


class IndexStatus(str, Enum):
    PENDING = "pending"
    INDEXING = "indexing"
    INDEXED = "indexed"
    FAILED = "failed"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(slots=True)
class Page:
    """Text extracted from a single page of a source document."""

    page_number: int
    text: str
    char_count: int = -1

    def __post_init__(self) -> None:
        if self.char_count < 0:
            self.char_count = len(self.text)


@dataclass(slots=True)
class PageHash:
    page_number: int
    hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {"pageNumber": self.page_number, "hash": self.hash}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PageHash":
        return cls(page_number=int(payload["pageNumber"]), hash=str(payload["hash"]))


@dataclass(slots=True)
class ScoreHints:
    """Ranking flags attached to a chunk for retrieval."""

    has_roll_ranges: bool = False
    has_table_pattern: bool = False
    has_dice_table: bool = False
    has_list_pattern: bool = False
    has_dice_notation: bool = False
    section_type: str = "other"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasRollRanges": self.has_roll_ranges,
            "hasTablePattern": self.has_table_pattern,
            "hasDiceTable": self.has_dice_table,
            "hasListPattern": self.has_list_pattern,
            "hasDiceNotation": self.has_dice_notation,
            "sectionType": self.section_type,
        }


@dataclass(slots=True)
class Section:
    """A titled, page-ranged span of a source's text."""

    title: str
    text: str
    page_start: Optional[int]
    page_end: Optional[int]
    section_path: List[str] = field(default_factory=list)
    section_type: str = "other"
    level: int = 1
    id: Optional[str] = None


@dataclass(slots=True)
class Chunk:
    """Retrieval-sized slice of a section; ``overlap_chars`` counts the prefix copied from the previous chunk."""

    text: str
    order_index: int
    page_start: Optional[int]
    page_end: Optional[int]
    section_path: List[str] = field(default_factory=list)
    score_hints: ScoreHints = field(default_factory=ScoreHints)
    keywords: List[str] = field(default_factory=list)
    overlap_chars: int = 0
    section_id: Optional[str] = None
    id: Optional[str] = None


@dataclass(slots=True)
class Table:
    """Structured tabular extraction with a confidence grade."""

    title: str
    raw_text: str
    parsed_rows: List[Dict[str, str]]
    confidence: Confidence
    table_type: str
    page_number: Optional[int] = None
    columns: List[str] = field(default_factory=list)
    dice_type: Optional[str] = None
    header_context: str = ""
    keywords: List[str] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0


@dataclass(slots=True)
class Dataset:
    name: str
    dataset_type: str
    fields: List[str]
    rows: List[Dict[str, Any]]
    confidence: Confidence = Confidence.MEDIUM


@dataclass(slots=True)
class IndexFailure:
    """Error recorded on a source when a run fails."""

    stage: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"stage": self.stage, "message": self.message}


@dataclass(slots=True)
class IndexStats:
    """Aggregated statistics for an indexing run."""

    pages_extracted: int = 0
    empty_pages: int = 0
    avg_chars_per_page: int = 0
    sections: int = 0
    chunks: int = 0
    tables_high: int = 0
    tables_medium: int = 0
    tables_low: int = 0
    datasets: int = 0
    time_ms_by_stage: Dict[str, float] = field(default_factory=dict)
    ocr_attempted: bool = False
    ocr_succeeded: bool = False
    page_hashes: List[PageHash] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pagesExtracted": self.pages_extracted,
            "emptyPages": self.empty_pages,
            "avgCharsPerPage": self.avg_chars_per_page,
            "sections": self.sections,
            "chunks": self.chunks,
            "tablesHigh": self.tables_high,
            "tablesMedium": self.tables_medium,
            "tablesLow": self.tables_low,
            "datasets": self.datasets,
            "timeMsByStage": dict(self.time_ms_by_stage),
            "ocrAttempted": self.ocr_attempted,
            "ocrSucceeded": self.ocr_succeeded,
            "pageHashes": [page_hash.to_dict() for page_hash in self.page_hashes],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "IndexStats":
        return cls(
            pages_extracted=int(payload.get("pagesExtracted", 0)),
            empty_pages=int(payload.get("emptyPages", 0)),
            avg_chars_per_page=int(payload.get("avgCharsPerPage", 0)),
            sections=int(payload.get("sections", 0)),
            chunks=int(payload.get("chunks", 0)),
            tables_high=int(payload.get("tablesHigh", 0)),
            tables_medium=int(payload.get("tablesMedium", 0)),
            tables_low=int(payload.get("tablesLow", 0)),
            datasets=int(payload.get("datasets", 0)),
            time_ms_by_stage=dict(payload.get("timeMsByStage", {})),
            ocr_attempted=bool(payload.get("ocrAttempted", False)),
            ocr_succeeded=bool(payload.get("ocrSucceeded", False)),
            page_hashes=[PageHash.from_dict(item) for item in payload.get("pageHashes", [])],
        )


@dataclass(slots=True)
class Source:
    """One ingested rulebook document and its indexing state."""

    id: str
    kind: SourceKind
    title: str = ""
    status: IndexStatus = IndexStatus.PENDING
    storage_path: Optional[str] = None
    raw_text: Optional[str] = None
    error: Optional[IndexFailure] = None
    stats: Optional[IndexStats] = None
    page_hashes: List[PageHash] = field(default_factory=list)
    last_indexed_at: Optional[datetime] = None
