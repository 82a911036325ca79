"""Extraction statistics and the low-quality gate."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

from .models import Page

NEAR_EMPTY_PAGE_CHARS = 20
EMPTY_PAGE_RATIO_THRESHOLD = 0.6
MIN_AVG_CHARS_PER_PAGE = 40


@dataclass(slots=True)
class ExtractionStats:
    pages_extracted: int
    empty_pages: int
    avg_chars_per_page: int


@dataclass(slots=True)
class QualityReport:
    stats: ExtractionStats
    low_quality: bool
    reasons: List[str] = field(default_factory=list)


def compute_extraction_stats(pages: Sequence[Page]) -> ExtractionStats:
    if not pages:
        return ExtractionStats(pages_extracted=0, empty_pages=0, avg_chars_per_page=0)
    lengths = [len(page.text.strip()) for page in pages]
    return ExtractionStats(
        pages_extracted=len(pages),
        empty_pages=sum(1 for length in lengths if length < NEAR_EMPTY_PAGE_CHARS),
        avg_chars_per_page=round(sum(lengths) / len(pages)),
    )


def assess_quality(pages: Sequence[Page]) -> QualityReport:
    """Flag a page set whose text is mostly missing."""

    stats = compute_extraction_stats(pages)
    reasons: List[str] = []
    if stats.pages_extracted == 0:
        reasons.append("no pages")
    else:
        if stats.empty_pages / stats.pages_extracted >= EMPTY_PAGE_RATIO_THRESHOLD:
            reasons.append(f"{stats.empty_pages}/{stats.pages_extracted} pages are near-empty")
        if stats.avg_chars_per_page < MIN_AVG_CHARS_PER_PAGE:
            reasons.append(f"average {stats.avg_chars_per_page} chars per page")
    return QualityReport(stats=stats, low_quality=bool(reasons), reasons=reasons)
