"""Rulebook indexing pipeline: normalisation, detection, chunking and fallback."""
from __future__ import annotations

from .models import (
    Chunk,
    Confidence,
    Dataset,
    IndexFailure,
    IndexStats,
    IndexStatus,
    Page,
    PageHash,
    ScoreHints,
    Section,
    Source,
    SourceKind,
    Table,
)

__all__ = [
    "Chunk",
    "Confidence",
    "Dataset",
    "IndexFailure",
    "IndexStats",
    "IndexStatus",
    "Page",
    "PageHash",
    "ScoreHints",
    "Section",
    "Source",
    "SourceKind",
    "Table",
]
