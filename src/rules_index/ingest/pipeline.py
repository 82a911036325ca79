"""High level indexing pipeline turning pages or structured imports into index rows."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from rules_index.telemetry import stage_timer

from .chunking import ChunkingConfig, SectionChunker
from .datasets import detect_datasets
from .models import Chunk, Dataset, Page, Section, Table
from .sections import Heading, build_sections
from .structured import StructuredImport, map_structured_import
from .tables import detect_tables_in_pages

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexPipelineConfig:
    target_chars: int = 1800
    overlap_chars: int = 200
    min_chars: Optional[int] = None


@dataclass(slots=True)
class IndexResult:
    sections: List[Section] = field(default_factory=list)
    chunks: List[Chunk] = field(default_factory=list)
    tables: List[Table] = field(default_factory=list)
    datasets: List[Dataset] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)


def stable_id(source_id: str, kind: str, index: int) -> str:
    return uuid.uuid5(uuid.NAMESPACE_URL, f"{source_id}:{kind}:{index}").hex


class IndexPipeline:
    """Pipeline orchestrating section detection, table detection and chunking."""

    def __init__(self, config: Optional[IndexPipelineConfig] = None) -> None:
        self.config = config or IndexPipelineConfig()
        self.chunker = SectionChunker(
            ChunkingConfig(
                target_chars=self.config.target_chars,
                overlap_chars=self.config.overlap_chars,
                min_chars=self.config.min_chars,
            )
        )

    def index_pages(
        self,
        source_id: str,
        pages: Sequence[Page],
        *,
        headings: Optional[Sequence[Heading]] = None,
        tables: Optional[Sequence[Table]] = None,
    ) -> IndexResult:
        """Detect structure in normalised pages and build chunks.

        ``headings`` and ``tables`` replace the corresponding detector output when
        an upstream pass already found them.
        """

        result = IndexResult()
        with stage_timer(result.timings, "detectSections"):
            result.sections = build_sections(pages, headings or None)
        with stage_timer(result.timings, "detectTables"):
            result.tables = list(tables) if tables is not None else detect_tables_in_pages(pages)
        self._finish(source_id, result)
        LOGGER.info(
            "Indexed %s pages for source %s: %s sections, %s chunks, %s tables",
            len(pages),
            source_id,
            len(result.sections),
            len(result.chunks),
            len(result.tables),
        )
        return result

    def index_structured(self, source_id: str, data: StructuredImport) -> IndexResult:
        result = IndexResult()
        with stage_timer(result.timings, "mapStructured"):
            mapped = map_structured_import(data)
        result.sections = mapped.sections
        result.tables = mapped.tables
        self._finish(source_id, result, datasets=mapped.datasets)
        LOGGER.info(
            "Mapped structured import for source %s: %s sections, %s tables, %s datasets",
            source_id,
            len(result.sections),
            len(result.tables),
            len(result.datasets),
        )
        return result

    def _finish(self, source_id: str, result: IndexResult, datasets: Optional[List[Dataset]] = None) -> None:
        for index, section in enumerate(result.sections):
            section.id = stable_id(source_id, "section", index)
        with stage_timer(result.timings, "buildChunks"):
            result.chunks = self.chunker.chunk_sections(result.sections)
        for chunk in result.chunks:
            chunk.id = stable_id(source_id, "chunk", chunk.order_index)
        with stage_timer(result.timings, "detectDatasets"):
            result.datasets = datasets if datasets is not None else detect_datasets(result.tables)
