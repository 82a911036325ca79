from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Iterator, List, Mapping, Optional, Sequence, TypeVar

from pydantic import ValidationError

from rules_index.ingest.errors import EmptySourceError, ExtractionError, FetchError, IndexingError
from rules_index.ingest.extractors import PDFExtractor, TextExtractor
from rules_index.ingest.fallback import AdvancedParser, FallbackOrchestrator, RetryPolicy
from rules_index.ingest.hashing import decide_reindex
from rules_index.ingest.hints import ClientStats, PreDetectedSection, PreDetectedTable, validate_client_timings
from rules_index.ingest.models import (
    Confidence,
    IndexFailure,
    IndexStats,
    IndexStatus,
    Page,
    Source,
    SourceKind,
)
from rules_index.ingest.normalization import normalize_pages
from rules_index.ingest.parsers import DEFAULT_LLAMAPARSE_BASE_URL, LlamaParseClient, OcrMyPdfParser
from rules_index.ingest.pipeline import IndexPipeline, IndexPipelineConfig, IndexResult
from rules_index.ingest.quality import ExtractionStats, assess_quality, compute_extraction_stats
from rules_index.ingest.sections import headings_from_hints
from rules_index.ingest.structured import StructuredImport
from rules_index.logging_config import AUDIT_LOGGER_NAME
from rules_index.storage import DocumentStorage
from rules_index.store import IndexStore, IndexStoreError, get_index_store
from rules_index.telemetry import emit_exception, emit_index_event, emit_store_event, stage_timer

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

T = TypeVar("T")


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


@dataclass(slots=True)
class IndexingSettings:
    write_batch_size: int = 200
    chunk_target_chars: int = 1800
    chunk_overlap_chars: int = 200
    chunk_min_chars: Optional[int] = None
    fallback_max_attempts: int = 2
    fallback_base_delay_seconds: float = 1.0
    advanced_parser: str = "ocrmypdf"

    @classmethod
    def from_env(cls) -> "IndexingSettings":
        min_chars = _int_from_env("CHUNK_MIN_CHARS", -1)
        return cls(
            write_batch_size=_int_from_env("INDEX_WRITE_BATCH_SIZE", 200),
            chunk_target_chars=_int_from_env("CHUNK_TARGET_CHARS", 1800),
            chunk_overlap_chars=_int_from_env("CHUNK_OVERLAP_CHARS", 200),
            chunk_min_chars=min_chars if min_chars >= 0 else None,
            fallback_max_attempts=_int_from_env("FALLBACK_MAX_ATTEMPTS", 2),
            fallback_base_delay_seconds=_float_from_env("FALLBACK_BASE_DELAY_SECONDS", 1.0),
            advanced_parser=os.getenv("ADVANCED_PARSER", "ocrmypdf").strip().lower(),
        )


class SourceNotFoundError(LookupError):
    """Raised when an indexing run is requested for an unknown source."""


class IndexingInProgressError(RuntimeError):
    """Raised when a source is already being indexed by this process."""


@dataclass(slots=True)
class IndexOutcome:
    """Structured result returned from :meth:`IndexingService.index_source`."""

    source_id: str
    status: IndexStatus
    stats: IndexStats
    error: Optional[IndexFailure] = None
    skipped: bool = False


class IndexingService:
    """Drive a source through ``pending -> indexing -> indexed | failed``."""

    def __init__(
        self,
        *,
        store: IndexStore | None = None,
        storage: DocumentStorage | None = None,
        extractor: PDFExtractor | None = None,
        pipeline: IndexPipeline | None = None,
        fallback: FallbackOrchestrator | None = None,
        settings: IndexingSettings | None = None,
    ) -> None:
        self.settings = settings or IndexingSettings.from_env()
        self.store = store or get_index_store()
        self.storage = storage or DocumentStorage()
        self.extractor = extractor or PDFExtractor()
        self.pipeline = pipeline or IndexPipeline(
            IndexPipelineConfig(
                target_chars=self.settings.chunk_target_chars,
                overlap_chars=self.settings.chunk_overlap_chars,
                min_chars=self.settings.chunk_min_chars,
            )
        )
        self.fallback = fallback
        self._active: set[str] = set()
        self._active_lock = threading.Lock()

    def close(self) -> None:
        """Release the fallback parser's network client, if it holds one."""

        parser = self.fallback.parser if self.fallback is not None else None
        close = getattr(parser, "close", None)
        if callable(close):
            close()

    # Source lifecycle ---------------------------------------------------------

    @staticmethod
    def new_source_id() -> str:
        return uuid.uuid4().hex

    def create_source(
        self,
        kind: SourceKind,
        *,
        title: str = "",
        raw_text: str | None = None,
        storage_path: str | None = None,
        source_id: str | None = None,
    ) -> Source:
        source = Source(
            id=source_id or self.new_source_id(),
            kind=kind,
            title=title,
            raw_text=raw_text,
            storage_path=storage_path,
        )
        created = self.store.create_source(source)
        emit_index_event("index.source.created", source_id=created.id, kind=kind.value, status=created.status.value)
        return created

    def get_source(self, source_id: str) -> Source:
        source = self.store.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source '{source_id}' does not exist")
        return source

    @contextmanager
    def _claim(self, source_id: str) -> Iterator[None]:
        with self._active_lock:
            if source_id in self._active:
                raise IndexingInProgressError(f"Source '{source_id}' is already being indexed")
            self._active.add(source_id)
        try:
            yield
        finally:
            with self._active_lock:
                self._active.discard(source_id)

    # Indexing -----------------------------------------------------------------

    def index_source(
        self,
        source_id: str,
        *,
        structured_import: StructuredImport | None = None,
        pre_detected_sections: Sequence[PreDetectedSection] | None = None,
        pre_detected_tables: Sequence[PreDetectedTable] | None = None,
        client_stats: ClientStats | None = None,
        client_timings: Mapping[str, float] | None = None,
        force: bool = False,
    ) -> IndexOutcome:
        """Run one indexing pass; failures are recorded on the source, never raised."""

        source = self.get_source(source_id)
        with self._claim(source_id):
            return self._run(
                source,
                structured_import=structured_import,
                pre_detected_sections=pre_detected_sections,
                pre_detected_tables=pre_detected_tables,
                client_stats=client_stats,
                client_timings=client_timings,
                force=force,
            )

    def _run(
        self,
        source: Source,
        *,
        structured_import: StructuredImport | None,
        pre_detected_sections: Sequence[PreDetectedSection] | None,
        pre_detected_tables: Sequence[PreDetectedTable] | None,
        client_stats: ClientStats | None,
        client_timings: Mapping[str, float] | None,
        force: bool,
    ) -> IndexOutcome:
        started = time.perf_counter()
        previously_indexed = source.status is IndexStatus.INDEXED
        stats = IndexStats()
        source.status = IndexStatus.INDEXING
        source.error = None
        emit_index_event("index.run.start", source_id=source.id, kind=source.kind.value, status=source.status.value)

        try:
            self.store.update_source(source)
            if structured_import is not None or source.kind is SourceKind.STRUCTURED_IMPORT:
                skipped = self._index_structured(source, structured_import, stats)
            else:
                skipped = self._index_pages(
                    source,
                    stats,
                    previously_indexed=previously_indexed,
                    force=force,
                    pre_detected_sections=pre_detected_sections,
                    pre_detected_tables=pre_detected_tables,
                )
        except IndexingError as error:
            return self._fail(source, stats, error.stage, error, started)
        except IndexStoreError as error:
            return self._fail(source, stats, "save", error, started)
        except Exception as error:  # unexpected failures still end the run as failed
            return self._fail(source, stats, "indexing", error, started)

        self._merge_client_hints(stats, client_stats, client_timings)
        stats.time_ms_by_stage["total"] = round((time.perf_counter() - started) * 1000.0, 3)
        source.status = IndexStatus.INDEXED
        source.stats = stats
        source.last_indexed_at = datetime.now(timezone.utc)
        try:
            self.store.update_source(source)
        except IndexStoreError as error:
            return self._fail(source, stats, "save", error, started)

        step = "index.run.skipped" if skipped else "index.run.complete"
        emit_index_event(
            step,
            source_id=source.id,
            kind=source.kind.value,
            status=source.status.value,
            duration_ms=stats.time_ms_by_stage["total"],
            stats=stats.to_dict(),
            logger=AUDIT_LOGGER,
        )
        return IndexOutcome(source_id=source.id, status=source.status, stats=stats, skipped=skipped)

    def _index_structured(self, source: Source, data: StructuredImport | None, stats: IndexStats) -> bool:
        if data is None:
            if not source.raw_text:
                raise EmptySourceError("Structured import source has no stored data")
            try:
                data = StructuredImport.model_validate_json(source.raw_text)
            except ValidationError as error:
                raise ExtractionError(f"Stored structured import is invalid: {error}", cause=error) from error
        elif source.kind is SourceKind.STRUCTURED_IMPORT:
            source.raw_text = data.model_dump_json(by_alias=True)

        result = self.pipeline.index_structured(source.id, data)
        if not result.sections and not result.tables and not result.datasets:
            raise EmptySourceError("Structured import contains no sections, tables or datasets")
        stats.time_ms_by_stage.update(result.timings)
        self._persist(source.id, result, stats)
        self._apply_result_counts(stats, result)
        source.page_hashes = []
        return False

    def _index_pages(
        self,
        source: Source,
        stats: IndexStats,
        *,
        previously_indexed: bool,
        force: bool,
        pre_detected_sections: Sequence[PreDetectedSection] | None,
        pre_detected_tables: Sequence[PreDetectedTable] | None,
    ) -> bool:
        timings = stats.time_ms_by_stage
        raw_pages = self._load_pages(source, timings)
        if not raw_pages:
            raise EmptySourceError("No pages available for indexing")

        with stage_timer(timings, "cleanHeadersFooters"):
            pages = normalize_pages(raw_pages)
        if source.kind is SourceKind.PASTED_TEXT and not any(page.text.strip() for page in pages):
            raise EmptySourceError("Pasted text is empty")
        self._apply_extraction_stats(stats, compute_extraction_stats(pages))

        with stage_timer(timings, "hashPages"):
            decision = decide_reindex(
                source.page_hashes, pages, previously_indexed=previously_indexed, force=force
            )
        stats.page_hashes = decision.page_hashes
        LOGGER.info("Reindex decision for source %s: %s", source.id, decision.reason)
        if decision.skip:
            self._carry_previous_counts(stats, source.stats)
            return True

        replaced = False
        if source.kind is SourceKind.PAGED_DOCUMENT:
            with stage_timer(timings, "qualityGate"):
                report = assess_quality(pages)
            if report.low_quality:
                pages, replaced = self._run_fallback(source, stats, pages, report.reasons)

        headings = None
        if pre_detected_sections:
            headings = headings_from_hints(pages, [section.as_hint() for section in pre_detected_sections])
        tables = None
        if pre_detected_tables and not replaced:
            tables = [table.to_table() for table in pre_detected_tables]

        result = self.pipeline.index_pages(source.id, pages, headings=headings, tables=tables)
        timings.update(result.timings)
        self._persist(source.id, result, stats)
        self._apply_result_counts(stats, result)
        source.page_hashes = decision.page_hashes
        return False

    def _load_pages(self, source: Source, timings: dict[str, float]) -> List[Page]:
        if source.kind is SourceKind.PASTED_TEXT:
            return TextExtractor().extract(source.raw_text or "")
        if not source.storage_path:
            raise FetchError(f"Source '{source.id}' has no stored document")
        with stage_timer(timings, "fetch"):
            data = self.storage.fetch(source.storage_path)
        with stage_timer(timings, "extractText"):
            try:
                return self.extractor.extract(data)
            except ExtractionError:
                raise
            except Exception as error:  # extractor is an external collaborator
                raise ExtractionError(f"Text extraction failed: {error}", cause=error) from error

    def _run_fallback(
        self, source: Source, stats: IndexStats, pages: List[Page], reasons: Sequence[str]
    ) -> tuple[List[Page], bool]:
        LOGGER.warning("Low-quality extraction for source %s: %s", source.id, "; ".join(reasons))
        if self.fallback is None or not source.storage_path:
            LOGGER.warning("No fallback parser configured; indexing low-quality pages for source %s", source.id)
            return pages, False

        stats.ocr_attempted = True
        with stage_timer(stats.time_ms_by_stage, "fallbackParse"):
            result = self.fallback.run(source.storage_path)
        stats.ocr_succeeded = True
        replacement = normalize_pages(result.pages)
        self._apply_extraction_stats(stats, compute_extraction_stats(replacement))
        return replacement, True

    def _persist(self, source_id: str, result: IndexResult, stats: IndexStats) -> None:
        with stage_timer(stats.time_ms_by_stage, "save"):
            self.store.clear_index(source_id)
            self._write_batched(self.store.insert_sections, source_id, result.sections, "sections")
            self._write_batched(self.store.insert_chunks, source_id, result.chunks, "chunks")
            self._write_batched(self.store.insert_tables, source_id, result.tables, "tables")
            self._write_batched(self.store.insert_datasets, source_id, result.datasets, "datasets")

    def _write_batched(
        self,
        insert: Callable[[str, Sequence[T]], None],
        source_id: str,
        rows: Sequence[T],
        table: str,
    ) -> None:
        batch_size = max(1, self.settings.write_batch_size)
        batches = 0
        for start in range(0, len(rows), batch_size):
            insert(source_id, rows[start : start + batch_size])
            batches += 1
        emit_store_event("index.store.write", source_id=source_id, table=table, count=len(rows), batches=batches)

    # Stats --------------------------------------------------------------------

    @staticmethod
    def _apply_extraction_stats(stats: IndexStats, extraction: ExtractionStats) -> None:
        stats.pages_extracted = extraction.pages_extracted
        stats.empty_pages = extraction.empty_pages
        stats.avg_chars_per_page = extraction.avg_chars_per_page

    @staticmethod
    def _apply_result_counts(stats: IndexStats, result: IndexResult) -> None:
        stats.sections = len(result.sections)
        stats.chunks = len(result.chunks)
        stats.tables_high = sum(1 for table in result.tables if table.confidence is Confidence.HIGH)
        stats.tables_medium = sum(1 for table in result.tables if table.confidence is Confidence.MEDIUM)
        stats.tables_low = sum(1 for table in result.tables if table.confidence is Confidence.LOW)
        stats.datasets = len(result.datasets)

    @staticmethod
    def _carry_previous_counts(stats: IndexStats, previous: Optional[IndexStats]) -> None:
        if previous is None:
            return
        if previous.ocr_succeeded:
            # The indexed rows came from the fallback layer; report its page counts.
            stats.pages_extracted = previous.pages_extracted
            stats.empty_pages = previous.empty_pages
            stats.avg_chars_per_page = previous.avg_chars_per_page
        stats.sections = previous.sections
        stats.chunks = previous.chunks
        stats.tables_high = previous.tables_high
        stats.tables_medium = previous.tables_medium
        stats.tables_low = previous.tables_low
        stats.datasets = previous.datasets
        stats.ocr_attempted = previous.ocr_attempted
        stats.ocr_succeeded = previous.ocr_succeeded

    @staticmethod
    def _merge_client_hints(
        stats: IndexStats,
        client_stats: ClientStats | None,
        client_timings: Mapping[str, float] | None,
    ) -> None:
        # Server measurements win; client page stats only fill runs without pages.
        if client_stats is not None and stats.pages_extracted == 0:
            if client_stats.pages_extracted is not None:
                stats.pages_extracted = client_stats.pages_extracted
            if client_stats.empty_pages is not None:
                stats.empty_pages = client_stats.empty_pages
            if client_stats.avg_chars_per_page is not None:
                stats.avg_chars_per_page = client_stats.avg_chars_per_page
        for stage, milliseconds in validate_client_timings(dict(client_timings or {})).items():
            stats.time_ms_by_stage[f"client.{stage}"] = milliseconds

    def _fail(
        self,
        source: Source,
        stats: IndexStats,
        stage: str,
        error: BaseException,
        started: float,
    ) -> IndexOutcome:
        stats.time_ms_by_stage["total"] = round((time.perf_counter() - started) * 1000.0, 3)
        failure = IndexFailure(stage=stage, message=str(error) or error.__class__.__name__)
        source.status = IndexStatus.FAILED
        source.error = failure
        source.stats = stats
        if stage == "indexing":
            emit_exception(module=__name__, error=error, source_id=source.id, stage=stage)
        try:
            self.store.update_source(source)
        except IndexStoreError as store_error:
            LOGGER.error("Could not record failure for source %s: %s", source.id, store_error)
        emit_index_event(
            "index.run.failed",
            source_id=source.id,
            kind=source.kind.value,
            status=source.status.value,
            stage=stage,
            duration_ms=stats.time_ms_by_stage["total"],
            stats=stats.to_dict(),
            error=error,
            logger=AUDIT_LOGGER,
        )
        return IndexOutcome(source_id=source.id, status=source.status, stats=stats, error=failure)


def build_advanced_parser(storage: DocumentStorage, kind: str) -> Optional[AdvancedParser]:
    """Create the configured fallback parser, or ``None`` when fallback is disabled."""

    if kind in {"", "none", "off"}:
        return None
    if kind == "ocrmypdf":
        return OcrMyPdfParser(storage, language=os.getenv("OCR_LANG", "eng"))
    if kind == "llamaparse":
        api_key = os.getenv("LLAMAPARSE_API_KEY", "")
        if not api_key:
            LOGGER.warning("ADVANCED_PARSER=llamaparse but LLAMAPARSE_API_KEY is not set; fallback disabled")
            return None
        return LlamaParseClient(
            storage,
            api_key=api_key,
            base_url=os.getenv("LLAMAPARSE_BASE_URL", DEFAULT_LLAMAPARSE_BASE_URL),
            poll_interval=_float_from_env("LLAMAPARSE_POLL_INTERVAL_SECONDS", 5.0),
            max_polls=_int_from_env("LLAMAPARSE_MAX_POLLS", 60),
        )
    raise ValueError(f"Unsupported ADVANCED_PARSER: {kind!r}")


@lru_cache()
def get_indexing_service() -> IndexingService:
    """FastAPI dependency returning the process-wide indexing service."""

    settings = IndexingSettings.from_env()
    storage = DocumentStorage()
    parser = build_advanced_parser(storage, settings.advanced_parser)
    fallback = None
    if parser is not None:
        fallback = FallbackOrchestrator(
            parser,
            RetryPolicy(
                max_attempts=settings.fallback_max_attempts,
                base_delay_seconds=settings.fallback_base_delay_seconds,
            ),
        )
    return IndexingService(store=get_index_store(), storage=storage, fallback=fallback, settings=settings)


def reset_indexing_service_cache() -> None:
    """Close and drop the cached service (application shutdown and tests)."""

    if get_indexing_service.cache_info().currsize:
        get_indexing_service().close()
    get_indexing_service.cache_clear()  # type: ignore[attr-defined]
