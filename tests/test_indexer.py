"""Tests for the indexing coordinator and its state machine."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence

import pytest

from rules_index.ingest.errors import AdvancedParseError, ExtractionError
from rules_index.ingest.fallback import FallbackOrchestrator, RetryPolicy
from rules_index.ingest.hints import ClientStats, PreDetectedSection, PreDetectedTable
from rules_index.ingest.models import Chunk, IndexStatus, Page, Source, SourceKind
from rules_index.ingest.parsers import LlamaParseClient, OcrMyPdfParser
from rules_index.ingest.structured import StructuredImport
from rules_index.services.indexer import (
    IndexingInProgressError,
    IndexingService,
    IndexingSettings,
    SourceNotFoundError,
    build_advanced_parser,
    get_indexing_service,
    reset_indexing_service_cache,
)
from rules_index.storage import DocumentStorage
from rules_index.store import IndexStoreError, InMemoryIndexStore

from conftest import ScriptedParser, StaticExtractor, make_pages
from test_structured import structured_payload

GOOD_PAGES = (
    "# Movement\nModels move up to six inches in the movement phase of each turn.",
    "# Shooting\nRoll a D6 to hit. Targets in cover are harder to hit.\n1-2 Miss\n3-4 Graze\n5-6 Hit",
)
LOW_QUALITY_PAGES = ("", "x", "", "", "tiny")
RECOVERED_PAGES = ("# Recovered Rules\nThe OCR layer recovered this rules text about warbands and heroes.",)


class RecordingStore(InMemoryIndexStore):
    """In-memory store that records status transitions and write batches."""

    def __init__(self) -> None:
        super().__init__()
        self.statuses: List[IndexStatus] = []
        self.clears = 0
        self.chunk_batches: List[int] = []

    def update_source(self, source: Source) -> None:
        self.statuses.append(source.status)
        super().update_source(source)

    def clear_index(self, source_id: str) -> None:
        self.clears += 1
        super().clear_index(source_id)

    def insert_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None:
        self.chunk_batches.append(len(chunks))
        super().insert_chunks(source_id, chunks)


class FailingChunkStore(InMemoryIndexStore):
    def insert_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None:
        raise IndexStoreError("disk full")


class ExplodingPipeline:
    def index_pages(self, *args: Any, **kwargs: Any) -> None:
        raise RuntimeError("unexpected bug")


class RaisingExtractor:
    def __init__(self, error: Exception) -> None:
        self.error = error

    def extract(self, data: bytes) -> List[Page]:
        raise self.error


def _service(
    tmp_path: Path,
    *,
    pages: Sequence[str] = GOOD_PAGES,
    parser: Optional[ScriptedParser] = None,
    store: Optional[InMemoryIndexStore] = None,
    extractor: Any = None,
    pipeline: Any = None,
    settings: Optional[IndexingSettings] = None,
) -> IndexingService:
    fallback = None
    if parser is not None:
        fallback = FallbackOrchestrator(parser, RetryPolicy(base_delay_seconds=0), sleep=lambda _: None)
    return IndexingService(
        store=store or RecordingStore(),
        storage=DocumentStorage(tmp_path / "documents"),
        extractor=extractor or StaticExtractor(pages=make_pages(*pages)),
        pipeline=pipeline,
        fallback=fallback,
        settings=settings or IndexingSettings(),
    )


def _paged_source(service: IndexingService) -> Source:
    source_id = service.new_source_id()
    path = service.storage.save_bytes(source_id, "rules.pdf", b"%PDF-1.4 rules")
    return service.create_source(SourceKind.PAGED_DOCUMENT, title="Rules", storage_path=path, source_id=source_id)


def test_paged_document_is_indexed(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = _paged_source(service)

    outcome = service.index_source(source.id)

    assert outcome.status is IndexStatus.INDEXED
    assert outcome.error is None
    assert not outcome.skipped
    stored = service.get_source(source.id)
    assert stored.status is IndexStatus.INDEXED
    assert stored.last_indexed_at is not None
    assert stored.stats is not None
    assert stored.stats.pages_extracted == 2
    assert stored.stats.sections == 2
    assert stored.stats.tables_medium == 1
    assert len(stored.page_hashes) == 2
    assert [section.title for section in service.store.list_sections(source.id)] == ["Movement", "Shooting"]
    assert service.store.list_tables(source.id)[0].dice_type == "d6"
    assert {"extractText", "hashPages", "qualityGate", "save", "total"} <= set(stored.stats.time_ms_by_stage)


def test_status_moves_through_indexing(tmp_path: Path) -> None:
    store = RecordingStore()
    service = _service(tmp_path, store=store)
    source = _paged_source(service)

    service.index_source(source.id)

    assert store.statuses == [IndexStatus.INDEXING, IndexStatus.INDEXED]


def test_unchanged_pages_make_second_run_a_noop(tmp_path: Path) -> None:
    store = RecordingStore()
    service = _service(tmp_path, store=store)
    source = _paged_source(service)
    first = service.index_source(source.id)
    section_ids = [section.id for section in store.list_sections(source.id)]

    second = service.index_source(source.id)

    assert second.skipped
    assert second.status is IndexStatus.INDEXED
    assert store.clears == 1
    assert [section.id for section in store.list_sections(source.id)] == section_ids
    assert second.stats.page_hashes == first.stats.page_hashes
    assert second.stats.sections == first.stats.sections
    assert second.stats.chunks == first.stats.chunks


def test_force_and_changed_pages_reindex(tmp_path: Path) -> None:
    store = RecordingStore()
    service = _service(tmp_path, store=store)
    source = _paged_source(service)
    service.index_source(source.id)

    forced = service.index_source(source.id, force=True)
    service.extractor.pages = make_pages(GOOD_PAGES[0], GOOD_PAGES[1] + "\nNew errata line.")  # type: ignore[attr-defined]
    changed = service.index_source(source.id)

    assert not forced.skipped
    assert not changed.skipped
    assert store.clears == 3


def test_low_quality_pages_use_fallback_output(tmp_path: Path) -> None:
    parser = ScriptedParser(outcomes=[AdvancedParseError("busy"), make_pages(*RECOVERED_PAGES)])
    service = _service(tmp_path, pages=LOW_QUALITY_PAGES, parser=parser)
    source = _paged_source(service)

    outcome = service.index_source(source.id)

    assert outcome.status is IndexStatus.INDEXED
    assert outcome.stats.ocr_attempted
    assert outcome.stats.ocr_succeeded
    assert parser.calls == 2
    assert [section.title for section in service.store.list_sections(source.id)] == ["Recovered Rules"]
    assert outcome.stats.pages_extracted == 1


def test_skipped_run_after_fallback_keeps_fallback_page_stats(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    parser = ScriptedParser(outcomes=[make_pages(*RECOVERED_PAGES)])
    service = _service(tmp_path, pages=LOW_QUALITY_PAGES, parser=parser)
    source = _paged_source(service)
    first = service.index_source(source.id)

    with caplog.at_level(logging.INFO, logger="rules_index.services.indexer"):
        second = service.index_source(source.id)

    assert second.skipped
    assert parser.calls == 1
    assert second.stats.ocr_succeeded
    assert (second.stats.pages_extracted, second.stats.empty_pages, second.stats.avg_chars_per_page) == (
        first.stats.pages_extracted,
        first.stats.empty_pages,
        first.stats.avg_chars_per_page,
    )
    assert second.stats.pages_extracted == 1
    assert second.stats.chunks == first.stats.chunks
    assert any("unchanged" in record.getMessage() for record in caplog.records)


def test_fallback_exhaustion_fails_with_parser_stage(tmp_path: Path) -> None:
    parser = ScriptedParser(outcomes=[AdvancedParseError("ocr crashed")], stage="ocr")
    service = _service(tmp_path, pages=LOW_QUALITY_PAGES, parser=parser)
    source = _paged_source(service)

    outcome = service.index_source(source.id)

    assert outcome.status is IndexStatus.FAILED
    assert outcome.error is not None
    assert outcome.error.stage == "ocr"
    assert parser.calls == 2
    stored = service.get_source(source.id)
    assert stored.status is IndexStatus.FAILED
    assert stored.stats is not None
    assert stored.stats.ocr_attempted and not stored.stats.ocr_succeeded
    assert stored.stats.empty_pages == 5


def test_low_quality_without_fallback_still_indexes(tmp_path: Path) -> None:
    service = _service(tmp_path, pages=("tiny", "x" * 50, ""))
    source = _paged_source(service)

    outcome = service.index_source(source.id)

    assert outcome.status is IndexStatus.INDEXED
    assert not outcome.stats.ocr_attempted


def test_missing_document_fails_at_fetch(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = service.create_source(SourceKind.PAGED_DOCUMENT, storage_path="nowhere/rules.pdf")

    outcome = service.index_source(source.id)

    assert outcome.status is IndexStatus.FAILED
    assert outcome.error is not None and outcome.error.stage == "fetch"


@pytest.mark.parametrize("error", [ExtractionError("bad xref"), ValueError("broken stream")])
def test_extractor_failures_fail_at_extraction(tmp_path: Path, error: Exception) -> None:
    service = _service(tmp_path, extractor=RaisingExtractor(error))
    source = _paged_source(service)

    outcome = service.index_source(source.id)

    assert outcome.error is not None and outcome.error.stage == "extraction"


def test_no_pages_fail_as_empty(tmp_path: Path) -> None:
    service = _service(tmp_path, pages=())
    source = _paged_source(service)

    outcome = service.index_source(source.id)

    assert outcome.error is not None and outcome.error.stage == "empty"


def test_blank_pasted_text_fails_as_empty(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = service.create_source(SourceKind.PASTED_TEXT, raw_text="   \n  ")

    outcome = service.index_source(source.id)

    assert outcome.error is not None and outcome.error.stage == "empty"


def test_write_failure_fails_at_save(tmp_path: Path) -> None:
    service = _service(tmp_path, store=FailingChunkStore())
    source = _paged_source(service)

    outcome = service.index_source(source.id)

    assert outcome.error is not None
    assert outcome.error.stage == "save"
    assert "disk full" in outcome.error.message
    assert service.get_source(source.id).status is IndexStatus.FAILED


def test_unexpected_errors_fail_at_indexing(tmp_path: Path) -> None:
    service = _service(tmp_path, pipeline=ExplodingPipeline())
    source = _paged_source(service)

    outcome = service.index_source(source.id)

    assert outcome.error is not None and outcome.error.stage == "indexing"
    assert outcome.stats.pages_extracted == 2


def test_failed_source_can_be_reindexed_and_error_is_cleared(tmp_path: Path) -> None:
    service = _service(tmp_path, extractor=RaisingExtractor(ExtractionError("bad xref")))
    source = _paged_source(service)
    service.index_source(source.id)

    service.extractor = StaticExtractor(pages=make_pages(*GOOD_PAGES))  # type: ignore[assignment]
    outcome = service.index_source(source.id)

    assert outcome.status is IndexStatus.INDEXED
    assert service.get_source(source.id).error is None


def test_chunks_are_written_in_batches(tmp_path: Path) -> None:
    store = RecordingStore()
    pages = tuple(f"# Rule {index}\nEvery warband follows rule {index} during the game turn." for index in range(5))
    service = _service(tmp_path, pages=pages, store=store, settings=IndexingSettings(write_batch_size=2))
    source = _paged_source(service)

    service.index_source(source.id)

    assert store.chunk_batches == [2, 2, 1]


def test_pasted_text_is_a_single_page(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = service.create_source(SourceKind.PASTED_TEXT, raw_text="SKILLS\nHeroes may learn new skills after battle.")

    outcome = service.index_source(source.id)

    assert outcome.status is IndexStatus.INDEXED
    assert outcome.stats.pages_extracted == 1
    assert [section.title for section in service.store.list_sections(source.id)] == ["SKILLS"]


def test_structured_import_source_with_client_hints(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = service.create_source(SourceKind.STRUCTURED_IMPORT, raw_text=json.dumps(structured_payload()))

    outcome = service.index_source(
        source.id,
        client_stats=ClientStats(pagesExtracted=12, emptyPages=1),
        client_timings={"parsePdf": 42.0, "bad": -3.0},
    )

    assert outcome.status is IndexStatus.INDEXED
    assert outcome.stats.sections == 3
    assert outcome.stats.datasets == 1
    assert outcome.stats.tables_high == 2
    assert outcome.stats.pages_extracted == 12
    assert outcome.stats.page_hashes == []
    assert outcome.stats.time_ms_by_stage["client.parsePdf"] == 42.0
    assert "client.bad" not in outcome.stats.time_ms_by_stage


def test_structured_import_payload_is_stored_on_the_source(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = service.create_source(SourceKind.STRUCTURED_IMPORT)
    data = StructuredImport.model_validate(structured_payload())

    first = service.index_source(source.id, structured_import=data)
    second = service.index_source(source.id)

    assert first.status is IndexStatus.INDEXED
    assert second.status is IndexStatus.INDEXED
    assert service.get_source(source.id).raw_text
    assert len(service.store.list_datasets(source.id)) == 1


def test_structured_source_without_data_fails_as_empty(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = service.create_source(SourceKind.STRUCTURED_IMPORT)

    outcome = service.index_source(source.id)

    assert outcome.error is not None and outcome.error.stage == "empty"


def test_client_page_stats_do_not_override_measurements(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = _paged_source(service)

    outcome = service.index_source(source.id, client_stats=ClientStats(pagesExtracted=99))

    assert outcome.stats.pages_extracted == 2


def test_pre_detected_hints_replace_detection(tmp_path: Path) -> None:
    service = _service(tmp_path, pages=("Opening words about the game.\nSpecial Moves\nLeap over walls.",))
    source = _paged_source(service)

    service.index_source(
        source.id,
        pre_detected_sections=[PreDetectedSection(title="Special Moves", pageNumber=1, level=1)],
        pre_detected_tables=[
            PreDetectedTable(title="Leaps", pageNumber=1, parsedRows=[{"roll": "1", "result": "Fall"}])
        ],
    )

    assert [section.title for section in service.store.list_sections(source.id)] == ["Introduction", "Special Moves"]
    assert [table.title for table in service.store.list_tables(source.id)] == ["Leaps"]


def test_unknown_source_raises(tmp_path: Path) -> None:
    with pytest.raises(SourceNotFoundError):
        _service(tmp_path).index_source("missing")


def test_concurrent_run_for_same_source_is_rejected(tmp_path: Path) -> None:
    class ReentrantExtractor:
        def __init__(self) -> None:
            self.service: Optional[IndexingService] = None
            self.source_id = ""
            self.error: Optional[Exception] = None

        def extract(self, data: bytes) -> List[Page]:
            assert self.service is not None
            try:
                self.service.index_source(self.source_id)
            except IndexingInProgressError as exc:
                self.error = exc
            return make_pages(*GOOD_PAGES)

    extractor = ReentrantExtractor()
    service = _service(tmp_path, extractor=extractor)
    source = _paged_source(service)
    extractor.service, extractor.source_id = service, source.id

    outcome = service.index_source(source.id)

    assert isinstance(extractor.error, IndexingInProgressError)
    assert outcome.status is IndexStatus.INDEXED


def test_settings_from_env_fall_back_on_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INDEX_WRITE_BATCH_SIZE", "fifty")
    monkeypatch.setenv("CHUNK_TARGET_CHARS", "900")
    monkeypatch.setenv("FALLBACK_BASE_DELAY_SECONDS", "0.25")

    settings = IndexingSettings.from_env()

    assert settings.write_batch_size == 200
    assert settings.chunk_target_chars == 900
    assert settings.chunk_min_chars is None
    assert settings.fallback_base_delay_seconds == 0.25


def test_build_advanced_parser_variants(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    storage = DocumentStorage(tmp_path)
    monkeypatch.delenv("LLAMAPARSE_API_KEY", raising=False)

    assert build_advanced_parser(storage, "none") is None
    assert build_advanced_parser(storage, "llamaparse") is None
    assert isinstance(build_advanced_parser(storage, "ocrmypdf"), OcrMyPdfParser)
    with pytest.raises(ValueError):
        build_advanced_parser(storage, "tesseract-cloud")


def test_get_indexing_service_wires_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADVANCED_PARSER", "ocrmypdf")
    monkeypatch.setenv("FALLBACK_MAX_ATTEMPTS", "3")

    service = get_indexing_service()

    assert service is get_indexing_service()
    assert service.fallback is not None
    assert service.fallback.policy.max_attempts == 3
    assert isinstance(service.fallback.parser, OcrMyPdfParser)


def test_reset_closes_cached_llamaparse_client(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADVANCED_PARSER", "llamaparse")
    monkeypatch.setenv("LLAMAPARSE_API_KEY", "secret")
    service = get_indexing_service()
    parser = service.fallback.parser  # type: ignore[union-attr]
    assert isinstance(parser, LlamaParseClient)

    reset_indexing_service_cache()

    assert parser._client.is_closed
    assert get_indexing_service() is not service


def test_close_ignores_parsers_without_a_client(tmp_path: Path) -> None:
    service = _service(tmp_path, parser=ScriptedParser())

    service.close()
    _service(tmp_path).close()
