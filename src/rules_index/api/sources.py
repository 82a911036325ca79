"""API router exposing source creation and indexing endpoints."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, ConfigDict, Field, model_validator

from rules_index.ingest.errors import FetchError
from rules_index.ingest.hints import ClientStats, PreDetectedSection, PreDetectedTable
from rules_index.ingest.models import Source, SourceKind
from rules_index.ingest.structured import StructuredImport
from rules_index.services.indexer import (
    IndexingInProgressError,
    IndexingService,
    IndexOutcome,
    SourceNotFoundError,
    get_indexing_service,
)
from rules_index.store import IndexStoreError
from rules_index.store.serialization import chunk_to_dict, dataset_to_dict, section_to_dict, table_to_dict

router = APIRouter(prefix="/sources", tags=["sources"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateSourceRequest(_CamelModel):
    """Request body for text and structured sources; PDFs go through ``/sources/upload``."""

    kind: SourceKind = SourceKind.PASTED_TEXT
    title: str = ""
    text: Optional[str] = None
    structured_import_data: Optional[StructuredImport] = Field(default=None, alias="structuredImportData")

    @model_validator(mode="after")
    def _check_payload(self) -> "CreateSourceRequest":
        if self.kind is SourceKind.PAGED_DOCUMENT:
            raise ValueError("paged-document sources must be created through /sources/upload")
        if self.kind is SourceKind.STRUCTURED_IMPORT and self.structured_import_data is None:
            raise ValueError("structuredImportData is required for structured-import sources")
        return self


class IndexRequest(_CamelModel):
    structured_import_data: Optional[StructuredImport] = Field(default=None, alias="structuredImportData")
    pre_detected_tables: List[PreDetectedTable] = Field(default_factory=list, alias="preDetectedTables")
    pre_detected_sections: List[PreDetectedSection] = Field(default_factory=list, alias="preDetectedSections")
    client_stats: Optional[ClientStats] = Field(default=None, alias="clientStats")
    client_timings: Dict[str, float] = Field(default_factory=dict, alias="clientTimings")
    force: bool = False


class FailureResponse(BaseModel):
    stage: str
    message: str


class SourceResponse(_CamelModel):
    id: str
    kind: str
    title: str
    status: str
    storage_path: Optional[str] = Field(default=None, alias="storagePath")
    error: Optional[FailureResponse] = None
    stats: Optional[Dict[str, Any]] = None
    last_indexed_at: Optional[str] = Field(default=None, alias="lastIndexedAt")


class IndexResponse(_CamelModel):
    source_id: str = Field(alias="sourceId")
    status: str
    skipped: bool
    stats: Dict[str, Any]
    error: Optional[FailureResponse] = None


def _serialise_source(source: Source) -> SourceResponse:
    return SourceResponse(
        id=source.id,
        kind=source.kind.value,
        title=source.title,
        status=source.status.value,
        storage_path=source.storage_path,
        error=FailureResponse(**source.error.to_dict()) if source.error else None,
        stats=source.stats.to_dict() if source.stats else None,
        last_indexed_at=source.last_indexed_at.isoformat() if source.last_indexed_at else None,
    )


def _serialise_outcome(outcome: IndexOutcome) -> IndexResponse:
    return IndexResponse(
        source_id=outcome.source_id,
        status=outcome.status.value,
        skipped=outcome.skipped,
        stats=outcome.stats.to_dict(),
        error=FailureResponse(**outcome.error.to_dict()) if outcome.error else None,
    )


def _get_source_or_404(service: IndexingService, source_id: str) -> Source:
    try:
        return service.get_source(source_id)
    except SourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IndexStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@router.post("", response_model=SourceResponse, status_code=201)
def create_source(
    request: CreateSourceRequest,
    service: IndexingService = Depends(get_indexing_service),
) -> SourceResponse:
    """Register a pasted-text or structured-import source."""

    raw_text = request.text
    if request.structured_import_data is not None:
        raw_text = request.structured_import_data.model_dump_json(by_alias=True)
    title = request.title
    if not title and request.structured_import_data is not None:
        title = request.structured_import_data.name
    try:
        source = service.create_source(request.kind, title=title, raw_text=raw_text)
    except IndexStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _serialise_source(source)


@router.post("/upload", response_model=SourceResponse, status_code=201)
async def upload_source(
    file: UploadFile = File(...),
    title: str = Form(""),
    service: IndexingService = Depends(get_indexing_service),
) -> SourceResponse:
    """Store an uploaded PDF and register it as a paged-document source."""

    source_id = service.new_source_id()
    try:
        storage_path = await service.storage.save_upload(source_id, file)
    except (FetchError, OSError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        source = service.create_source(
            SourceKind.PAGED_DOCUMENT,
            title=title or file.filename or "",
            storage_path=storage_path,
            source_id=source_id,
        )
    except IndexStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _serialise_source(source)


@router.get("/{source_id}", response_model=SourceResponse)
def read_source(
    source_id: str,
    service: IndexingService = Depends(get_indexing_service),
) -> SourceResponse:
    return _serialise_source(_get_source_or_404(service, source_id))


@router.post("/{source_id}/index", response_model=IndexResponse)
def index_source(
    source_id: str,
    request: Optional[IndexRequest] = None,
    service: IndexingService = Depends(get_indexing_service),
) -> IndexResponse:
    """Run one indexing pass; a failed run is reported in the body, not as an HTTP error."""

    request = request or IndexRequest()
    try:
        outcome = service.index_source(
            source_id,
            structured_import=request.structured_import_data,
            pre_detected_sections=request.pre_detected_sections,
            pre_detected_tables=request.pre_detected_tables,
            client_stats=request.client_stats,
            client_timings=request.client_timings,
            force=request.force,
        )
    except SourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IndexingInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except IndexStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _serialise_outcome(outcome)


@router.get("/{source_id}/sections")
def list_sections(
    source_id: str,
    service: IndexingService = Depends(get_indexing_service),
) -> list[dict[str, Any]]:
    _get_source_or_404(service, source_id)
    return [section_to_dict(section) for section in service.store.list_sections(source_id)]


@router.get("/{source_id}/chunks")
def list_chunks(
    source_id: str,
    service: IndexingService = Depends(get_indexing_service),
) -> list[dict[str, Any]]:
    _get_source_or_404(service, source_id)
    return [chunk_to_dict(chunk) for chunk in service.store.list_chunks(source_id)]


@router.get("/{source_id}/tables")
def list_tables(
    source_id: str,
    service: IndexingService = Depends(get_indexing_service),
) -> list[dict[str, Any]]:
    _get_source_or_404(service, source_id)
    return [table_to_dict(table) for table in service.store.list_tables(source_id)]


@router.get("/{source_id}/datasets")
def list_datasets(
    source_id: str,
    service: IndexingService = Depends(get_indexing_service),
) -> list[dict[str, Any]]:
    _get_source_or_404(service, source_id)
    return [dataset_to_dict(dataset) for dataset in service.store.list_datasets(source_id)]
