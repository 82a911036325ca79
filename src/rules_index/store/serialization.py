"""JSON representations of index rows shared by the SQLite store and the API."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from rules_index.ingest.models import (
    Chunk,
    Confidence,
    Dataset,
    IndexFailure,
    IndexStats,
    IndexStatus,
    PageHash,
    ScoreHints,
    Section,
    Source,
    SourceKind,
    Table,
)


def section_to_dict(section: Section) -> Dict[str, Any]:
    return {
        "id": section.id,
        "title": section.title,
        "text": section.text,
        "pageStart": section.page_start,
        "pageEnd": section.page_end,
        "sectionPath": list(section.section_path),
        "sectionType": section.section_type,
        "level": section.level,
    }


def section_from_dict(payload: Dict[str, Any]) -> Section:
    return Section(
        id=payload.get("id"),
        title=payload["title"],
        text=payload.get("text", ""),
        page_start=payload.get("pageStart"),
        page_end=payload.get("pageEnd"),
        section_path=list(payload.get("sectionPath", [])),
        section_type=payload.get("sectionType", "other"),
        level=int(payload.get("level", 1)),
    )


def chunk_to_dict(chunk: Chunk) -> Dict[str, Any]:
    return {
        "id": chunk.id,
        "sectionId": chunk.section_id,
        "orderIndex": chunk.order_index,
        "text": chunk.text,
        "pageStart": chunk.page_start,
        "pageEnd": chunk.page_end,
        "sectionPath": list(chunk.section_path),
        "scoreHints": chunk.score_hints.to_dict(),
        "keywords": list(chunk.keywords),
        "overlapChars": chunk.overlap_chars,
    }


def chunk_from_dict(payload: Dict[str, Any]) -> Chunk:
    hints = payload.get("scoreHints", {})
    return Chunk(
        id=payload.get("id"),
        section_id=payload.get("sectionId"),
        order_index=int(payload["orderIndex"]),
        text=payload["text"],
        page_start=payload.get("pageStart"),
        page_end=payload.get("pageEnd"),
        section_path=list(payload.get("sectionPath", [])),
        score_hints=ScoreHints(
            has_roll_ranges=bool(hints.get("hasRollRanges", False)),
            has_table_pattern=bool(hints.get("hasTablePattern", False)),
            has_dice_table=bool(hints.get("hasDiceTable", False)),
            has_list_pattern=bool(hints.get("hasListPattern", False)),
            has_dice_notation=bool(hints.get("hasDiceNotation", False)),
            section_type=hints.get("sectionType", "other"),
        ),
        keywords=list(payload.get("keywords", [])),
        overlap_chars=int(payload.get("overlapChars", 0)),
    )


def table_to_dict(table: Table) -> Dict[str, Any]:
    return {
        "pageNumber": table.page_number,
        "title": table.title,
        "rawText": table.raw_text,
        "parsedRows": [dict(row) for row in table.parsed_rows],
        "confidence": table.confidence.value,
        "tableType": table.table_type,
        "columns": list(table.columns),
        "diceType": table.dice_type,
        "headerContext": table.header_context,
        "keywords": list(table.keywords),
        "startLine": table.start_line,
        "endLine": table.end_line,
    }


def table_from_dict(payload: Dict[str, Any]) -> Table:
    return Table(
        page_number=payload.get("pageNumber"),
        title=payload["title"],
        raw_text=payload.get("rawText", ""),
        parsed_rows=[dict(row) for row in payload.get("parsedRows", [])],
        confidence=Confidence(payload.get("confidence", Confidence.MEDIUM.value)),
        table_type=payload.get("tableType", "pipe"),
        columns=list(payload.get("columns", [])),
        dice_type=payload.get("diceType"),
        header_context=payload.get("headerContext", ""),
        keywords=list(payload.get("keywords", [])),
        start_line=int(payload.get("startLine", 0)),
        end_line=int(payload.get("endLine", 0)),
    )


def dataset_to_dict(dataset: Dataset) -> Dict[str, Any]:
    return {
        "name": dataset.name,
        "type": dataset.dataset_type,
        "fields": list(dataset.fields),
        "rows": [dict(row) for row in dataset.rows],
        "confidence": dataset.confidence.value,
    }


def dataset_from_dict(payload: Dict[str, Any]) -> Dataset:
    return Dataset(
        name=payload["name"],
        dataset_type=payload.get("type", "generic"),
        fields=list(payload.get("fields", [])),
        rows=[dict(row) for row in payload.get("rows", [])],
        confidence=Confidence(payload.get("confidence", Confidence.MEDIUM.value)),
    )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def source_to_dict(source: Source) -> Dict[str, Any]:
    return {
        "id": source.id,
        "kind": source.kind.value,
        "title": source.title,
        "status": source.status.value,
        "storagePath": source.storage_path,
        "rawText": source.raw_text,
        "error": source.error.to_dict() if source.error else None,
        "stats": source.stats.to_dict() if source.stats else None,
        "pageHashes": [page_hash.to_dict() for page_hash in source.page_hashes],
        "lastIndexedAt": source.last_indexed_at.isoformat() if source.last_indexed_at else None,
    }


def source_from_dict(payload: Dict[str, Any]) -> Source:
    error = payload.get("error")
    stats = payload.get("stats")
    return Source(
        id=payload["id"],
        kind=SourceKind(payload["kind"]),
        title=payload.get("title", ""),
        status=IndexStatus(payload.get("status", IndexStatus.PENDING.value)),
        storage_path=payload.get("storagePath"),
        raw_text=payload.get("rawText"),
        error=IndexFailure(stage=error["stage"], message=error["message"]) if error else None,
        stats=IndexStats.from_dict(stats) if stats else None,
        page_hashes=[PageHash.from_dict(item) for item in payload.get("pageHashes", [])],
        last_indexed_at=_parse_timestamp(payload.get("lastIndexedAt")),
    )
