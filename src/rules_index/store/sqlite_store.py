"""SQLite-backed index store."""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from rules_index.ingest.models import Chunk, Dataset, Section, Source, Table

from .base import IndexStore
from .errors import IndexStoreError
from .serialization import (
    chunk_from_dict,
    chunk_to_dict,
    dataset_from_dict,
    dataset_to_dict,
    section_from_dict,
    section_to_dict,
    source_from_dict,
    source_to_dict,
    table_from_dict,
    table_to_dict,
)

T = TypeVar("T")

_ROW_TABLES = ("sections", "chunks", "rule_tables", "datasets")


class SQLiteIndexStore(IndexStore):
    """Persist sources and index rows as JSON payloads in SQLite."""

    def __init__(self, db_path: str | Path = "data/index.sqlite3") -> None:
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Cannot open index database {self.db_path}", cause=exc) from exc
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        self._execute(
            "create index schema",
            lambda conn: conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS sources (
                    source_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS sections (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_id TEXT NOT NULL,
                    section_id TEXT,
                    payload_json TEXT NOT NULL,
                    FOREIGN KEY(source_id) REFERENCES sources(source_id)
                );

                CREATE TABLE IF NOT EXISTS chunks (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_id TEXT NOT NULL,
                    order_index INTEGER NOT NULL,
                    section_id TEXT,
                    payload_json TEXT NOT NULL,
                    FOREIGN KEY(source_id) REFERENCES sources(source_id)
                );

                CREATE TABLE IF NOT EXISTS rule_tables (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_id TEXT NOT NULL,
                    confidence TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    FOREIGN KEY(source_id) REFERENCES sources(source_id)
                );

                CREATE TABLE IF NOT EXISTS datasets (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_id TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    FOREIGN KEY(source_id) REFERENCES sources(source_id)
                );

                CREATE INDEX IF NOT EXISTS idx_sections_source_id ON sections(source_id);
                CREATE INDEX IF NOT EXISTS idx_chunks_source_order ON chunks(source_id, order_index);
                CREATE INDEX IF NOT EXISTS idx_rule_tables_source_id ON rule_tables(source_id);
                CREATE INDEX IF NOT EXISTS idx_datasets_source_id ON datasets(source_id);
                """
            )
        )

    def _execute(self, action: str, operation: Callable[[sqlite3.Connection], T]) -> T:
        try:
            with closing(self._connect()) as conn, conn:
                return operation(conn)
        except sqlite3.Error as exc:
            raise IndexStoreError(f"Failed to {action}", cause=exc) from exc

    def ping(self) -> None:
        self._execute("ping index database", lambda conn: conn.execute("SELECT 1").fetchone())

    def create_source(self, source: Source) -> Source:
        payload = json.dumps(source_to_dict(source), ensure_ascii=False)
        try:
            self._execute(
                "create source",
                lambda conn: conn.execute(
                    "INSERT INTO sources (source_id, status, payload_json) VALUES (?, ?, ?)",
                    (source.id, source.status.value, payload),
                ),
            )
        except IndexStoreError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise IndexStoreError(f"Source '{source.id}' already exists", cause=exc.__cause__) from exc
            raise
        return source

    def get_source(self, source_id: str) -> Optional[Source]:
        row = self._execute(
            "load source",
            lambda conn: conn.execute(
                "SELECT payload_json FROM sources WHERE source_id = ?", (source_id,)
            ).fetchone(),
        )
        if row is None:
            return None
        return source_from_dict(json.loads(row["payload_json"]))

    def update_source(self, source: Source) -> None:
        payload = json.dumps(source_to_dict(source), ensure_ascii=False)
        updated = self._execute(
            "update source",
            lambda conn: conn.execute(
                "UPDATE sources SET status = ?, payload_json = ? WHERE source_id = ?",
                (source.status.value, payload, source.id),
            ).rowcount,
        )
        if updated == 0:
            raise IndexStoreError(f"Source '{source.id}' does not exist")

    def clear_index(self, source_id: str) -> None:
        def _clear(conn: sqlite3.Connection) -> None:
            for table in _ROW_TABLES:
                conn.execute(f"DELETE FROM {table} WHERE source_id = ?", (source_id,))

        self._execute("clear index", _clear)

    def insert_sections(self, source_id: str, sections: Sequence[Section]) -> None:
        if not sections:
            return
        rows = [
            (source_id, section.id, json.dumps(section_to_dict(section), ensure_ascii=False))
            for section in sections
        ]
        self._execute(
            "insert sections",
            lambda conn: conn.executemany(
                "INSERT INTO sections (source_id, section_id, payload_json) VALUES (?, ?, ?)", rows
            ),
        )

    def insert_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None:
        if not chunks:
            return
        rows = [
            (source_id, chunk.order_index, chunk.section_id, json.dumps(chunk_to_dict(chunk), ensure_ascii=False))
            for chunk in chunks
        ]
        self._execute(
            "insert chunks",
            lambda conn: conn.executemany(
                "INSERT INTO chunks (source_id, order_index, section_id, payload_json) VALUES (?, ?, ?, ?)", rows
            ),
        )

    def insert_tables(self, source_id: str, tables: Sequence[Table]) -> None:
        if not tables:
            return
        rows = [
            (source_id, table.confidence.value, json.dumps(table_to_dict(table), ensure_ascii=False))
            for table in tables
        ]
        self._execute(
            "insert tables",
            lambda conn: conn.executemany(
                "INSERT INTO rule_tables (source_id, confidence, payload_json) VALUES (?, ?, ?)", rows
            ),
        )

    def insert_datasets(self, source_id: str, datasets: Sequence[Dataset]) -> None:
        if not datasets:
            return
        rows = [(source_id, json.dumps(dataset_to_dict(dataset), ensure_ascii=False)) for dataset in datasets]
        self._execute(
            "insert datasets",
            lambda conn: conn.executemany("INSERT INTO datasets (source_id, payload_json) VALUES (?, ?)", rows),
        )

    def _payloads(self, query: str, source_id: str) -> List[Dict[str, Any]]:
        rows = self._execute("list rows", lambda conn: conn.execute(query, (source_id,)).fetchall())
        return [json.loads(row["payload_json"]) for row in rows]

    def list_sections(self, source_id: str) -> List[Section]:
        payloads = self._payloads("SELECT payload_json FROM sections WHERE source_id = ? ORDER BY row_id", source_id)
        return [section_from_dict(payload) for payload in payloads]

    def list_chunks(self, source_id: str) -> List[Chunk]:
        payloads = self._payloads(
            "SELECT payload_json FROM chunks WHERE source_id = ? ORDER BY order_index", source_id
        )
        return [chunk_from_dict(payload) for payload in payloads]

    def list_tables(self, source_id: str) -> List[Table]:
        payloads = self._payloads("SELECT payload_json FROM rule_tables WHERE source_id = ? ORDER BY row_id", source_id)
        return [table_from_dict(payload) for payload in payloads]

    def list_datasets(self, source_id: str) -> List[Dataset]:
        payloads = self._payloads("SELECT payload_json FROM datasets WHERE source_id = ? ORDER BY row_id", source_id)
        return [dataset_from_dict(payload) for payload in payloads]
