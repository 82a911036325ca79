"""In-memory index store used by default and in tests."""

from __future__ import annotations

import copy
import threading
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from rules_index.ingest.models import Chunk, Dataset, Section, Source, Table

from .base import IndexStore
from .errors import IndexStoreError


class InMemoryIndexStore(IndexStore):
    """Keep sources and index rows in dictionaries; returned objects are copies."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sources: Dict[str, Source] = {}
        self._sections: Dict[str, List[Section]] = defaultdict(list)
        self._chunks: Dict[str, List[Chunk]] = defaultdict(list)
        self._tables: Dict[str, List[Table]] = defaultdict(list)
        self._datasets: Dict[str, List[Dataset]] = defaultdict(list)

    def create_source(self, source: Source) -> Source:
        with self._lock:
            if source.id in self._sources:
                raise IndexStoreError(f"Source '{source.id}' already exists")
            self._sources[source.id] = copy.deepcopy(source)
        return copy.deepcopy(source)

    def get_source(self, source_id: str) -> Optional[Source]:
        with self._lock:
            source = self._sources.get(source_id)
            return copy.deepcopy(source) if source is not None else None

    def update_source(self, source: Source) -> None:
        with self._lock:
            if source.id not in self._sources:
                raise IndexStoreError(f"Source '{source.id}' does not exist")
            self._sources[source.id] = copy.deepcopy(source)

    def clear_index(self, source_id: str) -> None:
        with self._lock:
            for rows in (self._sections, self._chunks, self._tables, self._datasets):
                rows.pop(source_id, None)

    def insert_sections(self, source_id: str, sections: Sequence[Section]) -> None:
        with self._lock:
            self._sections[source_id].extend(copy.deepcopy(list(sections)))

    def insert_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None:
        with self._lock:
            self._chunks[source_id].extend(copy.deepcopy(list(chunks)))

    def insert_tables(self, source_id: str, tables: Sequence[Table]) -> None:
        with self._lock:
            self._tables[source_id].extend(copy.deepcopy(list(tables)))

    def insert_datasets(self, source_id: str, datasets: Sequence[Dataset]) -> None:
        with self._lock:
            self._datasets[source_id].extend(copy.deepcopy(list(datasets)))

    def list_sections(self, source_id: str) -> List[Section]:
        with self._lock:
            return copy.deepcopy(self._sections.get(source_id, []))

    def list_chunks(self, source_id: str) -> List[Chunk]:
        with self._lock:
            chunks = copy.deepcopy(self._chunks.get(source_id, []))
        return sorted(chunks, key=lambda chunk: chunk.order_index)

    def list_tables(self, source_id: str) -> List[Table]:
        with self._lock:
            return copy.deepcopy(self._tables.get(source_id, []))

    def list_datasets(self, source_id: str) -> List[Dataset]:
        with self._lock:
            return copy.deepcopy(self._datasets.get(source_id, []))
