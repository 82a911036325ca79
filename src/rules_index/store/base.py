"""Abstract persistence interface for sources and their index rows."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from rules_index.ingest.models import Chunk, Dataset, Section, Source, Table

__all__ = ["IndexStore"]


class IndexStore(ABC):
    """Persist sources plus the sections, chunks, tables and datasets scoped to them."""

    @abstractmethod
    def create_source(self, source: Source) -> Source:
        """Insert a new source; fails when the id already exists."""

    @abstractmethod
    def get_source(self, source_id: str) -> Optional[Source]:
        """Return the stored source or ``None``."""

    @abstractmethod
    def update_source(self, source: Source) -> None:
        """Overwrite the stored state of an existing source."""

    @abstractmethod
    def clear_index(self, source_id: str) -> None:
        """Delete every section, chunk, table and dataset of a source."""

    @abstractmethod
    def insert_sections(self, source_id: str, sections: Sequence[Section]) -> None:
        ...

    @abstractmethod
    def insert_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None:
        ...

    @abstractmethod
    def insert_tables(self, source_id: str, tables: Sequence[Table]) -> None:
        ...

    @abstractmethod
    def insert_datasets(self, source_id: str, datasets: Sequence[Dataset]) -> None:
        ...

    @abstractmethod
    def list_sections(self, source_id: str) -> List[Section]:
        ...

    @abstractmethod
    def list_chunks(self, source_id: str) -> List[Chunk]:
        """Chunks ordered by ``order_index``."""

    @abstractmethod
    def list_tables(self, source_id: str) -> List[Table]:
        ...

    @abstractmethod
    def list_datasets(self, source_id: str) -> List[Dataset]:
        ...

    def ping(self) -> None:
        """Raise :class:`IndexStoreError` when the backend is unreachable."""
