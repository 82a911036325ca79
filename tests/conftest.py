"""Shared fixtures for the indexing test-suite."""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List

import pytest

# ``rules_index.main`` configures logging on import; keep its files out of the checkout.
os.environ.setdefault("INDEX_LOG_DIR", tempfile.mkdtemp(prefix="rules-index-logs-"))

from rules_index.ingest.models import Page  # noqa: E402
from rules_index.services.indexer import reset_indexing_service_cache  # noqa: E402
from rules_index.storage import DocumentStorage  # noqa: E402
from rules_index.store import InMemoryIndexStore, reset_index_store_cache  # noqa: E402


@dataclass
class StaticExtractor:
    """Extractor double returning fixed pages and counting calls."""

    pages: List[Page] = field(default_factory=list)
    calls: int = 0

    def extract(self, data: bytes) -> List[Page]:
        self.calls += 1
        return [Page(page_number=page.page_number, text=page.text) for page in self.pages]


@dataclass
class ScriptedParser:
    """Advanced parser double that replays queued results (pages or exceptions)."""

    outcomes: List[object] = field(default_factory=list)
    stage: str = "ocr"
    calls: int = 0

    def parse(self, path: str) -> List[Page]:
        self.calls += 1
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)  # type: ignore[arg-type]


def make_pages(*texts: str) -> List[Page]:
    return [Page(page_number=index, text=text) for index, text in enumerate(texts, start=1)]


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    monkeypatch.setenv("DOCUMENT_STORAGE_DIR", str(tmp_path / "documents"))
    monkeypatch.setenv("INDEX_STORE", "memory")
    monkeypatch.setenv("ADVANCED_PARSER", "none")
    reset_index_store_cache()
    reset_indexing_service_cache()
    yield
    reset_index_store_cache()
    reset_indexing_service_cache()


@pytest.fixture()
def memory_store() -> InMemoryIndexStore:
    return InMemoryIndexStore()


@pytest.fixture()
def document_storage(tmp_path: Path) -> DocumentStorage:
    return DocumentStorage(tmp_path / "documents")


@pytest.fixture()
def no_sleep() -> List[float]:
    """Collect requested sleep durations instead of sleeping."""

    return []
