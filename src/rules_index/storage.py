"""Utilities for persisting uploaded rulebooks on disk and reading them back."""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Final
from uuid import uuid4

from fastapi import UploadFile

from rules_index.ingest.errors import FetchError

DEFAULT_DATA_DIR: Final[str] = "data"
_FILENAME_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


def _sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename preserving the extension when possible."""
    if not filename:
        filename = "upload"
    sanitized = Path(filename).name
    sanitized = _FILENAME_SAFE_CHARS_RE.sub("_", sanitized)
    sanitized = sanitized.strip("._") or "upload"
    return sanitized


class DocumentStorage:
    """Store source documents under a root directory addressed by relative paths."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or os.getenv("DOCUMENT_STORAGE_DIR", DEFAULT_DATA_DIR)).resolve()

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise FetchError(f"Path {path!r} escapes the storage root")
        return resolved

    def save_bytes(self, source_id: str, filename: str, data: bytes) -> str:
        """Write ``data`` for a source and return its storage path relative to the root."""

        sanitized_name = _sanitize_filename(filename)
        base = Path(sanitized_name).stem or "upload"
        suffix = Path(sanitized_name).suffix
        unique_name = f"{base}-{uuid4().hex}{suffix}" if suffix else f"{base}-{uuid4().hex}"
        relative = Path(_sanitize_filename(source_id)) / unique_name

        destination = self._resolve(str(relative))
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)
        return relative.as_posix()

    async def save_upload(self, source_id: str, upload: UploadFile) -> str:
        contents = await upload.read()
        upload.file.seek(0)
        return self.save_bytes(source_id, upload.filename or "", contents)

    def fetch(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as error:
            raise FetchError(f"Could not read {path!r}: {error}", cause=error) from error
