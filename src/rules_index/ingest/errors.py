"""Exceptions raised by the indexing pipeline, each tagged with the failing stage."""
from __future__ import annotations


class IndexingError(RuntimeError):
    """Base error for a failed indexing stage."""

    stage = "indexing"

    def __init__(self, message: str, *, stage: str | None = None, cause: Exception | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage
        self.__cause__ = cause


class FetchError(IndexingError):
    stage = "fetch"


class ExtractionError(IndexingError):
    stage = "extraction"


class EmptySourceError(IndexingError):
    stage = "empty"


class AdvancedParseError(IndexingError):
    """Raised by an alternate extraction collaborator (OCR or remote parser)."""

    stage = "ocr"


class FallbackExhaustedError(IndexingError):
    """Raised when every fallback attempt failed."""

    def __init__(self, message: str, *, stage: str, attempts: int, cause: Exception | None = None) -> None:
        super().__init__(message, stage=stage, cause=cause)
        self.attempts = attempts
