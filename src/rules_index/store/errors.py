"""Common exceptions for index store backends."""
from __future__ import annotations


class IndexStoreError(RuntimeError):
    """Raised when the index store cannot be initialised, read or written."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause
