"""Bounded retries of the alternate (OCR / advanced parse) extraction path."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from .errors import AdvancedParseError, FallbackExhaustedError
from .models import Page

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_BASE_DELAY_SECONDS = 1.0


def exponential_backoff(attempt: int, base_delay: float) -> float:
    """Delay before the attempt following ``attempt`` (1-based)."""

    return base_delay * (2 ** (attempt - 1))


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    backoff: Callable[[int, float], float] = exponential_backoff

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be non-negative")

    def delay_after(self, attempt: int) -> float:
        return self.backoff(attempt, self.base_delay_seconds)


class AdvancedParser(Protocol):
    """Alternate extraction collaborator: ``(path) -> pages``."""

    stage: str

    def parse(self, path: str) -> List[Page]:
        ...


@dataclass(slots=True)
class FallbackResult:
    pages: List[Page]
    attempts: int
    errors: List[str] = field(default_factory=list)


class FallbackOrchestrator:
    """Call an :class:`AdvancedParser` until it yields text or the policy gives up."""

    def __init__(
        self,
        parser: AdvancedParser,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.parser = parser
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def run(self, path: str) -> FallbackResult:
        errors: List[str] = []
        last_error: Optional[Exception] = None
        last_stage = self.parser.stage
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                pages = self.parser.parse(path)
                if not any(page.text.strip() for page in pages):
                    raise AdvancedParseError("Advanced parse returned no text", stage=self.parser.stage)
                LOGGER.info("Fallback parse succeeded on attempt %s with %s pages", attempt, len(pages))
                return FallbackResult(pages=pages, attempts=attempt, errors=errors)
            except Exception as error:  # collaborator failures are retried
                last_error = error
                last_stage = getattr(error, "stage", None) or self.parser.stage
                errors.append(f"attempt {attempt}: {error}")
                LOGGER.warning("Fallback parse attempt %s/%s failed: %s", attempt, self.policy.max_attempts, error)
            if attempt < self.policy.max_attempts:
                self._sleep(self.policy.delay_after(attempt))

        raise FallbackExhaustedError(
            f"Fallback parse failed after {self.policy.max_attempts} attempts: {last_error}",
            stage=last_stage,
            attempts=self.policy.max_attempts,
            cause=last_error,
        )
