"""Centralised observability helpers for structured indexing logs."""

from __future__ import annotations
import logging
import time
import traceback
from contextlib import contextmanager
from typing import Any, Iterator, MutableMapping, Optional


LOGGER = logging.getLogger("rules_index.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    source_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    extra: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if source_id:
        event["source_id"] = source_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    if extra:
        event.update(extra)
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_index_event(
    step: str,
    *,
    source_id: str,
    kind: str | None = None,
    status: str | None = None,
    stage: str | None = None,
    duration_ms: float | None = None,
    stats: dict[str, Any] | None = None,
    error: BaseException | None = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    details = {"kind": kind, "status": status, "stage": stage}
    if stats is not None:
        details["stats"] = stats
    level = "error" if error else "info"
    log_event(
        logger or LOGGER,
        step,
        level=level,
        source_id=source_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_store_event(
    step: str,
    *,
    source_id: str,
    table: str,
    count: int,
    batches: int | None = None,
    error: BaseException | None = None,
) -> None:
    details = {"table": table, "count": count, "batches": batches}
    level = "error" if error else "info"
    log_event(LOGGER, step, level=level, source_id=source_id, details=details, exc=error)


def emit_exception(
    *,
    module: str,
    error: BaseException,
    source_id: str | None = None,
    stage: str | None = None,
) -> None:
    details = {"module": module}
    if stage:
        details["stage"] = stage
    log_event(LOGGER, "exception", level="error", source_id=source_id, details=details, exc=error)


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    log_event(logger or LOGGER, f"{step}.start", details=fields)
    try:
        yield
    except Exception as error:
        log_event(logger or LOGGER, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        end = time.perf_counter()
        log_event(
            logger or LOGGER,
            f"{step}.complete",
            duration_ms=(end - start) * 1000.0,
            details=fields,
        )


@contextmanager
def stage_timer(timings: MutableMapping[str, float], stage: str) -> Iterator[None]:
    """Record the elapsed milliseconds of a pipeline stage into ``timings``."""

    start = time.perf_counter()
    try:
        yield
    finally:
        timings[stage] = round(timings.get(stage, 0.0) + (time.perf_counter() - start) * 1000.0, 3)


__all__ = [
    "emit_exception",
    "emit_index_event",
    "emit_store_event",
    "log_event",
    "stage_timer",
    "traced_duration",
]
