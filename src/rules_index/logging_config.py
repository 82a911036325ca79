"""Application logging configuration utilities."""

from __future__ import annotations

import json
import logging
import logging.config
import os
import time
from pathlib import Path
from typing import Any

AUDIT_LOGGER_NAME = "rules_index.index.audit"

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {"message"}


class MinimalJSONFormatter(logging.Formatter):
    """One JSON object per record: ``ts``, ``level``, ``module``, then the event fields.

    Dict messages (the shape :func:`rules_index.telemetry.log_event` emits) are merged
    into the object; anything passed through ``extra=`` is appended after them.
    """

    converter = time.gmtime
    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03dZ"

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "module": record.name,
        }
        if isinstance(record.msg, dict):
            payload.update(record.msg)
        elif record.msg:
            payload["message"] = record.getMessage()
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                payload[key] = value
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(log_dir: str | Path | None = None) -> None:
    """Configure JSON logging plus the non-propagating indexing audit log."""

    directory = Path(log_dir or os.getenv("INDEX_LOG_DIR", "logs"))
    directory.mkdir(parents=True, exist_ok=True)
    level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": MinimalJSONFormatter}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                },
                "index_audit": {
                    "class": "logging.FileHandler",
                    "filename": str(directory / "index_audit.log"),
                    "mode": "a",
                    "encoding": "utf-8",
                    "formatter": "json",
                },
            },
            "root": {
                "level": level,
                "handlers": ["default"],
            },
            "loggers": {
                AUDIT_LOGGER_NAME: {
                    "level": "INFO",
                    "handlers": ["index_audit"],
                    "propagate": False,
                }
            },
        }
    )
