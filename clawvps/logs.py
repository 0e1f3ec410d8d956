"""Append-only install/update log sink (structlog)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TextIO

import structlog

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _promote_success(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    if event_dict.pop("success", False):
        event_dict["level"] = "success"
    return event_dict


def render_line(_logger: Any, _method: str, event_dict: dict[str, Any]) -> str:
    """Render ``[timestamp] [LEVEL] message key=value ...``."""
    timestamp = event_dict.pop("timestamp", "")
    level = str(event_dict.pop("level", "info")).upper()
    message = str(event_dict.pop("event", ""))
    extras = " ".join(f"{key}={value}" for key, value in sorted(event_dict.items()))
    line = f"[{timestamp}] [{level}] {message}"
    return f"{line} {extras}" if extras else line


def get_line_file_logger(handle: TextIO) -> structlog.typing.FilteringBoundLogger:
    """Return a structlog logger writing one formatted line per event to *handle*.

    Independent of any global structlog configuration.
    """
    return structlog.wrap_logger(
        structlog.PrintLogger(file=handle),
        processors=[
            structlog.processors.add_log_level,
            _promote_success,
            structlog.processors.TimeStamper(fmt=TIMESTAMP_FORMAT, utc=False),
            render_line,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        context_class=dict,
        cache_logger_on_first_use=False,
    )


class LogSink:
    """File-backed log with the five install levels."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = path.open("a", encoding="utf-8")
        self._log = get_line_file_logger(self._handle)

    def info(self, message: str, **context: Any) -> None:
        self._log.info(message, **context)

    def success(self, message: str, **context: Any) -> None:
        self._log.info(message, success=True, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log.warning(message, **context)

    def error(self, message: str, **context: Any) -> None:
        self._log.error(message, **context)

    def debug(self, message: str, **context: Any) -> None:
        self._log.debug(message, **context)

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()
