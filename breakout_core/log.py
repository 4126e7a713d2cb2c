"""
Logging capability for the pipeline.

Components receive an EventLogger (structured event name plus key/value
fields) instead of reaching for a process-wide logger. StdlibEventLogger is
the default implementation on top of the `logging` module.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Protocol, TextIO

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


class EventLogger(Protocol):
    """Two severities, structured fields."""

    def info(self, event: str, **fields: Any) -> None:
        ...

    def error(self, event: str, **fields: Any) -> None:
        ...


def _render(fields: dict[str, Any]) -> str:
    return " ".join(f"{k}={fields[k]}" for k in sorted(fields))


class StdlibEventLogger:
    """EventLogger backed by a logging.Logger. Fields are rendered key=value and passed in `extra`."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("breakout_core")

    def info(self, event: str, **fields: Any) -> None:
        self._logger.info("%s %s", event, _render(fields), extra={"fields": fields})

    def error(self, event: str, **fields: Any) -> None:
        self._logger.error("%s %s", event, _render(fields), extra={"fields": fields})


def configure_logging(level: str = "info", stream: TextIO | None = None) -> None:
    """Attach a console handler to the package logger. Unknown level names fall back to debug."""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%Y-%m-%dT%H:%M:%S%z")
    )
    root = logging.getLogger("breakout_core")
    root.handlers[:] = [handler]
    root.setLevel(LEVELS.get(level.lower(), logging.DEBUG))
