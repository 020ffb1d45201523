"""
Logging setup for foldwise.

``configure_logging(config)`` is called once by the CLI before any CV work.
Library modules only ever do ``log = logging.getLogger(__name__)``; they never
install handlers themselves, so embedding applications keep control.

Run-level records carry structured fields through ``extra=`` (``k``,
``seed``, ``criterion``, ``fold``).  The text format ignores them; with
``json_format = true`` in the ``[logging]`` table each record becomes one
JSON object and the fields sit at the top level::

    {"time": "2026-10-18T09:12:44Z", "level": "INFO",
     "logger": "foldwise.cv.engine", "message": "CV complete ...", "k": 10}

Diagnostics raised with ``warnings.warn`` (ignored seeds, formula
mismatches) are routed into the ``py.warnings`` logger.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from foldwise.config import LoggingConfig

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s | %(message)s"
TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Attributes every LogRecord has; anything else came in through ``extra=``.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_QUIET_LOGGERS = ("joblib", "matplotlib", "numexpr")


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record, with ``extra=`` fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "time": stamp.strftime(TIME_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, value)
            for name, value in vars(record).items()
            if name not in _STANDARD_ATTRS and not name.startswith("_")
        )
        if record.exc_info:
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JsonLineFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=TIME_FORMAT)


def _file_handler(log_file: str) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(config: "LoggingConfig") -> None:
    """Install stderr (and optional file) handlers on the root logger.

    stderr keeps stdout free for the results the CLI prints.
    """
    level = logging.getLevelName(config.level)
    formatter = _formatter(config.json_format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        handlers.append(_file_handler(config.log_file))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
