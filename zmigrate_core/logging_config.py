"""
Root logger setup for a migration run.

Every module logs through its own named logger (``zmigrate_zcashd``,
``zmigrate_migration``, ...).  Only the ``[logging]`` section of a
``MigrateConfig`` decides where those records end up:

  - ``format = "human"``: one plain line per record on stderr
  - ``format = "json"``: one JSON object per record on stderr
  - ``file``: an extra JSON-lines file, whatever the console format

Usage:
    from zmigrate_core.config import load_config
    from zmigrate_core.logging_config import configure_logging
    configure_logging(load_config("zmigrate.toml").logging)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from zmigrate_core.config import LoggingConfig

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _fields(record: logging.LogRecord) -> dict:
    fields = {
        "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
        "level": record.levelname,
        "logger": record.name,
        "msg": record.getMessage(),
    }
    if record.exc_info and record.exc_info[1]:
        fields["exception"] = logging.Formatter().formatException(record.exc_info)
    return fields


class JSONLinesFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(_fields(record), default=str)


class LineFormatter(logging.Formatter):
    """``12:00:01 WARNING  zmigrate_zwl: message``; a traceback follows on its own lines."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


FORMATTERS: dict[str, type[logging.Formatter]] = {
    "human": LineFormatter,
    "json": JSONLinesFormatter,
}


def resolve_level(name: str) -> int:
    level = name.strip().upper()
    if level not in LEVELS:
        raise ValueError(f"Unknown log level '{name}' (expected one of {', '.join(LEVELS)})")
    return getattr(logging, level)


def configure_logging(cfg: LoggingConfig, stream: TextIO | None = None) -> None:
    """
    Point the root logger at the handlers *cfg* describes.

    Handlers left by an earlier call are replaced, so configuring twice
    does not duplicate output.  An unknown level or format raises
    ``ValueError`` before anything is changed.
    """
    level = resolve_level(cfg.level)
    if cfg.format not in FORMATTERS:
        known = ", ".join(FORMATTERS)
        raise ValueError(f"Unknown log format '{cfg.format}' (expected one of {known})")

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(stream or sys.stderr)
    console.setFormatter(FORMATTERS[cfg.format]())
    root.addHandler(console)

    if cfg.file:
        path = Path(cfg.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path), encoding="utf-8")
        fh.setFormatter(JSONLinesFormatter())
        root.addHandler(fh)
