from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict


class _PlainFormatter(logging.Formatter):
    """Single-line human formatter (stderr)."""

    default_fmt = "%(levelname)s %(name)s - %(message)s"
    verbose_fmt = "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d - %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    def __init__(self, debug: bool = False) -> None:
        super().__init__(fmt=self.verbose_fmt if debug else self.default_fmt, datefmt=self.datefmt)


class _JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "file": record.filename,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def coerce_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        upper = level.strip().upper()
        if upper in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}:
            return getattr(logging, upper)
        if upper.isdigit():
            return int(upper)
    return logging.INFO


def level_from_flags(verbose: bool, quiet: bool) -> str | None:
    if verbose:
        return "DEBUG"
    if quiet:
        return "WARNING"
    return None


def setup_logging(level: str | int | None = None, json_logs: bool = False) -> None:
    """
    Configure the root logger once for the process.

    Level precedence: explicit argument, then LOG_LEVEL, then INFO.
    """
    final_level = coerce_level(level or os.getenv("LOG_LEVEL") or logging.INFO)

    root = logging.getLogger()
    root.setLevel(final_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(_JsonFormatter() if json_logs else _PlainFormatter(debug=final_level <= logging.DEBUG))
    root.addHandler(handler)

    # requests' transport logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(max(final_level, logging.WARNING))
