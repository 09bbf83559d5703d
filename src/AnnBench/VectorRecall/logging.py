"""
Structured logging for the recall benchmark.

Benchmark runs are usually scraped by scripts, so every record can be rendered
as one JSON object per line. ``log_event`` follows the ``extra_fields``
convention: keyword fields become top-level keys in the JSON payload.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

__all__ = [
    "JSONFormatter",
    "StructuredLogger",
    "get_logger",
    "log_event",
    "setup_logging",
]

ROOT_LOGGER_NAME = "AnnBench"


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """Logger adapter that merges bound fields into every record."""

    def __init__(
        self, logger: logging.Logger, base_fields: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(logger, {})
        self.base_fields: Dict[str, Any] = dict(base_fields or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        fields = dict(self.base_fields)
        extra_fields = extra.get("extra_fields")
        if isinstance(extra_fields, dict):
            fields.update(extra_fields)
        extra["extra_fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: object) -> "StructuredLogger":
        """Attach persistent fields and return ``self``."""

        self.base_fields.update({k: v for k, v in fields.items() if v is not None})
        return self

    def child(self, **fields: object) -> "StructuredLogger":
        """Return a new adapter inheriting the bound fields plus ``fields``."""

        merged = dict(self.base_fields)
        merged.update({k: v for k, v in fields.items() if v is not None})
        return StructuredLogger(self.logger, merged)


def get_logger(name: str, *, base_fields: Optional[Dict[str, Any]] = None) -> StructuredLogger:
    """Return a :class:`StructuredLogger` wrapping ``logging.getLogger(name)``.

    Handlers are not installed here; records propagate to the ``AnnBench`` root
    logger configured by :func:`setup_logging`.
    """

    return StructuredLogger(logging.getLogger(name), base_fields)


def log_event(
    logger: logging.Logger | logging.LoggerAdapter, level: str, message: str, **fields: object
) -> None:
    """Emit ``message`` at ``level`` with ``fields`` under ``extra_fields``."""

    normalised_level = str(level).lower()
    if normalised_level in {"warning", "error"} and "phase" not in fields:
        base_phase = getattr(logger, "base_fields", {}).get("phase")
        fields["phase"] = base_phase or "unknown"
    emitter = getattr(logger, normalised_level, None)
    if not callable(emitter):
        raise AttributeError(f"Logger has no level '{level}'")
    emitter(message, extra={"extra_fields": fields})


def setup_logging(
    *,
    level: str = "INFO",
    fmt: str = "console",
    log_dir: Optional[Path] = None,
    max_log_size_mb: int = 50,
    propagate: bool = False,
) -> logging.Logger:
    """Configure the ``AnnBench`` logger.

    Args:
        level: Minimum level name.
        fmt: ``"console"`` for human-readable stderr output or ``"json"`` for
            JSON lines on stderr.
        log_dir: When set, also append JSON lines to a rotating
            ``annbench-YYYYMMDD.jsonl`` file in this directory.
        max_log_size_mb: Rotation threshold of the file handler.
        propagate: Whether records continue to the root logger.

    Returns:
        The configured logger. Calling again replaces previously installed
        handlers rather than stacking them.
    """

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_annbench_managed", False):
            logger.removeHandler(handler)
            if getattr(handler, "stream", None) not in (sys.stdout, sys.stderr):
                handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        stream_handler.setFormatter(JSONFormatter())
    else:
        stream_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    stream_handler._annbench_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            log_dir / f"annbench-{today}.jsonl",
            maxBytes=int(max_log_size_mb * 1024 * 1024),
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._annbench_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = propagate
    return logger
