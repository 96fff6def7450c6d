"""Structured logging utilities with JSON output."""

from __future__ import annotations

import json
import logging
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

DEFAULT_FIELDS = {"component", "distribution", "n_samples", "duration_ms"}
MAX_MEMORY_RECORDS = 1000

_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """JSON formatter adding common contextual fields when present."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in DEFAULT_FIELDS:
            if hasattr(record, field):
                payload[field] = getattr(record, field)
        for key, value in vars(record).items():
            if key not in _RESERVED and key not in payload:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class MemoryLogHandler(logging.Handler):
    """Keeps the most recent formatted records for the dashboard log viewer."""

    def __init__(self, capacity: int = MAX_MEMORY_RECORDS, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self.records: deque = deque(maxlen=capacity)
        self.setFormatter(JSONFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.records.append(json.loads(self.format(record)))
        except Exception:  # noqa: BLE001
            self.handleError(record)

    def entries(self, min_level: int = logging.DEBUG) -> List[Dict[str, Any]]:
        return [
            entry for entry in self.records
            if logging.getLevelName(entry["level"]) >= min_level
        ]

    def clear(self) -> None:
        self.records.clear()


def configure_logging(component: Optional[str] = None, level: int = logging.INFO) -> None:
    """Configure the ``defectfit`` logger with structured JSON output on stderr.

    Embeds a component default so downstream loggers inherit context without
    requiring every call to pass `extra`.
    """

    class ContextFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
            if component and not hasattr(record, "component"):
                record.component = component
            return True

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(ContextFilter())

    root = logging.getLogger("defectfit")
    for existing in list(root.handlers):
        if isinstance(existing, logging.StreamHandler) and not isinstance(existing, MemoryLogHandler):
            root.removeHandler(existing)
    root.setLevel(level)
    root.addHandler(handler)


def get_logger(name: str, component: Optional[str] = None) -> logging.Logger:
    """Convenience helper to fetch a logger with an optional component default."""

    logger = logging.getLogger(name)
    if component:
        f = logging.Filter()

        def _filter(record: logging.LogRecord) -> bool:  # type: ignore[override]
            if not hasattr(record, "component"):
                record.component = component
            return True

        f.filter = _filter  # type: ignore[assignment]
        logger.addFilter(f)
    return logger
