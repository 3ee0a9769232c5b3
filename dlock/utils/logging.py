"""Structured logging setup for lock clients."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dlock.core.config import get_settings

# Structured fields attached via ``extra=`` by the lock implementations
LOCK_LOG_FIELDS = (
    "lock_key",
    "policy",
    "attempts",
    "waited_ms",
    "outcome",
    "error_code",
)


class JsonFormatter(logging.Formatter):
    def __init__(self, service_name: str = "dlock", include_timestamp: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "service": self.service_name,
        }
        if self.include_timestamp:
            data["timestamp"] = datetime.now(timezone.utc).isoformat()
        for attr in LOCK_LOG_FIELDS:
            if hasattr(record, attr):
                data[attr] = getattr(record, attr)
        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Install a single stdout handler on the root logger.

    Unset arguments fall back to ``DLOCK_LOG_LEVEL`` / ``DLOCK_LOG_JSON``.
    """
    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    if json_output is None:
        json_output = settings.LOG_JSON

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root.handlers = [handler]
