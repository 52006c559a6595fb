"""Timeline presentation helpers for the Mission Control panel."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from .log_types import LogRecord

DEFAULT_CATEGORY = "log-default"

LEVEL_CATEGORIES: dict[str, str] = {
    "NAVIGATE": "log-navigate",
    "CLICK": "log-click",
    "TYPE": "log-type",
    "HIGHLIGHT": "log-highlight",
    "GET_SNAPSHOT": "log-snapshot",
    "PLANNING": "log-planning",
    "INIT": "log-init",
    "USER": "log-user",
    "ERROR": "log-error",
    "COMPLETE": "log-complete",
    "SHUTDOWN": "log-shutdown",
}


def level_category(level: Any) -> str:
    """Map a level tag to its visual category; unknown tags get the default."""
    if not isinstance(level, str):
        return DEFAULT_CATEGORY
    return LEVEL_CATEGORIES.get(level.strip().upper(), DEFAULT_CATEGORY)


def format_timestamp(timestamp: datetime) -> str:
    """Local 24-hour `HH:MM:SS`."""
    local = timestamp.astimezone() if timestamp.tzinfo is not None else timestamp
    return local.strftime("%H:%M:%S")


def render_line(record: LogRecord) -> str:
    return f"[{format_timestamp(record.timestamp)}] [{record.level}] {record.message}"


def render_timeline(records: list[LogRecord] | tuple[LogRecord, ...]) -> list[dict[str, Any]]:
    return [
        {
            "category": level_category(record.level),
            "time": format_timestamp(record.timestamp),
            "level": record.level,
            "message": record.message,
            "line": render_line(record),
        }
        for record in records
    ]
