"""Core schemas for the console timeline and transcript."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

TranscriptRole = Literal["user", "assistant"]

MALFORMED_LEVEL = "MALFORMED"


def local_now() -> datetime:
    return datetime.now().astimezone()


class ProcessingState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"


class SessionEndReason(str, Enum):
    COMPLETE = "complete"
    ERROR = "error"
    TIMEOUT = "timeout"


def terminal_reason(level: str) -> SessionEndReason | None:
    """Return the end reason for a terminal level tag, else None.

    The transport does not normalize case, so `complete` and `Complete`
    both count.
    """
    tag = level.strip().upper()
    if tag == "COMPLETE":
        return SessionEndReason.COMPLETE
    if tag == "ERROR":
        return SessionEndReason.ERROR
    return None


@dataclass(frozen=True, slots=True)
class LogRecord:
    """One received log event; timestamp is local receipt time."""

    level: str
    message: str
    timestamp: datetime = field(default_factory=local_now)

    def __post_init__(self) -> None:
        if not isinstance(self.level, str):
            raise ValueError("LogRecord.level must be a string.")
        if not isinstance(self.message, str):
            raise ValueError("LogRecord.message must be a string.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LogRecord":
        raw_ts = payload.get("timestamp")
        timestamp = datetime.fromisoformat(raw_ts) if isinstance(raw_ts, str) else local_now()
        if timestamp.tzinfo is None:
            timestamp = timestamp.astimezone()
        return cls(
            level=str(payload.get("level") or MALFORMED_LEVEL),
            message=str(payload.get("message") or ""),
            timestamp=timestamp,
        )


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    """Conversational turn shown in the chat panel."""

    role: TranscriptRole
    content: str

    def __post_init__(self) -> None:
        if self.role not in {"user", "assistant"}:
            raise ValueError("TranscriptEntry.role must be one of: user, assistant.")

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}
