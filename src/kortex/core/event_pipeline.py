"""Backend log-event ingestion into the session timeline."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping
from datetime import datetime
from threading import RLock
from typing import Any, Callable

from .event_bus import EventBus
from .log_types import MALFORMED_LEVEL, LogRecord, SessionEndReason, local_now, terminal_reason

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "kortex:log"
MAX_MALFORMED_PREVIEW_CHARS = 500

SessionEndedListener = Callable[[SessionEndReason], None]
RecordListener = Callable[[LogRecord], None]
Scheduler = Callable[..., None]


def _run_inline(fn: Callable[..., None], *args: Any) -> None:
    fn(*args)


def _malformed_preview(payload: Any) -> str:
    return repr(payload)[:MAX_MALFORMED_PREVIEW_CHARS]


def normalize_payload(payload: Any, received_at: datetime | None = None) -> LogRecord:
    """Build a LogRecord from a raw channel payload.

    Payloads that are not a mapping with string `level` and `message` become
    a `MALFORMED` record carrying a preview of what arrived. The record is
    stamped with `received_at`, or the current local time when omitted.
    """
    timestamp = received_at or local_now()
    if isinstance(payload, Mapping):
        level = payload.get("level")
        message = payload.get("message")
        if isinstance(level, str) and level.strip() and isinstance(message, str):
            return LogRecord(level=level, message=message, timestamp=timestamp)
    return LogRecord(level=MALFORMED_LEVEL, message=_malformed_preview(payload), timestamp=timestamp)


class EventIngestionPipeline:
    """Own the append-only timeline and detect terminal markers."""

    def __init__(
        self,
        *,
        max_records: int | None = None,
        on_session_ended: SessionEndedListener | None = None,
    ) -> None:
        if max_records is not None and max_records <= 0:
            raise ValueError("max_records must be >= 1 when set")
        self._lock = RLock()
        self._records: deque[LogRecord] = deque(maxlen=max_records)
        self._max_records = max_records
        self._evicted_count = 0
        self._received_count = 0
        self._malformed_count = 0
        self._subscription: tuple[str, str] | None = None
        self._session_ended_listeners: list[SessionEndedListener] = []
        self._record_listeners: list[RecordListener] = []
        if on_session_ended is not None:
            self._session_ended_listeners.append(on_session_ended)

    def add_session_ended_listener(self, listener: SessionEndedListener) -> None:
        self._session_ended_listeners.append(listener)

    def add_record_listener(self, listener: RecordListener) -> None:
        self._record_listeners.append(listener)

    @property
    def subscribed_channel(self) -> str | None:
        return self._subscription[0] if self._subscription else None

    def subscribe(
        self,
        bus: EventBus,
        channel: str = DEFAULT_CHANNEL,
        *,
        schedule: Scheduler | None = None,
    ) -> dict[str, Any]:
        """Register the one listener for the process lifetime.

        `schedule` hands each payload to the thread that owns session state;
        without it the payload is ingested on the emitting thread. Either way
        the record is stamped at bus delivery.
        """
        with self._lock:
            if self._subscription is not None:
                current_channel, subscription_id = self._subscription
                return {
                    "ok": True,
                    "channel": current_channel,
                    "subscription_id": subscription_id,
                    "already_subscribed": True,
                }
            runner = schedule or _run_inline

            def _handler(payload: Any) -> None:
                runner(self.on_event, payload, local_now())

            subscription_id = bus.on(channel, _handler)
            self._subscription = (channel, subscription_id)
        return {
            "ok": True,
            "channel": channel,
            "subscription_id": subscription_id,
            "already_subscribed": False,
        }

    def on_event(self, payload: Any, received_at: datetime | None = None) -> LogRecord:
        record = normalize_payload(payload, received_at)
        with self._lock:
            if self._max_records is not None and len(self._records) == self._max_records:
                self._evicted_count += 1
            self._records.append(record)
            self._received_count += 1
            if record.level == MALFORMED_LEVEL:
                self._malformed_count += 1

        if record.level == MALFORMED_LEVEL:
            logger.warning("Malformed log payload recorded: %s", record.message)

        for listener in list(self._record_listeners):
            try:
                listener(record)
            except Exception:
                logger.exception("Record listener failed")

        reason = terminal_reason(record.level)
        if reason is not None:
            for listener in list(self._session_ended_listeners):
                try:
                    listener(reason)
                except Exception:
                    logger.exception("Session-ended listener failed")
        return record

    def get_timeline(self) -> tuple[LogRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "channel": self.subscribed_channel,
                "record_count": len(self._records),
                "received_count": self._received_count,
                "malformed_count": self._malformed_count,
                "evicted_count": self._evicted_count,
                "max_records": self._max_records,
            }
