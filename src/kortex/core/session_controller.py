"""Single-flight prompt state machine and chat transcript ownership."""

from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Callable

from .log_types import ProcessingState, SessionEndReason, TranscriptEntry

logger = logging.getLogger(__name__)

CallIssuer = Callable[[str, int], None]
StateListener = Callable[[ProcessingState], None]


class SessionController:
    """Track whether the agent is busy and what was said.

    Processing ends on the first of a call failure or a terminal log marker.
    A successful call only appends the assistant reply; completion is
    announced on the log channel. Every end signal after the first is a
    no-op.

    Each accepted submit opens a new cycle. Call resolutions carry the cycle
    they were issued for, so a late failure from an earlier cycle cannot end
    the current one.
    """

    def __init__(self, *, issue_call: CallIssuer) -> None:
        self._issue_call = issue_call
        self._lock = RLock()
        self._state = ProcessingState.IDLE
        self._transcript: list[TranscriptEntry] = []
        self._input_buffer = ""
        self._cycle = 0
        self._last_error: str | None = None
        self._last_end_reason: str | None = None
        self._state_listeners: list[StateListener] = []

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    @property
    def state(self) -> ProcessingState:
        with self._lock:
            return self._state

    @property
    def cycle(self) -> int:
        with self._lock:
            return self._cycle

    @property
    def input_buffer(self) -> str:
        with self._lock:
            return self._input_buffer

    def set_input(self, text: str) -> None:
        with self._lock:
            self._input_buffer = text

    def _notify(self, state: ProcessingState) -> None:
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")

    def submit(self, prompt_text: str) -> dict[str, Any]:
        if not isinstance(prompt_text, str) or not prompt_text.strip():
            return {"ok": True, "accepted": False, "reason": "empty_prompt", "state": self.state.value}
        with self._lock:
            if self._state != ProcessingState.IDLE:
                return {"ok": True, "accepted": False, "reason": "busy", "state": self._state.value}
            self._transcript.append(TranscriptEntry(role="user", content=prompt_text))
            self._cycle += 1
            cycle = self._cycle
            self._last_error = None
            self._last_end_reason = None
            self._state = ProcessingState.PROCESSING
        self._notify(ProcessingState.PROCESSING)
        try:
            self._issue_call(prompt_text, cycle)
        except Exception as exc:
            self.on_call_failure(exc, cycle=cycle)
        return {"ok": True, "accepted": True, "cycle": cycle, "state": self.state.value}

    def on_call_success(self, reply: str, *, cycle: int | None = None) -> None:
        with self._lock:
            self._transcript.append(TranscriptEntry(role="assistant", content=str(reply)))
            self._input_buffer = ""
        logger.debug("Prompt call resolved for cycle %s", cycle)

    def on_call_failure(self, error: Exception | str, *, cycle: int | None = None) -> None:
        message = str(error) or error.__class__.__name__
        with self._lock:
            stale = cycle is not None and cycle != self._cycle
            if not stale:
                self._last_error = message
        if stale:
            logger.warning("Ignoring failure from earlier prompt cycle %s: %s", cycle, message)
            return
        logger.error("Failed to send prompt: %s", message)
        self._end("call_failed")

    def on_session_ended(self, reason: SessionEndReason | str) -> None:
        value = reason.value if isinstance(reason, SessionEndReason) else str(reason)
        self._end(value)

    def on_timeout(self, cycle: int) -> bool:
        with self._lock:
            if cycle != self._cycle or self._state != ProcessingState.PROCESSING:
                return False
        logger.warning("No terminal signal for prompt cycle %s; returning to idle", cycle)
        return self._end(SessionEndReason.TIMEOUT.value)

    def _end(self, reason: str) -> bool:
        with self._lock:
            if self._state == ProcessingState.IDLE:
                return False
            self._last_end_reason = reason
            self._state = ProcessingState.IDLE
        self._notify(ProcessingState.IDLE)
        return True

    def get_transcript(self) -> tuple[TranscriptEntry, ...]:
        with self._lock:
            return tuple(self._transcript)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "processing": self._state == ProcessingState.PROCESSING,
                "cycle": self._cycle,
                "input_buffer": self._input_buffer,
                "last_error": self._last_error,
                "last_end_reason": self._last_end_reason,
                "transcript": [entry.to_dict() for entry in self._transcript],
            }
