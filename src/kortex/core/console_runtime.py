"""Single-writer dispatcher that owns all console session state."""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, field
from threading import Event, Lock, Thread, Timer
from time import monotonic
from typing import Any, Callable

from .event_bus import EventBus
from .event_pipeline import DEFAULT_CHANNEL, EventIngestionPipeline
from .flight_recorder import append_log_records
from .log_types import LogRecord, ProcessingState
from .presentation import render_timeline
from .session_controller import SessionController

logger = logging.getLogger(__name__)

PromptSender = Callable[[str], str]


@dataclass(slots=True)
class _Job:
    fn: Callable[..., Any]
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    done: Event | None = None
    result: Any = None
    error: str | None = None
    started: bool = False
    abandoned: bool = False


class ConsoleRuntime:
    """Serialize inbound events, call resolutions and submits on one thread.

    The pipeline and controller are only mutated from the dispatcher thread.
    The outbound prompt call runs on its own short-lived thread and posts its
    resolution back onto the dispatcher queue.
    """

    def __init__(
        self,
        *,
        send_prompt: PromptSender,
        bus: EventBus,
        channel: str = DEFAULT_CHANNEL,
        terminal_timeout_ms: int | None = None,
        max_timeline_records: int | None = None,
        recorder_path: str | None = None,
    ) -> None:
        if terminal_timeout_ms is not None and terminal_timeout_ms <= 0:
            raise ValueError("terminal_timeout_ms must be >= 1 when set")
        self._send_prompt = send_prompt
        self._bus = bus
        self._channel = channel
        self._terminal_timeout_ms = terminal_timeout_ms
        self._queue: queue.Queue[_Job] = queue.Queue()
        self._stop = Event()
        self._thread: Thread | None = None
        self._lock = Lock()
        self._pending_jobs = 0
        self._drained = Event()
        self._drained.set()
        self._calls_in_flight = 0
        self._calls_done = Event()
        self._calls_done.set()
        self._timer: Timer | None = None
        self._last_error: str | None = None

        self.pipeline = EventIngestionPipeline(max_records=max_timeline_records)
        self.controller = SessionController(issue_call=self._issue_call)
        self.pipeline.add_session_ended_listener(self.controller.on_session_ended)
        self.controller.add_state_listener(self._on_state_changed)
        self._idle = Event()
        self._idle.set()
        self._recorder_path = recorder_path
        if recorder_path:
            self.pipeline.add_record_listener(self._record_to_disk)

    def _record_to_disk(self, record: LogRecord) -> None:
        append_log_records([record], path=str(self._recorder_path))

    def subscribe(self) -> dict[str, Any]:
        return self.pipeline.subscribe(self._bus, self._channel, schedule=self.post)

    def start(self) -> dict[str, Any]:
        self.subscribe()
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return {"ok": True, "running": True, "already_running": True}
            self._stop.clear()
            self._thread = Thread(target=self._run_loop, daemon=True, name="kortex-console-dispatch")
            self._thread.start()
        return {"ok": True, "running": True, "already_running": False}

    def stop(self) -> dict[str, Any]:
        """Stop dispatching; queued and later-posted work is discarded until restart."""
        with self._lock:
            thread = self._thread
            self._stop.set()
            timer = self._timer
            self._timer = None
        if timer is not None:
            timer.cancel()
        if thread is not None and thread.is_alive():
            thread.join(timeout=2.0)
        discarded = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                break
            discarded += 1
            job.abandoned = True
            job.error = "console_stopped"
            self._finish(job)
        if discarded:
            logger.info("Discarded %d queued console jobs on stop", discarded)
        with self._lock:
            self._thread = None
        return {"ok": True, "running": False, "discarded": discarded}

    def _enqueue(self, job: _Job) -> _Job:
        with self._lock:
            if self._stop.is_set():
                job.abandoned = True
                logger.debug("Console stopped; dropping %s", getattr(job.fn, "__name__", job.fn))
                return job
            self._pending_jobs += 1
            self._drained.clear()
        self._queue.put(job)
        return job

    def _finish(self, job: _Job) -> None:
        if job.done is not None:
            job.done.set()
        with self._lock:
            self._pending_jobs -= 1
            if self._pending_jobs == 0:
                self._drained.set()

    def post(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> _Job:
        return self._enqueue(_Job(fn=fn, args=args, kwargs=kwargs))

    def call(self, fn: Callable[..., Any], *args: Any, timeout_sec: float = 5.0, **kwargs: Any) -> dict[str, Any]:
        """Run `fn` on the dispatcher thread and wait for its result.

        A job still queued when the wait times out is abandoned and never runs.
        """
        self.start()
        job = self._enqueue(_Job(fn=fn, args=args, kwargs=kwargs, done=Event()))
        if not job.done.wait(timeout=timeout_sec):
            with self._lock:
                if not job.started:
                    job.abandoned = True
                    return {"ok": False, "error": "dispatch_timeout"}
            if not job.done.wait(timeout=timeout_sec):
                return {"ok": False, "error": "dispatch_timeout", "pending": True}
        if job.error is not None:
            return {"ok": False, "error": job.error}
        return {"ok": True, "value": job.result}

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                job = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            with self._lock:
                skip = job.abandoned
                job.started = not skip
            try:
                if not skip:
                    job.result = job.fn(*job.args, **job.kwargs)
            except Exception as exc:
                job.error = str(exc) or exc.__class__.__name__
                self._last_error = job.error
                logger.exception("Dispatcher job failed")
            finally:
                self._finish(job)

    def _issue_call(self, prompt: str, cycle: int) -> None:
        with self._lock:
            self._calls_in_flight += 1
            self._calls_done.clear()
        thread = Thread(target=self._run_call, args=(prompt, cycle), daemon=True, name="kortex-prompt-call")
        thread.start()
        if self._terminal_timeout_ms is not None:
            self._arm_timeout(cycle)

    def _run_call(self, prompt: str, cycle: int) -> None:
        try:
            reply = self._send_prompt(prompt)
        except Exception as exc:
            self.post(self.controller.on_call_failure, exc, cycle=cycle)
        else:
            self.post(self.controller.on_call_success, reply, cycle=cycle)
        finally:
            with self._lock:
                self._calls_in_flight -= 1
                if self._calls_in_flight == 0:
                    self._calls_done.set()

    def _arm_timeout(self, cycle: int) -> None:
        timer = Timer(self._terminal_timeout_ms / 1000.0, self.post, args=(self.controller.on_timeout, cycle))
        timer.daemon = True
        with self._lock:
            previous = self._timer
            self._timer = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _on_state_changed(self, state: ProcessingState) -> None:
        if state == ProcessingState.PROCESSING:
            self._idle.clear()
            return
        with self._lock:
            timer = self._timer
            self._timer = None
        if timer is not None:
            timer.cancel()
        self._idle.set()

    def submit(self, prompt: str, *, timeout_sec: float = 5.0) -> dict[str, Any]:
        out = self.call(self.controller.submit, prompt, timeout_sec=timeout_sec)
        if not out.get("ok"):
            return out
        return out["value"]

    def set_input(self, text: str) -> None:
        self.post(self.controller.set_input, text)

    def timeline(self, *, limit: int | None = None) -> list[LogRecord]:
        records = list(self.pipeline.get_timeline())
        if limit is not None and limit > 0:
            records = records[-limit:]
        return records

    def snapshot(self, *, timeline_limit: int | None = None) -> dict[str, Any]:
        session = self.controller.snapshot()
        return {
            **session,
            "timeline": render_timeline(self.timeline(limit=timeline_limit)),
        }

    def health(self) -> dict[str, Any]:
        with self._lock:
            running = self._thread is not None and self._thread.is_alive()
            pending = self._pending_jobs
            calls = self._calls_in_flight
        return {
            "ok": True,
            "running": running,
            "state": self.controller.state.value,
            "pending_jobs": pending,
            "calls_in_flight": calls,
            "terminal_timeout_ms": self._terminal_timeout_ms,
            "recorder_path": self._recorder_path,
            "last_error": self._last_error,
            "pipeline": self.pipeline.stats(),
        }

    def wait_for_idle(self, timeout_sec: float = 5.0) -> bool:
        """Block until state is idle, no call is in flight and the queue is drained."""
        deadline = monotonic() + timeout_sec
        while True:
            for gate in (self._idle, self._calls_done, self._drained):
                remaining = deadline - monotonic()
                if remaining <= 0 or not gate.wait(timeout=remaining):
                    return False
            if self._idle.is_set() and self._calls_done.is_set() and self._drained.is_set():
                return True
