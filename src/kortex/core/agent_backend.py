"""Process-side agent backend that answers prompts and emits log events."""

from __future__ import annotations

import logging
from threading import Event, Lock, RLock, Thread
from typing import Any, Callable

from .event_bus import EventBus
from .event_pipeline import DEFAULT_CHANNEL

logger = logging.getLogger(__name__)

TaskExecutor = Callable[[str], None]

NOT_INITIALIZED_REPLY = "Error: Agent not initialized. Please check your API key."
TASK_STARTED_REPLY = "Task started. Watch the Mission Control for updates."


class AgentBackend:
    """Accept one prompt at a time and narrate its execution on the log channel.

    `send_prompt` returns as soon as the task is started; completion is only
    ever announced through a `COMPLETE` or `ERROR` event.
    """

    def __init__(self, *, bus: EventBus, channel: str = DEFAULT_CHANNEL) -> None:
        self._bus = bus
        self._channel = channel
        self._executor: TaskExecutor | None = None
        self._task_lock = Lock()
        self._lock = RLock()
        self._running = 0
        self._idle_event = Event()
        self._idle_event.set()

    def emit_log(self, level: str, message: str) -> None:
        self._bus.emit(self._channel, {"level": level, "message": message})
        logger.info("[%s] %s", level, message)

    def initialize(self, executor: TaskExecutor | None) -> dict[str, Any]:
        if executor is None:
            self.emit_log("ERROR", "No task executor configured. Agent is not available.")
            return {"ok": False, "error": "executor is required"}
        self.emit_log("INIT", "Initializing Kortex agent...")
        with self._lock:
            self._executor = executor
        self.emit_log("INIT", "🚀 Kortex agent ready! Awaiting your command...")
        return {"ok": True, "status": self.status()}

    def shutdown(self) -> dict[str, Any]:
        with self._lock:
            initialized = self._executor is not None
            self._executor = None
        if initialized:
            self.emit_log("SHUTDOWN", "Closing browser...")
        return {"ok": True, "was_initialized": initialized}

    def status(self) -> str:
        with self._lock:
            return "Ready" if self._executor is not None else "Not initialized"

    def send_prompt(self, prompt: str) -> str:
        with self._lock:
            executor = self._executor
            if executor is not None:
                self._running += 1
                self._idle_event.clear()
        if executor is None:
            return NOT_INITIALIZED_REPLY

        self.emit_log("USER", f"📝 {prompt}")
        thread = Thread(target=self._run_task, args=(executor, prompt), daemon=True, name="kortex-agent-task")
        thread.start()
        return TASK_STARTED_REPLY

    def _run_task(self, executor: TaskExecutor, prompt: str) -> None:
        try:
            with self._task_lock:
                self.emit_log("PLANNING", "🧠 Analyzing task and preparing execution plan...")
                try:
                    executor(prompt)
                except Exception as exc:
                    self.emit_log("ERROR", f"❌ Task execution failed: {exc}")
                    return
                self.emit_log("COMPLETE", "✅ Task completed successfully!")
        finally:
            with self._lock:
                self._running -= 1
                if self._running == 0:
                    self._idle_event.set()

    def wait_for_idle(self, timeout_sec: float = 5.0) -> bool:
        """Block until no task is running."""
        return self._idle_event.wait(timeout=timeout_sec)
