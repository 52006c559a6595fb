"""Shared runtime ownership facade for app entrypoints."""

from __future__ import annotations

import logging
from importlib import import_module
from threading import RLock
from typing import Any, Callable

from src.kortex.core.agent_backend import AgentBackend, TaskExecutor
from src.kortex.core.config_loader import get_console_config, load_config
from src.kortex.core.console_runtime import ConsoleRuntime
from src.kortex.core.event_bus import EventBus, get_event_bus
from src.kortex.core.flight_recorder import prune_log_records
from src.kortex.core.presentation import render_timeline

logger = logging.getLogger(__name__)


def load_task_executor(ref: str) -> TaskExecutor:
    """Resolve a `module:function` reference to a task executor."""
    module_name, _, attr = ref.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Task executor must look like 'module:function', got '{ref}'.")
    executor = getattr(import_module(module_name), attr, None)
    if not callable(executor):
        raise ValueError(f"Task executor '{ref}' is not callable.")
    return executor


def _configured_executor_ref() -> str | None:
    try:
        cfg = load_config()
    except (FileNotFoundError, ValueError):
        return None
    console_cfg = cfg.get("console")
    if not isinstance(console_cfg, dict):
        return None
    value = console_cfg.get("task_executor")
    return value.strip() if isinstance(value, str) and value.strip() else None


class RuntimeService:
    """Single authority for console lifecycle + app-facing operations."""

    def __init__(
        self,
        *,
        bus: EventBus | None = None,
        config: dict[str, Any] | None = None,
        send_prompt: Callable[[str], str] | None = None,
    ) -> None:
        self._lock = RLock()
        self._started = False
        self._last_start_source: str | None = None
        self._last_stop_source: str | None = None
        self._bus = bus or get_event_bus()
        self._config = get_console_config(config)
        self.backend = AgentBackend(bus=self._bus, channel=self._config["channel"])
        recorder = self._config["flight_recorder"]
        self.console = ConsoleRuntime(
            send_prompt=send_prompt or self.backend.send_prompt,
            bus=self._bus,
            channel=self._config["channel"],
            terminal_timeout_ms=self._config["terminal_timeout_ms"],
            max_timeline_records=self._config["max_timeline_records"],
            recorder_path=recorder["path"] if recorder["enabled"] else None,
        )

    def _prune_recorder(self) -> dict[str, Any] | None:
        recorder = self._config["flight_recorder"]
        if not recorder["enabled"] or recorder["retention_days"] is None:
            return None
        try:
            return prune_log_records(path=recorder["path"], retention_days=recorder["retention_days"])
        except (OSError, ValueError) as exc:
            logger.error("Could not prune flight recorder %s: %s", recorder["path"], exc)
            return {"ok": False, "error": str(exc)}

    def start(self, *, executor: TaskExecutor | None = None, source: str = "runtime") -> dict[str, Any]:
        with self._lock:
            already_started = self._started
            self._started = True
            self._last_start_source = source

        recorder_prune = self._prune_recorder() if not already_started else None
        # Subscribe before the backend narrates its startup so INIT lines land in the timeline.
        self.console.start()
        backend_status = self.backend.status()
        if not already_started:
            if executor is None:
                ref = _configured_executor_ref()
                if ref is not None:
                    try:
                        executor = load_task_executor(ref)
                    except (ImportError, ValueError) as exc:
                        logger.error("Could not load task executor %s: %s", ref, exc)
            if executor is not None:
                self.backend.initialize(executor)
            else:
                self.backend.emit_log("ERROR", "No task executor configured. Agent is not available.")
            backend_status = self.backend.status()

        return {
            "ok": True,
            "source": "runtime_service",
            "already_started": already_started,
            "started": True,
            "start_source": source,
            "backend": backend_status,
            "recorder_prune": recorder_prune,
        }

    def stop(self, *, source: str = "runtime") -> dict[str, Any]:
        self.backend.shutdown()
        self.console.wait_for_idle(timeout_sec=1.0)
        self.console.stop()
        with self._lock:
            self._started = False
            self._last_stop_source = source
        return {"ok": True, "source": "runtime_service", "stopped": True, "stop_source": source}

    def health(self) -> dict[str, Any]:
        return {
            "ok": True,
            "source": "runtime_service",
            "runtime": {
                "started": self._started,
                "last_start_source": self._last_start_source,
                "last_stop_source": self._last_stop_source,
            },
            "agent": self.backend.status(),
            "console": self.console.health(),
        }

    def submit_prompt(self, *, message: str) -> dict[str, Any]:
        return self.console.submit(message)

    def set_input(self, *, text: str) -> dict[str, Any]:
        self.console.set_input(text)
        return {"ok": True}

    def status(self) -> dict[str, Any]:
        snap = self.console.controller.snapshot()
        return {
            "ok": True,
            "state": snap["state"],
            "processing": snap["processing"],
            "cycle": snap["cycle"],
            "input_buffer": snap["input_buffer"],
            "last_error": snap["last_error"],
            "last_end_reason": snap["last_end_reason"],
            "agent": self.backend.status(),
        }

    def timeline(self, *, limit: int | None = None) -> dict[str, Any]:
        entries = render_timeline(self.console.timeline(limit=limit))
        return {"ok": True, "entries": entries, "count": len(entries)}

    def transcript(self) -> dict[str, Any]:
        messages = [entry.to_dict() for entry in self.console.controller.get_transcript()]
        return {"ok": True, "messages": messages, "count": len(messages)}


_RUNTIME_SERVICE: RuntimeService | None = None


def get_runtime_service() -> RuntimeService:
    global _RUNTIME_SERVICE
    if _RUNTIME_SERVICE is None:
        _RUNTIME_SERVICE = RuntimeService()
    return _RUNTIME_SERVICE
