from __future__ import annotations

from pathlib import Path
from threading import Event

import pytest

from src.kortex.core.console_runtime import ConsoleRuntime
from src.kortex.core.event_bus import EventBus
from src.kortex.core.flight_recorder import load_log_records
from src.kortex.core.log_types import ProcessingState

CHANNEL = "kortex:log"


class _GatedSender:
    """Outbound call that blocks until released, then returns or raises."""

    def __init__(self, reply: str = "ok", error: Exception | None = None) -> None:
        self.gate = Event()
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        self.gate.wait(timeout=2.0)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


def _runtime(bus: EventBus, sender, **kwargs) -> ConsoleRuntime:
    runtime = ConsoleRuntime(send_prompt=sender, bus=bus, channel=CHANNEL, **kwargs)
    runtime.start()
    return runtime


def test_start_is_idempotent_and_subscribes_once(bus):
    runtime = _runtime(bus, _GatedSender())
    again = runtime.start()
    assert again["already_running"] is True
    assert bus.listener_count(CHANNEL) == 1
    runtime.stop()


def test_navigate_scenario_end_to_end(bus):
    sender = _GatedSender(reply="Navigated successfully.")
    runtime = _runtime(bus, sender)

    out = runtime.submit("Navigate to google.com")
    assert out["accepted"] is True
    assert runtime.controller.state is ProcessingState.PROCESSING

    bus.emit(CHANNEL, {"level": "INIT", "message": "starting"})
    bus.emit(CHANNEL, {"level": "NAVIGATE", "message": "loading google.com"})
    bus.emit(CHANNEL, {"level": "COMPLETE", "message": "done"})
    sender.gate.set()

    assert runtime.wait_for_idle(timeout_sec=2.0) is True
    snap = runtime.snapshot()
    assert snap["state"] == "idle"
    assert [row["level"] for row in snap["timeline"]] == ["INIT", "NAVIGATE", "COMPLETE"]
    assert snap["transcript"] == [
        {"role": "user", "content": "Navigate to google.com"},
        {"role": "assistant", "content": "Navigated successfully."},
    ]
    runtime.stop()


def test_single_flight_while_call_pending(bus):
    sender = _GatedSender()
    runtime = _runtime(bus, sender)

    assert runtime.submit("first")["accepted"] is True
    second = runtime.submit("x")
    assert second["accepted"] is False
    assert second["reason"] == "busy"

    sender.gate.set()
    bus.emit(CHANNEL, {"level": "COMPLETE", "message": "done"})
    assert runtime.wait_for_idle(timeout_sec=2.0) is True
    assert sender.prompts == ["first"]
    roles = [entry.role for entry in runtime.controller.get_transcript()]
    assert roles == ["user", "assistant"]
    runtime.stop()


def test_call_failure_returns_to_idle(bus):
    sender = _GatedSender(error=ConnectionError("rpc refused"))
    sender.gate.set()
    runtime = _runtime(bus, sender)

    runtime.submit("go")
    assert runtime.wait_for_idle(timeout_sec=2.0) is True
    snap = runtime.snapshot()
    assert snap["last_error"] == "rpc refused"
    assert snap["transcript"] == [{"role": "user", "content": "go"}]
    runtime.stop()


def test_stuck_processing_without_timeout(bus):
    sender = _GatedSender()
    sender.gate.set()
    runtime = _runtime(bus, sender)

    runtime.submit("go")
    assert runtime.wait_for_idle(timeout_sec=0.3) is False
    assert runtime.controller.state is ProcessingState.PROCESSING
    runtime.stop()


def test_terminal_timeout_forces_idle(bus):
    sender = _GatedSender()
    sender.gate.set()
    runtime = _runtime(bus, sender, terminal_timeout_ms=50)

    runtime.submit("go")
    assert runtime.wait_for_idle(timeout_sec=2.0) is True
    assert runtime.snapshot()["last_end_reason"] == "timeout"
    runtime.stop()


def test_timeline_cap_from_runtime(bus):
    runtime = _runtime(bus, _GatedSender(), max_timeline_records=2)
    for idx in range(4):
        bus.emit(CHANNEL, {"level": "INIT", "message": str(idx)})
    assert runtime.wait_for_idle(timeout_sec=2.0) is True
    assert [r.message for r in runtime.timeline()] == ["2", "3"]
    assert [r.message for r in runtime.timeline(limit=1)] == ["3"]
    runtime.stop()


def test_records_are_mirrored_to_flight_recorder(bus, tmp_path: Path):
    path = tmp_path / "recorder" / "kortex.jsonl"
    runtime = _runtime(bus, _GatedSender(), recorder_path=str(path))
    bus.emit(CHANNEL, {"level": "INIT", "message": "hello"})
    bus.emit(CHANNEL, {"level": "CLICK", "message": "button"})
    assert runtime.wait_for_idle(timeout_sec=2.0) is True

    loaded = load_log_records(path=path)
    assert [(r.level, r.message) for r in loaded] == [("INIT", "hello"), ("CLICK", "button")]
    runtime.stop()


def test_dispatcher_survives_failing_job(bus):
    runtime = _runtime(bus, _GatedSender())

    def _boom():
        raise RuntimeError("bad job")

    out = runtime.call(_boom)
    assert out == {"ok": False, "error": "bad job"}
    assert runtime.call(lambda: 5) == {"ok": True, "value": 5}
    assert runtime.health()["last_error"] == "bad job"
    runtime.stop()


def test_invalid_timeout_rejected(bus):
    with pytest.raises(ValueError, match="terminal_timeout_ms"):
        ConsoleRuntime(send_prompt=lambda _p: "", bus=bus, terminal_timeout_ms=0)


def test_submit_that_times_out_in_queue_never_runs(bus):
    sender = _GatedSender()
    sender.gate.set()
    runtime = _runtime(bus, sender)
    blocker = Event()
    runtime.post(blocker.wait, 2.0)

    out = runtime.submit("go", timeout_sec=0.1)
    assert out == {"ok": False, "error": "dispatch_timeout"}

    blocker.set()
    assert runtime.wait_for_idle(timeout_sec=2.0) is True
    assert runtime.controller.state is ProcessingState.IDLE
    assert runtime.controller.get_transcript() == ()
    assert sender.prompts == []
    runtime.stop()


def test_events_after_stop_are_dropped(bus):
    runtime = _runtime(bus, _GatedSender())
    bus.emit(CHANNEL, {"level": "INIT", "message": "before"})
    assert runtime.wait_for_idle(timeout_sec=2.0) is True
    runtime.stop()

    for idx in range(3):
        bus.emit(CHANNEL, {"level": "INIT", "message": f"late-{idx}"})
    assert runtime.health()["pending_jobs"] == 0

    runtime.start()
    assert runtime.wait_for_idle(timeout_sec=2.0) is True
    assert [r.message for r in runtime.timeline()] == ["before"]
    runtime.stop()


def test_stop_discards_queued_jobs(bus):
    runtime = _runtime(bus, _GatedSender())
    running = Event()

    def _hold():
        running.set()
        Event().wait(0.3)

    runtime.post(_hold)
    runtime.post(lambda: None)
    assert running.wait(timeout=2.0) is True

    out = runtime.stop()
    assert out["running"] is False
    assert out["discarded"] == 1
    assert runtime.health()["pending_jobs"] == 0
