from __future__ import annotations

from datetime import timedelta

import pytest

import src.kortex.runtime.service as service_module
from src.kortex.core.event_bus import EventBus
from src.kortex.core.flight_recorder import append_log_records, load_log_records
from src.kortex.core.log_types import LogRecord, local_now
from src.kortex.runtime.service import RuntimeService, load_task_executor

CONFIG = {"console": {"channel": "kortex:log"}}


@pytest.fixture
def runtime():
    out = RuntimeService(bus=EventBus(), config=CONFIG)
    yield out
    out.stop()


def test_start_with_executor_runs_full_cycle(runtime):
    executed: list[str] = []
    started = runtime.start(executor=executed.append)
    assert started["backend"] == "Ready"

    out = runtime.submit_prompt(message="Navigate to google.com")
    assert out["accepted"] is True
    assert runtime.console.wait_for_idle(timeout_sec=2.0) is True

    assert executed == ["Navigate to google.com"]
    levels = [row["level"] for row in runtime.timeline()["entries"]]
    assert levels == ["INIT", "INIT", "USER", "PLANNING", "COMPLETE"]
    messages = runtime.transcript()["messages"]
    assert messages == [
        {"role": "user", "content": "Navigate to google.com"},
        {"role": "assistant", "content": "Task started. Watch the Mission Control for updates."},
    ]
    assert runtime.status()["state"] == "idle"


def test_start_twice_does_not_reinitialize(runtime):
    runtime.start(executor=lambda _prompt: None)
    again = runtime.start(executor=lambda _prompt: None)
    assert again["already_started"] is True
    assert runtime.console.wait_for_idle(timeout_sec=2.0) is True
    levels = [row["level"] for row in runtime.timeline()["entries"]]
    assert levels.count("INIT") == 2


def test_start_without_executor_logs_error(runtime, monkeypatch):
    monkeypatch.setattr(service_module, "_configured_executor_ref", lambda: None)
    started = runtime.start()
    assert started["backend"] == "Not initialized"
    assert runtime.console.wait_for_idle(timeout_sec=2.0) is True
    assert runtime.timeline()["entries"][-1]["level"] == "ERROR"


def test_failed_task_ends_processing_through_error_marker(runtime):
    def _fail(_prompt: str) -> None:
        raise RuntimeError("page crashed")

    runtime.start(executor=_fail)
    runtime.submit_prompt(message="click the first result")
    assert runtime.console.wait_for_idle(timeout_sec=2.0) is True
    entry = runtime.timeline(limit=1)["entries"][0]
    assert entry["level"] == "ERROR"
    assert entry["category"] == "log-error"
    assert runtime.status()["last_end_reason"] == "error"


def test_rejected_call_is_not_in_transcript():
    def _reject(_prompt: str) -> str:
        raise ConnectionError("backend unreachable")

    service = RuntimeService(bus=EventBus(), config=CONFIG, send_prompt=_reject)
    service.start(executor=lambda _prompt: None)
    service.set_input(text="go")
    service.submit_prompt(message="go")
    assert service.console.wait_for_idle(timeout_sec=2.0) is True

    status = service.status()
    assert status["last_error"] == "backend unreachable"
    assert status["input_buffer"] == "go"
    assert service.transcript()["count"] == 1
    service.stop()


def test_health_reports_console_and_agent(runtime):
    runtime.start(executor=lambda _prompt: None)
    health = runtime.health()
    assert health["ok"] is True
    assert health["agent"] == "Ready"
    assert health["console"]["running"] is True
    assert health["console"]["pipeline"]["channel"] == "kortex:log"


def test_load_task_executor_resolves_reference():
    fn = load_task_executor("os.path:basename")
    assert fn("/a/b") == "b"
    with pytest.raises(ValueError, match="module:function"):
        load_task_executor("no_colon")
    with pytest.raises(ValueError, match="not callable"):
        load_task_executor("os.path:sep")


def test_start_prunes_flight_recorder_past_retention(tmp_path):
    path = tmp_path / "recorder" / "kortex.jsonl"
    now = local_now()
    append_log_records(
        [
            LogRecord(level="INIT", message="last month", timestamp=now - timedelta(days=30)),
            LogRecord(level="INIT", message="yesterday", timestamp=now - timedelta(days=1)),
        ],
        path=path,
    )
    config = {
        "console": {"channel": "kortex:log"},
        "flight_recorder": {"enabled": True, "path": str(path), "retention_days": 7},
    }
    runtime = RuntimeService(bus=EventBus(), config=config)
    started = runtime.start(executor=lambda _prompt: None)
    assert started["recorder_prune"]["dropped_count"] == 1
    assert runtime.console.wait_for_idle(timeout_sec=2.0) is True
    runtime.stop()

    messages = [record.message for record in load_log_records(path=path)]
    assert "last month" not in messages
    assert messages[0] == "yesterday"


def test_start_skips_prune_without_retention(runtime):
    started = runtime.start(executor=lambda _prompt: None)
    assert started["recorder_prune"] is None
