"""Load and query Kortex JSON config files."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from .event_pipeline import DEFAULT_CHANNEL

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.json")
DEFAULT_RECORDER_PATH = "memory/flight_recorder/kortex.jsonl"
_CONFIG_CACHE: dict[Path, tuple[int, dict[str, Any]]] = {}


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    """Resolve config path against repo root.

    Priority:
    1. explicit function argument
    2. `KORTEX_CONFIG_PATH` environment variable
    3. default `config/config.json`
    """
    raw_path: str | Path | None = config_path or os.getenv("KORTEX_CONFIG_PATH")
    candidate = Path(raw_path) if raw_path else DEFAULT_CONFIG_PATH
    if not candidate.is_absolute():
        candidate = _repo_root() / candidate
    return candidate.resolve()


def load_config(config_path: str | Path | None = None, *, use_cache: bool = True) -> dict[str, Any]:
    """Load config JSON as a dictionary."""
    resolved = resolve_config_path(config_path)
    if not resolved.exists():
        raise FileNotFoundError(f"Config file not found: {resolved}")

    mtime_ns = resolved.stat().st_mtime_ns
    if use_cache and resolved in _CONFIG_CACHE:
        cached_mtime_ns, cached_payload = _CONFIG_CACHE[resolved]
        if cached_mtime_ns == mtime_ns:
            return cached_payload

    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in config file: {resolved}") from exc

    if not isinstance(payload, dict):
        raise ValueError(f"Config root must be a JSON object: {resolved}")

    _CONFIG_CACHE[resolved] = (mtime_ns, payload)
    return payload


def clear_config_cache() -> None:
    """Clear in-memory config cache."""
    _CONFIG_CACHE.clear()


def _positive_int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and value > 0:
        return value
    return None


def get_console_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return normalized console settings with defaults applied.

    A missing or unreadable config file yields the defaults: the default
    channel, no terminal timeout, an unbounded timeline and a disabled,
    never-pruned recorder.
    """
    payload = config
    if payload is None:
        try:
            payload = load_config()
        except (FileNotFoundError, ValueError) as exc:
            logger.info("Using default console config: %s", exc)
            payload = {}

    console_cfg = payload.get("console")
    if not isinstance(console_cfg, dict):
        console_cfg = {}

    channel = console_cfg.get("channel")
    recorder_cfg = payload.get("flight_recorder")
    if not isinstance(recorder_cfg, dict):
        recorder_cfg = {}
    recorder_path = recorder_cfg.get("path")

    return {
        "channel": channel.strip() if isinstance(channel, str) and channel.strip() else DEFAULT_CHANNEL,
        "terminal_timeout_ms": _positive_int_or_none(console_cfg.get("terminal_timeout_ms")),
        "max_timeline_records": _positive_int_or_none(console_cfg.get("max_timeline_records")),
        "flight_recorder": {
            "enabled": bool(recorder_cfg.get("enabled", False)),
            "path": recorder_path if isinstance(recorder_path, str) and recorder_path.strip() else DEFAULT_RECORDER_PATH,
            "retention_days": _positive_int_or_none(recorder_cfg.get("retention_days")),
        },
    }
