"""JSONL flight recorder for timeline replay and analysis."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .log_types import LogRecord, local_now

logger = logging.getLogger(__name__)


def repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def recorder_path(path: str | Path, *, root: Path | None = None) -> Path:
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = (root or repo_root()) / candidate
    candidate.parent.mkdir(parents=True, exist_ok=True)
    return candidate


def append_log_records(
    records: list[LogRecord | dict[str, Any]],
    *,
    path: str | Path,
    root: Path | None = None,
) -> None:
    target = recorder_path(path, root=root)
    with target.open("a", encoding="utf-8") as fh:
        for record in records:
            payload = record.to_dict() if isinstance(record, LogRecord) else record
            fh.write(json.dumps(payload, ensure_ascii=False) + "\n")


def load_log_records(*, path: str | Path, root: Path | None = None) -> list[LogRecord]:
    target = recorder_path(path, root=root)
    if not target.exists():
        return []

    records: list[LogRecord] = []
    for line in target.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        parsed = json.loads(line)
        if isinstance(parsed, dict):
            records.append(LogRecord.from_dict(parsed))
    return records


def prune_log_records(
    *,
    path: str | Path,
    retention_days: int,
    root: Path | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Rewrite the recording without records stamped before the retention window."""
    if retention_days < 1:
        raise ValueError("retention_days must be >= 1")

    target = recorder_path(path, root=root)
    cutoff = (now or local_now()) - timedelta(days=retention_days)
    records = load_log_records(path=target)
    kept = [record for record in records if record.timestamp >= cutoff]
    dropped = len(records) - len(kept)
    if dropped:
        staging = target.with_name(target.name + ".tmp")
        staging.write_text(
            "".join(json.dumps(record.to_dict(), ensure_ascii=False) + "\n" for record in kept),
            encoding="utf-8",
        )
        staging.replace(target)
        logger.info("Pruned %d flight recorder records older than %s", dropped, cutoff.isoformat())

    return {
        "ok": True,
        "path": str(target),
        "kept_count": len(kept),
        "dropped_count": dropped,
        "cutoff": cutoff.isoformat(),
    }
