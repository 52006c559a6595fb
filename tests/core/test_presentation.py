from datetime import datetime

import pytest

from src.kortex.core.log_types import LogRecord
from src.kortex.core.presentation import (
    DEFAULT_CATEGORY,
    format_timestamp,
    level_category,
    render_line,
    render_timeline,
)


@pytest.mark.parametrize(
    ("level", "category"),
    [
        ("NAVIGATE", "log-navigate"),
        ("click", "log-click"),
        ("Type", "log-type"),
        ("HIGHLIGHT", "log-highlight"),
        ("GET_SNAPSHOT", "log-snapshot"),
        ("PLANNING", "log-planning"),
        ("INIT", "log-init"),
        ("USER", "log-user"),
        ("ERROR", "log-error"),
        ("COMPLETE", "log-complete"),
        ("SHUTDOWN", "log-shutdown"),
    ],
)
def test_level_category_known_tags(level, category):
    assert level_category(level) == category


@pytest.mark.parametrize("level", ["MALFORMED", "", "whatever", None, 42])
def test_level_category_is_total(level):
    assert level_category(level) == DEFAULT_CATEGORY


def test_format_timestamp_is_24_hour():
    assert format_timestamp(datetime(2024, 5, 1, 15, 4, 9)) == "15:04:09"
    assert format_timestamp(datetime(2024, 5, 1, 0, 0, 1)) == "00:00:01"


def test_render_line_and_timeline():
    record = LogRecord(level="NAVIGATE", message="loading google.com", timestamp=datetime(2024, 5, 1, 9, 30, 0))
    assert render_line(record) == "[09:30:00] [NAVIGATE] loading google.com"

    rendered = render_timeline([record, LogRecord(level="custom", message="x", timestamp=datetime(2024, 5, 1, 9, 30, 1))])
    assert [row["category"] for row in rendered] == ["log-navigate", "log-default"]
    assert rendered[1]["time"] == "09:30:01"
    assert rendered[1]["level"] == "custom"
