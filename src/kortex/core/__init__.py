"""Core session and timeline utilities for Kortex."""

from .agent_backend import AgentBackend
from .config_loader import clear_config_cache, get_console_config, load_config, resolve_config_path
from .console_runtime import ConsoleRuntime
from .event_bus import EventBus, get_event_bus
from .event_pipeline import DEFAULT_CHANNEL, EventIngestionPipeline, normalize_payload
from .flight_recorder import append_log_records, load_log_records, prune_log_records
from .log_types import LogRecord, ProcessingState, SessionEndReason, TranscriptEntry, terminal_reason
from .presentation import format_timestamp, level_category, render_line, render_timeline
from .session_controller import SessionController

__all__ = [
    "AgentBackend",
    "ConsoleRuntime",
    "DEFAULT_CHANNEL",
    "EventBus",
    "EventIngestionPipeline",
    "LogRecord",
    "ProcessingState",
    "SessionController",
    "SessionEndReason",
    "TranscriptEntry",
    "append_log_records",
    "clear_config_cache",
    "format_timestamp",
    "get_console_config",
    "get_event_bus",
    "level_category",
    "load_config",
    "load_log_records",
    "normalize_payload",
    "prune_log_records",
    "render_line",
    "render_timeline",
    "resolve_config_path",
    "terminal_reason",
]
