"""Sync History - reconstruct sync sessions from session-less status logs."""

from importlib.metadata import version

try:
    __version__ = version("sync-session-history")
except Exception:
    __version__ = "0.1.0"  # Fallback for development

# Re-export public API
from sync_history.flow import group_flow_sessions
from sync_history.reconcile import reconcile_executions, timeline_window
from sync_history.sessions import (
    ExecutionRecord,
    LogEvent,
    MalformedTimestampError,
    ReconstructionConfig,
    Session,
    reconstruct_sessions,
)
from sync_history.storage import SQLiteStorage

__all__ = [
    # Version
    "__version__",
    # Reconstruction
    "reconstruct_sessions",
    "group_flow_sessions",
    "reconcile_executions",
    "timeline_window",
    "ReconstructionConfig",
    # Types
    "LogEvent",
    "ExecutionRecord",
    "Session",
    "MalformedTimestampError",
    # Storage
    "SQLiteStorage",
]
