"""Shared types and helpers for reconstructing sync sessions from status logs.

The status log has no run identifier, so sessions are inferred from status
semantics and timestamps. Two strategies produce the same output shape:

- flow grouping (``sync_history.flow``): a single pass over one key's events
- window reconciliation (``sync_history.reconcile``): pairing of IN_PROGRESS
  executions with terminal executions inside a pairing window

Both are pure transforms over already-materialized lists. They never read the
clock or touch storage.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger("sync-history")

# Status values written by the sync engine
FULL_LOAD = "FULL_LOAD"
IN_PROGRESS = "IN_PROGRESS"
LISTENING_CHANGES = "LISTENING_CHANGES"
ERROR = "ERROR"
NO_DATA = "NO_DATA"
SUCCESS = "SUCCESS"
SKIP = "SKIP"

TERMINAL_STATUSES = frozenset({SUCCESS, ERROR})
FLOW_END_STATUSES = frozenset({LISTENING_CHANGES, ERROR, NO_DATA})

SYNC_ERROR_MESSAGE = "Sync error occurred"

DEFAULT_PAIRING_WINDOW = timedelta(hours=24)
DEFAULT_DISPLAY_LIMIT = 20
DEFAULT_ROW_MULTIPLIER = 20


class MalformedTimestampError(ValueError):
    """Raised when a status row carries a timestamp that cannot be parsed."""


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> datetime:
    """Parse a timestamp value into a naive datetime.

    Accepts datetime objects and ISO-8601 strings (a trailing ``Z`` is
    allowed). Values with a UTC offset are converted to UTC and made naive so
    they compare with the naive timestamps SQLite hands back. Naive values are
    returned unchanged.

    Raises:
        MalformedTimestampError: if the value is missing or unparsable
    """
    if isinstance(value, datetime):
        return _as_naive_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise MalformedTimestampError(f"Could not parse timestamp: {value!r}") from e
        return _as_naive_utc(parsed)
    raise MalformedTimestampError(f"Could not parse timestamp: {value!r}")


def _optional_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return parse_timestamp(value)


def _format_timestamp(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two timestamps, floored."""
    return int((end - start).total_seconds() // 1)


@dataclass(frozen=True)
class LogEvent:
    """One raw status observation for a (schema, table, engine) key."""

    id: int
    schema_name: str
    table_name: str
    db_engine: str
    status: str
    processed_at: datetime
    record_count: int | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.schema_name, self.table_name, self.db_engine)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> LogEvent:
        """Build an event from a processing_log row or an exported dict."""
        return cls(
            id=row["id"],
            schema_name=row["schema_name"],
            table_name=row["table_name"],
            db_engine=row["db_engine"],
            status=row["status"],
            processed_at=parse_timestamp(row["processed_at"]),
            record_count=row["record_count"] if "record_count" in row.keys() else None,
        )


@dataclass
class InProgressSegment:
    """The running phase of a merged execution (IN_PROGRESS until terminal)."""

    start_time: datetime
    end_time: datetime
    duration_seconds: int

    def to_dict(self) -> dict:
        return {
            "start_time": _format_timestamp(self.start_time),
            "end_time": _format_timestamp(self.end_time),
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class ExecutionRecord:
    """An execution row from the process log, possibly merged by reconciliation.

    The derived fields (status_flow, final_status, in_progress, final_duration,
    record_ids) are empty on raw rows and filled by the reconciler.
    """

    id: int
    status: str
    start_time: datetime
    end_time: datetime | None = None
    duration_seconds: int | None = None
    process_type: str | None = None
    process_name: str | None = None
    total_rows_processed: int | None = None
    error_message: str | None = None
    metadata: dict | None = None
    created_at: datetime | None = None

    # Reconciliation output
    status_flow: list[str] = field(default_factory=list)
    final_status: str | None = None
    in_progress: InProgressSegment | None = None
    final_duration: int | None = None
    record_ids: list[int] = field(default_factory=list)

    @property
    def is_running(self) -> bool:
        """True for an IN_PROGRESS execution with no terminal counterpart."""
        return self.status == IN_PROGRESS

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ExecutionRecord:
        """Build a record from a process_log row or an exported dict.

        A missing duration is derived from the start and end timestamps.
        """
        keys = set(row.keys())

        def get_col(name: str, default=None):
            return row[name] if name in keys else default

        start_time = parse_timestamp(row["start_time"])
        end_time = _optional_timestamp(get_col("end_time"))
        duration = get_col("duration_seconds")
        if duration is None and end_time is not None:
            duration = elapsed_seconds(start_time, end_time)

        return cls(
            id=row["id"],
            status=row["status"],
            start_time=start_time,
            end_time=end_time,
            duration_seconds=duration,
            process_type=get_col("process_type"),
            process_name=get_col("process_name"),
            total_rows_processed=get_col("total_rows_processed"),
            error_message=get_col("error_message"),
            metadata=get_col("metadata"),
            created_at=_optional_timestamp(get_col("created_at")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "process_type": self.process_type,
            "process_name": self.process_name,
            "start_time": _format_timestamp(self.start_time),
            "end_time": _format_timestamp(self.end_time),
            "duration_seconds": self.duration_seconds,
            "total_rows_processed": self.total_rows_processed,
            "error_message": self.error_message,
            "metadata": self.metadata,
            "created_at": _format_timestamp(self.created_at),
            "status_flow": list(self.status_flow),
            "final_status": self.final_status,
            "in_progress": self.in_progress.to_dict() if self.in_progress else None,
            "final_duration": self.final_duration,
            "record_ids": list(self.record_ids),
        }


@dataclass
class Session:
    """A reconstructed sync run for one key.

    ``status`` is the last status seen, which is the terminal status once the
    session is closed.
    """

    id: int
    schema_name: str
    table_name: str
    db_engine: str
    start_time: datetime
    end_time: datetime
    status: str
    status_flow: list[str]
    total_rows_processed: int = 0
    error_message: str | None = None
    metadata: dict | None = None
    created_at: datetime | None = None
    record_ids: list[int] = field(default_factory=list)
    duration_seconds: int = 0

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.schema_name, self.table_name, self.db_engine)

    @property
    def terminal_status(self) -> str:
        return self.status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "schema_name": self.schema_name,
            "table_name": self.table_name,
            "db_engine": self.db_engine,
            "start_time": _format_timestamp(self.start_time),
            "end_time": _format_timestamp(self.end_time),
            "status": self.status,
            "status_flow": list(self.status_flow),
            "total_rows_processed": self.total_rows_processed,
            "error_message": self.error_message,
            "metadata": self.metadata,
            "created_at": _format_timestamp(self.created_at),
            "record_ids": list(self.record_ids),
            "duration_seconds": self.duration_seconds,
        }


def default_flow_start(events: Sequence[LogEvent], index: int) -> bool:
    """A flow starts on FULL_LOAD, or on LISTENING_CHANGES right before IN_PROGRESS."""
    status = events[index].status
    if status == FULL_LOAD:
        return True
    if status == LISTENING_CHANGES and index + 1 < len(events):
        return events[index + 1].status == IN_PROGRESS
    return False


def default_flow_end(session: Session, event: LogEvent) -> bool:
    """A flow ends on a settling status that differs from how it started.

    Only flows that actually ran (saw IN_PROGRESS or began with FULL_LOAD)
    can end this way.
    """
    first = session.status_flow[0]
    return (
        event.status in FLOW_END_STATUSES
        and event.status != first
        and (IN_PROGRESS in session.status_flow or first == FULL_LOAD)
    )


def _env_number(name: str, default, cast):
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default
    if not math.isfinite(value) or value <= 0:
        logger.warning(f"Ignoring non-positive or non-finite {name}={raw!r}, using {default}")
        return default
    return value


@dataclass
class ReconstructionConfig:
    """Knobs for session reconstruction.

    Holds the pairing window, fetch sizing and the flow predicates.
    """

    pairing_window: timedelta = DEFAULT_PAIRING_WINDOW
    display_limit: int = DEFAULT_DISPLAY_LIMIT
    history_row_multiplier: int = DEFAULT_ROW_MULTIPLIER
    is_flow_start: Callable[[Sequence[LogEvent], int], bool] = default_flow_start
    is_flow_end: Callable[[Session, LogEvent], bool] = default_flow_end

    @classmethod
    def from_env(cls) -> ReconstructionConfig:
        """Build a config from SYNC_HISTORY_* environment variables."""
        hours = _env_number("SYNC_HISTORY_PAIRING_WINDOW_HOURS", 24.0, float)
        try:
            pairing_window = timedelta(hours=hours)
        except OverflowError:
            logger.warning(f"Pairing window of {hours} hours is too large, using 24")
            pairing_window = DEFAULT_PAIRING_WINDOW
        return cls(
            pairing_window=pairing_window,
            display_limit=_env_number("SYNC_HISTORY_DISPLAY_LIMIT", DEFAULT_DISPLAY_LIMIT, int),
            history_row_multiplier=_env_number(
                "SYNC_HISTORY_ROW_MULTIPLIER", DEFAULT_ROW_MULTIPLIER, int
            ),
        )


def most_recent_first(items: Iterable, key: Callable[[Any], datetime]) -> list:
    """Sort items newest first by the given timestamp accessor."""
    return sorted(items, key=key, reverse=True)


def cap(items: list, limit: int | None) -> list:
    """Truncate to ``limit`` items; ``None`` means no cap."""
    if limit is None:
        return items
    return items[: max(limit, 0)]


def validate_limit(value: Any, minimum: int = 1, maximum: int = 100, default: int = 50) -> int:
    """Clamp a caller-supplied limit into [minimum, maximum].

    Accepts ints and numeric strings. Anything else yields ``default``.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
    else:
        return default
    return min(maximum, max(minimum, parsed))


def format_duration(seconds: int | None) -> str:
    """Format seconds as ``45s`` or ``3m 5s``."""
    seconds = int(seconds or 0)
    if seconds < 60:
        return f"{seconds}s"
    mins, secs = divmod(seconds, 60)
    return f"{mins}m {secs}s"


def reconstruct_sessions(
    records: Sequence,
    config: ReconstructionConfig | None = None,
    strategy: str = "flow",
    limit: int | None = None,
) -> list:
    """Single entry point for both reconstruction strategies.

    Args:
        records: LogEvents for "flow", ExecutionRecords for "window"
        config: Reconstruction config (defaults apply if omitted)
        strategy: "flow" or "window"
        limit: Cap on the number of sessions returned

    Returns:
        Sessions (flow) or reconciled executions (window), most recent first
    """
    from sync_history.flow import group_flow_sessions
    from sync_history.reconcile import reconcile_executions

    if strategy == "flow":
        return group_flow_sessions(records, limit=limit, config=config)
    if strategy == "window":
        return cap(reconcile_executions(records, config=config), limit)
    raise ValueError(f"Unknown reconstruction strategy: {strategy!r}")
