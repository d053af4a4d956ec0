"""Pytest configuration and shared fixtures."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from sync_history.sessions import ExecutionRecord, LogEvent
from sync_history.storage import SQLiteStorage

T0 = datetime(2025, 3, 1, 12, 0, 0)


def make_event(
    id: int,
    status: str,
    minutes: float = 0,
    record_count: int | None = None,
    schema_name: str = "public",
    table_name: str = "orders",
    db_engine: str = "PostgreSQL",
) -> LogEvent:
    """Build a status event ``minutes`` after T0 for the default key."""
    return LogEvent(
        id=id,
        schema_name=schema_name,
        table_name=table_name,
        db_engine=db_engine,
        status=status,
        processed_at=T0 + timedelta(minutes=minutes),
        record_count=record_count,
    )


def make_execution(
    id: int,
    status: str,
    minutes: float = 0,
    end_minutes: float | None = None,
    duration_seconds: int | None = None,
    process_name: str = "customers.csv",
    **kwargs,
) -> ExecutionRecord:
    """Build an execution starting ``minutes`` after T0."""
    return ExecutionRecord(
        id=id,
        status=status,
        start_time=T0 + timedelta(minutes=minutes),
        end_time=T0 + timedelta(minutes=end_minutes) if end_minutes is not None else None,
        duration_seconds=duration_seconds,
        process_type="CSV_SYNC",
        process_name=process_name,
        **kwargs,
    )


@pytest.fixture
def storage():
    """Create a temporary storage instance for testing.

    This is the base fixture for all storage-dependent tests.
    Use this when you need an empty database.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        yield SQLiteStorage(db_path)


@pytest.fixture
def sync_events():
    """Status events for public.orders covering two complete runs.

    Contains:
    - a full load (ids 1-4) ending in LISTENING_CHANGES at minute 10
    - an incremental cycle (ids 5-7) starting at minute 60 and hitting an ERROR
    - a SKIP ping (id 8) that history queries must ignore
    """
    return [
        make_event(1, "FULL_LOAD", 0, record_count=0),
        make_event(2, "IN_PROGRESS", 2, record_count=500),
        make_event(3, "IN_PROGRESS", 5, record_count=1200),
        make_event(4, "LISTENING_CHANGES", 10),
        make_event(5, "LISTENING_CHANGES", 60),
        make_event(6, "IN_PROGRESS", 61, record_count=40),
        make_event(7, "ERROR", 63),
        make_event(8, "SKIP", 70),
    ]


@pytest.fixture
def populated_storage(storage, sync_events):
    """Storage with status events and process executions.

    Contains:
    - the sync_events fixture for public.orders (PostgreSQL)
    - one unrelated status event for another key
    - customers.csv executions: a merged pair, a lone SUCCESS and a running row
    """
    storage.add_log_events_batch(sync_events)
    storage.add_log_event(make_event(100, "FULL_LOAD", 5, table_name="invoices"))

    storage.add_executions_batch(
        [
            make_execution(10, "IN_PROGRESS", 0),
            make_execution(11, "SUCCESS", 5, end_minutes=6, duration_seconds=60),
            make_execution(12, "SUCCESS", 3000, end_minutes=3002, duration_seconds=120),
            make_execution(13, "IN_PROGRESS", 4000),
            make_execution(20, "SUCCESS", 10, end_minutes=11, process_name="other.csv"),
        ]
    )
    return storage
