"""Query implementations for sync session history."""

from __future__ import annotations

import logging

from sync_history.flow import group_flow_sessions
from sync_history.reconcile import bar_heights, reconcile_executions, timeline_window
from sync_history.sessions import ReconstructionConfig, validate_limit
from sync_history.storage import SQLiteStorage

logger = logging.getLogger("sync-history")

# Bounds for caller-supplied history limits
MIN_HISTORY_LIMIT = 1
MAX_HISTORY_LIMIT = 100
DEFAULT_HISTORY_LIMIT = 50


def get_status(storage: SQLiteStorage) -> dict:
    """Get database stats and last ingestion time.

    Args:
        storage: Storage instance

    Returns:
        Stats dict including last_ingestion
    """
    last_ingest = storage.get_last_ingestion_time()
    return {
        "last_ingestion": last_ingest.isoformat() if last_ingest else None,
        **storage.get_db_stats(),
    }


def query_execution_history(
    storage: SQLiteStorage,
    schema_name: str | None,
    table_name: str | None,
    db_engine: str | None,
    limit=DEFAULT_HISTORY_LIMIT,
    config: ReconstructionConfig | None = None,
) -> dict:
    """Reconstruct recent sync sessions for one catalog table.

    Several status pings make up one session, so more raw rows are read than
    sessions requested (``limit * history_row_multiplier``).

    Args:
        storage: Storage instance
        schema_name: Schema of the synced table
        table_name: Name of the synced table
        db_engine: Source engine of the synced table
        limit: Maximum sessions to return (clamped to 1-100)
        config: Reconstruction config (defaults from environment)

    Returns:
        Dict with the key, limit, events_scanned, session_count and sessions
        (most recent first), or an error entry when the key is incomplete
    """
    if not schema_name or not table_name or not db_engine:
        return {"error": "schema_name, table_name, and db_engine are required"}

    config = config or ReconstructionConfig.from_env()
    limit = validate_limit(
        limit,
        minimum=MIN_HISTORY_LIMIT,
        maximum=MAX_HISTORY_LIMIT,
        default=DEFAULT_HISTORY_LIMIT,
    )

    events = storage.get_log_events(
        schema_name,
        table_name,
        db_engine,
        limit=limit * config.history_row_multiplier,
    )
    sessions = group_flow_sessions(events, limit=limit, config=config)

    logger.debug(
        f"History for {schema_name}.{table_name} ({db_engine}): "
        f"{len(events)} events -> {len(sessions)} sessions"
    )

    return {
        "schema_name": schema_name,
        "table_name": table_name,
        "db_engine": db_engine,
        "limit": limit,
        "events_scanned": len(events),
        "session_count": len(sessions),
        "sessions": [s.to_dict() for s in sessions],
    }


def query_execution_timeline(
    storage: SQLiteStorage,
    process_name: str | None,
    process_type: str | None = None,
    limit=None,
    config: ReconstructionConfig | None = None,
) -> dict:
    """Reconcile an entity's executions into chart-ready timeline entries.

    Args:
        storage: Storage instance
        process_name: Entity whose executions are charted (CSV source, API, table)
        process_type: Optional process type filter (e.g. "API_SYNC")
        limit: Bars to show (defaults to the configured display limit)
        config: Reconstruction config (defaults from environment)

    Returns:
        Dict with executions in chronological order, their bar heights, the
        longest duration and counts of merged and still-running executions
    """
    if not process_name:
        return {"error": "process_name is required"}

    config = config or ReconstructionConfig.from_env()
    limit = validate_limit(
        limit,
        minimum=1,
        maximum=MAX_HISTORY_LIMIT,
        default=config.display_limit,
    )

    records = storage.get_executions(
        process_name,
        process_type=process_type,
        limit=limit * config.history_row_multiplier,
    )
    reconciled = reconcile_executions(records, config=config)
    window = timeline_window(reconciled, limit)

    return {
        "process_name": process_name,
        "process_type": process_type,
        "limit": limit,
        "records_scanned": len(records),
        "total_executions": len(reconciled),
        "merged_count": sum(1 for e in reconciled if e.in_progress is not None),
        "running_count": sum(1 for e in reconciled if e.is_running),
        "max_duration_seconds": max((e.duration_seconds or 0 for e in window), default=0),
        "executions": [e.to_dict() for e in window],
        "bar_heights": bar_heights(window),
    }
