"""Flow-based grouping of one key's status events into sync sessions.

Walks the events once in chronological order, opening a session on a
flow-start event and closing it on a flow-end event, on the next flow-start,
or at the end of the stream. A flow that never got past its first event is
dropped: a lone status ping is steady-state noise, not a run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sync_history.sessions import (
    ERROR,
    SYNC_ERROR_MESSAGE,
    LogEvent,
    ReconstructionConfig,
    Session,
    cap,
    elapsed_seconds,
    most_recent_first,
)

logger = logging.getLogger("sync-history")


def chronological(events: Sequence[LogEvent]) -> list[LogEvent]:
    """Order events oldest first; ties keep id order."""
    return sorted(events, key=lambda e: (e.processed_at, e.id))


def _open_session(event: LogEvent) -> Session:
    return Session(
        id=event.id,
        schema_name=event.schema_name,
        table_name=event.table_name,
        db_engine=event.db_engine,
        start_time=event.processed_at,
        end_time=event.processed_at,
        status=event.status,
        status_flow=[event.status],
        total_rows_processed=event.record_count or 0,
        error_message=SYNC_ERROR_MESSAGE if event.status == ERROR else None,
        metadata=None,
        created_at=event.processed_at,
        record_ids=[event.id],
    )


def _extend_session(session: Session, event: LogEvent) -> None:
    session.end_time = event.processed_at
    session.status = event.status
    session.status_flow.append(event.status)
    session.record_ids.append(event.id)
    if event.record_count:
        # Running max, not a sum
        session.total_rows_processed = max(session.total_rows_processed, event.record_count)
    if event.status == ERROR:
        session.error_message = SYNC_ERROR_MESSAGE


def _close_session(session: Session) -> Session:
    session.duration_seconds = elapsed_seconds(session.start_time, session.end_time)
    return session


def group_flow_sessions(
    events: Sequence[LogEvent],
    limit: int | None = None,
    config: ReconstructionConfig | None = None,
) -> list[Session]:
    """Group a single key's status events into sessions.

    Events may be passed in either order; they are walked oldest first, so the
    LISTENING_CHANGES flow-start rule looks at the next event in time.

    Args:
        events: Status events for one (schema, table, engine) key
        limit: Maximum number of sessions to return
        config: Supplies the flow-start and flow-end predicates

    Returns:
        Sessions, most recent first, at most ``limit`` of them
    """
    if not events:
        return []

    config = config or ReconstructionConfig()
    ordered = chronological(events)
    sessions: list[Session] = []
    current: Session | None = None

    for index, event in enumerate(ordered):
        if config.is_flow_start(ordered, index):
            if current is not None and len(current.status_flow) > 1:
                sessions.append(_close_session(current))
            current = _open_session(event)
        elif current is not None:
            # Checked against the flow before this event is appended
            is_end = config.is_flow_end(current, event)
            _extend_session(current, event)
            if is_end:
                sessions.append(_close_session(current))
                current = None

    if current is not None and len(current.status_flow) > 1:
        sessions.append(_close_session(current))

    logger.debug(f"Grouped {len(ordered)} events into {len(sessions)} sessions")
    return cap(most_recent_first(sessions, key=lambda s: s.start_time), limit)
