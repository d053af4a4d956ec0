"""Pairing of IN_PROGRESS executions with their terminal executions.

The process log writes one row when a run starts (IN_PROGRESS) and another when
it finishes (SUCCESS or ERROR), with nothing linking the two. Reconciliation
pairs each start with the first unclaimed terminal row inside the pairing
window and merges them into one execution. Anything left unpaired is kept as
is: a lone IN_PROGRESS row is a run that is still going (or stuck), and a lone
terminal row is still a real attempt.

Runs longer than the pairing window are never merged and show up as two
records.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from datetime import timedelta

from sync_history.sessions import (
    IN_PROGRESS,
    TERMINAL_STATUSES,
    ExecutionRecord,
    InProgressSegment,
    ReconstructionConfig,
    cap,
    elapsed_seconds,
    most_recent_first,
)

logger = logging.getLogger("sync-history")

# Floor for chart bars so zero-length runs stay visible
MIN_BAR_HEIGHT = 2.0


def _within_window(earlier, later, window: timedelta) -> bool:
    gap = later - earlier
    return timedelta(0) < gap <= window


def _find_terminal(
    records: Sequence[ExecutionRecord],
    started: ExecutionRecord,
    processed: set[int],
    window: timedelta,
) -> ExecutionRecord | None:
    for candidate in records:
        if candidate.id in processed or candidate.id == started.id:
            continue
        if candidate.in_progress is not None:
            continue
        if candidate.status in TERMINAL_STATUSES and _within_window(
            started.start_time, candidate.start_time, window
        ):
            return candidate
    return None


def _find_start(
    records: Sequence[ExecutionRecord],
    finished: ExecutionRecord,
    processed: set[int],
    window: timedelta,
) -> ExecutionRecord | None:
    for candidate in records:
        if candidate.id in processed or candidate.id == finished.id:
            continue
        if candidate.status == IN_PROGRESS and _within_window(
            candidate.start_time, finished.start_time, window
        ):
            return candidate
    return None


def merge_pair(started: ExecutionRecord, finished: ExecutionRecord) -> ExecutionRecord:
    """Merge an IN_PROGRESS record with the terminal record that closed it.

    Display fields come from the terminal record; the interval spans from the
    start of the IN_PROGRESS record to the end of the terminal one.
    """
    start_time = started.start_time
    end_time = max(finished.end_time or finished.start_time, start_time)
    duration = elapsed_seconds(start_time, end_time)
    running = elapsed_seconds(start_time, finished.start_time)

    return replace(
        finished,
        start_time=start_time,
        end_time=end_time,
        duration_seconds=duration if duration > 0 else (finished.duration_seconds or 0),
        status_flow=[IN_PROGRESS, finished.status],
        final_status=finished.status,
        in_progress=InProgressSegment(
            start_time=start_time,
            end_time=finished.start_time,
            duration_seconds=max(running, 0),
        ),
        final_duration=finished.duration_seconds or 0,
        record_ids=[started.id, finished.id],
    )


def standalone(record: ExecutionRecord) -> ExecutionRecord:
    """Pass a record through, filling derived fields it does not already carry."""
    return replace(
        record,
        status_flow=list(record.status_flow) or [record.status],
        final_status=record.final_status or record.status,
        record_ids=list(record.record_ids) or [record.id],
    )


def reconcile_executions(
    records: Sequence[ExecutionRecord],
    config: ReconstructionConfig | None = None,
) -> list[ExecutionRecord]:
    """Pair start and terminal executions into merged records.

    Every input id ends up in exactly one output record. Records that were
    already merged are never paired again, so running this on its own output
    changes nothing.

    Args:
        records: Execution records for one entity, in any order
        config: Supplies the pairing window

    Returns:
        Merged and standalone records, most recent first
    """
    config = config or ReconstructionConfig()
    window = config.pairing_window
    processed: set[int] = set()
    executions: list[ExecutionRecord] = []
    merged = 0

    for record in records:
        if record.id in processed:
            continue

        partner = None
        if record.status == IN_PROGRESS:
            partner = _find_terminal(records, record, processed, window)
            if partner is not None:
                executions.append(merge_pair(record, partner))
        elif record.status in TERMINAL_STATUSES and record.in_progress is None:
            partner = _find_start(records, record, processed, window)
            if partner is not None:
                executions.append(merge_pair(partner, record))

        if partner is None:
            executions.append(standalone(record))
        else:
            processed.add(partner.id)
            merged += 1
        processed.add(record.id)

    logger.debug(f"Reconciled {len(records)} executions ({merged} merged pairs)")
    return most_recent_first(executions, key=lambda e: e.start_time)


def timeline_window(executions: Sequence[ExecutionRecord], limit: int) -> list[ExecutionRecord]:
    """Most recent ``limit`` executions, oldest first for left-to-right charts."""
    recent = cap(most_recent_first(executions, key=lambda e: e.start_time), limit)
    recent.reverse()
    return recent


def bar_heights(executions: Sequence[ExecutionRecord]) -> list[float]:
    """Chart bar heights as a percentage of the longest duration."""
    max_duration = max((e.duration_seconds or 0 for e in executions), default=0)
    max_duration = max(max_duration, 1)
    heights = []
    for execution in executions:
        duration = execution.duration_seconds or 0
        height = duration / max_duration * 100 if duration > 0 else 0.0
        heights.append(round(max(height, MIN_BAR_HEIGHT), 2))
    return heights
