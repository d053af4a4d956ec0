"""JSONL export ingestion for sync status logs.

Exports are newline-delimited JSON, one table row per line. Files named
``processing_log*.jsonl`` hold status pings; ``process_log*.jsonl`` hold
execution rows.
"""

import json
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from sync_history.sessions import ExecutionRecord, LogEvent, MalformedTimestampError
from sync_history.storage import IngestionState, SQLiteStorage

logger = logging.getLogger("sync-history")

# Default location for exported log files
DEFAULT_EXPORTS_DIR = Path.home() / ".local" / "share" / "sync-history" / "exports"

LOG_EVENTS = "processing_log"
EXECUTIONS = "process_log"

_LOG_EVENT_FIELDS = ("id", "schema_name", "table_name", "db_engine", "status", "processed_at")
_EXECUTION_FIELDS = ("id", "process_name", "status", "start_time")


def _missing_fields(raw: dict, required: tuple[str, ...]) -> list[str]:
    return [name for name in required if raw.get(name) in (None, "")]


def _has_integer_id(raw: dict) -> bool:
    row_id = raw.get("id")
    return isinstance(row_id, int) and not isinstance(row_id, bool)


def parse_log_row(raw: dict) -> LogEvent | None:
    """Parse one exported processing_log row.

    Returns None (and logs why) for rows missing required fields, with a
    non-integer id, or carrying a timestamp that cannot be parsed.
    """
    missing = _missing_fields(raw, _LOG_EVENT_FIELDS)
    if missing:
        logger.debug(f"Skipping status row missing {', '.join(missing)}: {raw}")
        return None
    if not _has_integer_id(raw):
        logger.debug(f"Skipping status row with non-integer id: {raw.get('id')!r}")
        return None

    try:
        event = LogEvent.from_row(raw)
    except MalformedTimestampError as e:
        logger.debug(f"Skipping status row {raw.get('id')}: {e}")
        return None

    if event.record_count is not None and not isinstance(event.record_count, int):
        logger.debug(f"Dropping non-integer record_count on row {event.id}")
        return replace(event, record_count=None)
    return event


def parse_execution_row(raw: dict) -> ExecutionRecord | None:
    """Parse one exported process_log row.

    Returns None (and logs why) for rows missing required fields, with a
    non-integer id, or carrying a timestamp that cannot be parsed.
    """
    missing = _missing_fields(raw, _EXECUTION_FIELDS)
    if missing:
        logger.debug(f"Skipping execution row missing {', '.join(missing)}: {raw}")
        return None
    if not _has_integer_id(raw):
        logger.debug(f"Skipping execution row with non-integer id: {raw.get('id')!r}")
        return None

    try:
        return ExecutionRecord.from_row(raw)
    except MalformedTimestampError as e:
        logger.debug(f"Skipping execution row {raw.get('id')}: {e}")
        return None


def detect_kind(file_path: Path) -> str | None:
    """Infer the export kind from the file name."""
    name = file_path.name
    if name.startswith(LOG_EVENTS):
        return LOG_EVENTS
    if name.startswith(EXECUTIONS):
        return EXECUTIONS
    return None


def find_export_files(exports_dir: Path = DEFAULT_EXPORTS_DIR) -> list[Path]:
    """Find JSONL export files, oldest first so ids land in order."""
    if not exports_dir.exists():
        logger.warning(f"Exports directory does not exist: {exports_dir}")
        return []

    files = []
    for jsonl_file in exports_dir.glob("*.jsonl"):
        if detect_kind(jsonl_file) is None:
            logger.debug(f"Ignoring unrecognized export file: {jsonl_file}")
            continue
        try:
            files.append((jsonl_file, jsonl_file.stat().st_mtime))
        except OSError as e:
            logger.warning(f"Could not stat {jsonl_file}: {e}")

    files.sort(key=lambda x: x[1])
    return [f for f, _ in files]


def ingest_file(
    file_path: Path,
    storage: SQLiteStorage,
    kind: str | None = None,
    force: bool = False,
) -> dict:
    """Ingest a single JSONL export file.

    Files that haven't changed since the last ingestion are skipped unless
    ``force`` is set.

    Args:
        file_path: Path to JSONL file
        storage: Storage instance
        kind: "processing_log" or "process_log" (inferred from the name if omitted)
        force: Force re-ingestion even if file hasn't changed

    Returns:
        Stats dict with rows_processed, rows_added, skipped, errors
    """
    kind = kind or detect_kind(file_path)
    if kind not in (LOG_EVENTS, EXECUTIONS):
        raise ValueError(f"Cannot tell what kind of export {file_path} is")

    file_str = str(file_path)
    stat = file_path.stat()
    file_size = stat.st_size
    file_mtime = datetime.fromtimestamp(stat.st_mtime)

    state = storage.get_ingestion_state(file_str)
    if state and not force:
        if state.file_size == file_size and state.last_modified >= file_mtime:
            return {"rows_processed": 0, "rows_added": 0, "skipped": True, "errors": 0}

    parse = parse_log_row if kind == LOG_EVENTS else parse_execution_row
    parsed = []
    rows_processed = 0
    errors = 0

    with open(file_path, encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue

            try:
                raw = json.loads(line)
            except json.JSONDecodeError as e:
                logger.debug(f"JSON parse error in {file_path}:{line_num}: {e}")
                errors += 1
                continue

            rows_processed += 1
            try:
                item = parse(raw) if isinstance(raw, dict) else None
            except Exception as e:
                logger.warning(f"Error processing {file_path}:{line_num}: {e}")
                item = None
            if item is None:
                errors += 1
            else:
                parsed.append(item)

    if kind == LOG_EVENTS:
        rows_added = storage.add_log_events_batch(parsed)
    else:
        rows_added = storage.add_executions_batch(parsed)

    storage.update_ingestion_state(
        IngestionState(
            file_path=file_str,
            file_size=file_size,
            last_modified=file_mtime,
            rows_processed=rows_processed,
            last_processed=datetime.now(),
        )
    )

    if errors:
        logger.info(f"Skipped {errors} malformed rows in {file_path}")

    return {
        "rows_processed": rows_processed,
        "rows_added": rows_added,
        "skipped": False,
        "errors": errors,
    }


def ingest_exports(
    storage: SQLiteStorage,
    exports_dir: Path = DEFAULT_EXPORTS_DIR,
    force: bool = False,
) -> dict:
    """Ingest all JSONL export files in a directory.

    Args:
        storage: Storage instance
        exports_dir: Directory containing exports
        force: Force re-ingestion

    Returns:
        Stats dict with totals
    """
    files = find_export_files(exports_dir)

    totals = {
        "files_found": len(files),
        "files_processed": 0,
        "files_skipped": 0,
        "rows_processed": 0,
        "log_events_added": 0,
        "executions_added": 0,
        "errors": 0,
    }

    for file_path in files:
        kind = detect_kind(file_path)
        try:
            result = ingest_file(file_path, storage, kind=kind, force=force)
        except Exception as e:
            logger.error(f"Failed to ingest {file_path}: {e}")
            totals["errors"] += 1
            continue

        if result["skipped"]:
            totals["files_skipped"] += 1
            continue
        totals["files_processed"] += 1
        totals["rows_processed"] += result["rows_processed"]
        totals["errors"] += result["errors"]
        if kind == LOG_EVENTS:
            totals["log_events_added"] += result["rows_added"]
        else:
            totals["executions_added"] += result["rows_added"]

    return totals
