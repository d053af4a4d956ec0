"""SQLite storage backend for sync status logs."""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sync_history.sessions import SKIP, ExecutionRecord, LogEvent

logger = logging.getLogger("sync-history")

# Register datetime adapters/converters (required for Python 3.12+)


def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat()


def _convert_datetime(data: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(data.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("TIMESTAMP", _convert_datetime)


@dataclass
class IngestionState:
    """Tracks the ingestion state of an export file."""

    file_path: str
    file_size: int
    last_modified: datetime
    rows_processed: int
    last_processed: datetime


# Default database path
DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "sync-history" / "data.db"

# Schema version for migrations
SCHEMA_VERSION = 2

# Migration functions: dict of version -> (migration_name, migration_func)
# Each migration upgrades FROM version-1 TO version
MIGRATIONS: dict[int, tuple[str, callable]] = {}


def migration(version: int, name: str):
    """Decorator to register a schema migration."""

    def decorator(func: callable):
        MIGRATIONS[version] = (name, func)
        return func

    return decorator


@migration(2, "add_case_insensitive_key_index")
def migrate_v2(conn):
    """Index processing_log by lower-cased key for case-insensitive history lookups."""
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_processing_log_key_lower ON processing_log(
            LOWER(schema_name), LOWER(table_name), LOWER(db_engine), processed_at
        )
    """)


class SQLiteStorage:
    """SQLite-backed storage for processing and process logs."""

    def __init__(self, db_path: str | Path | None = None):
        """Initialize storage with optional custom DB path."""
        if db_path is None:
            db_path = os.environ.get("SYNC_HISTORY_DB", str(DEFAULT_DB_PATH))

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    @contextmanager
    def _connect(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def execute_query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        """Execute a SQL query and return all results.

        Args:
            sql: SQL query string
            params: Query parameters (tuple or list)

        Returns:
            List of sqlite3.Row objects
        """
        with self._connect() as conn:
            return conn.execute(sql, params).fetchall()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        """Get current schema version from database."""
        try:
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            return row[0] if row else 0
        except sqlite3.OperationalError:
            # Table doesn't exist yet
            return 0

    def _run_migrations(self, conn: sqlite3.Connection, current_version: int):
        """Run all pending migrations."""
        for version in range(current_version + 1, SCHEMA_VERSION + 1):
            if version in MIGRATIONS:
                name, migration_func = MIGRATIONS[version]
                logger.info(f"Running migration {version}: {name}")
                migration_func(conn)
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)

            # Raw status pings per (schema, table, engine), no run identifier
            conn.execute("""
                CREATE TABLE IF NOT EXISTS processing_log (
                    id INTEGER PRIMARY KEY,
                    schema_name TEXT NOT NULL,
                    table_name TEXT NOT NULL,
                    db_engine TEXT NOT NULL,
                    status TEXT NOT NULL,
                    processed_at TIMESTAMP NOT NULL,
                    record_count INTEGER
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_processing_log_processed "
                "ON processing_log(processed_at)"
            )

            # Start and terminal rows of process executions (CSV, API, ... syncs)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS process_log (
                    id INTEGER PRIMARY KEY,
                    process_type TEXT,
                    process_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    start_time TIMESTAMP NOT NULL,
                    end_time TIMESTAMP,
                    duration_seconds INTEGER,
                    total_rows_processed INTEGER,
                    error_message TEXT,
                    metadata_json TEXT,
                    created_at TIMESTAMP
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_process_log_name ON process_log(process_name)"
            )

            # Ingestion tracking (incremental updates)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ingestion_state (
                    file_path TEXT PRIMARY KEY,
                    file_size INTEGER,
                    last_modified TIMESTAMP,
                    rows_processed INTEGER,
                    last_processed TIMESTAMP
                )
            """)

            current_version = self._get_schema_version(conn)
            if current_version < SCHEMA_VERSION:
                self._run_migrations(conn, current_version)

    # Processing log operations

    def add_log_event(self, event: LogEvent) -> None:
        """Add a status event. Events with an existing id are ignored."""
        self.add_log_events_batch([event])

    def add_log_events_batch(self, events: list[LogEvent]) -> int:
        """Add multiple status events in a single transaction. Returns count added."""
        if not events:
            return 0
        with self._connect() as conn:
            cursor = conn.executemany(
                """
                INSERT OR IGNORE INTO processing_log (
                    id, schema_name, table_name, db_engine, status, processed_at, record_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        e.id,
                        e.schema_name,
                        e.table_name,
                        e.db_engine,
                        e.status,
                        e.processed_at,
                        e.record_count,
                    )
                    for e in events
                ],
            )
            return cursor.rowcount

    def get_log_event_count(self) -> int:
        """Get total number of status events."""
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) as count FROM processing_log").fetchone()
            return row["count"]

    def get_log_events(
        self,
        schema_name: str,
        table_name: str,
        db_engine: str,
        limit: int = 1000,
    ) -> list[LogEvent]:
        """Get the most recent status events for one key, newest first.

        The key match is case-insensitive and SKIP pings are excluded.
        """
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, schema_name, table_name, db_engine, status, processed_at, record_count
                FROM processing_log
                WHERE LOWER(schema_name) = LOWER(?)
                  AND LOWER(table_name) = LOWER(?)
                  AND LOWER(db_engine) = LOWER(?)
                  AND status != ?
                ORDER BY processed_at DESC, id DESC
                LIMIT ?
                """,
                (schema_name, table_name, db_engine, SKIP, limit),
            ).fetchall()

            return [LogEvent.from_row(row) for row in rows]

    # Process log operations

    def add_execution(self, record: ExecutionRecord) -> None:
        """Add an execution row. Rows with an existing id are ignored."""
        self.add_executions_batch([record])

    def add_executions_batch(self, records: list[ExecutionRecord]) -> int:
        """Add multiple execution rows in a single transaction. Returns count added."""
        if not records:
            return 0
        with self._connect() as conn:
            cursor = conn.executemany(
                """
                INSERT OR IGNORE INTO process_log (
                    id, process_type, process_name, status, start_time, end_time,
                    duration_seconds, total_rows_processed, error_message,
                    metadata_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        r.id,
                        r.process_type,
                        r.process_name,
                        r.status,
                        r.start_time,
                        r.end_time,
                        r.duration_seconds,
                        r.total_rows_processed,
                        r.error_message,
                        json.dumps(r.metadata) if r.metadata else None,
                        r.created_at,
                    )
                    for r in records
                ],
            )
            return cursor.rowcount

    def get_execution_count(self) -> int:
        """Get total number of execution rows."""
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) as count FROM process_log").fetchone()
            return row["count"]

    def get_executions(
        self,
        process_name: str,
        process_type: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionRecord]:
        """Get the most recent execution rows for one entity, newest first."""
        with self._connect() as conn:
            conditions = ["LOWER(process_name) = LOWER(?)"]
            params: list = [process_name]

            if process_type:
                conditions.append("process_type = ?")
                params.append(process_type)

            # Safe: where_clause is built from hardcoded condition strings, not user input
            where_clause = " AND ".join(conditions)
            params.append(limit)

            rows = conn.execute(
                f"""
                SELECT * FROM process_log
                WHERE {where_clause}
                ORDER BY COALESCE(created_at, start_time) DESC, id DESC
                LIMIT ?
                """,
                params,
            ).fetchall()

            return [self._row_to_execution(row) for row in rows]

    def _row_to_execution(self, row: sqlite3.Row) -> ExecutionRecord:
        """Convert a database row to an ExecutionRecord."""
        data = dict(row)
        metadata_json = data.pop("metadata_json", None)
        data["metadata"] = json.loads(metadata_json) if metadata_json else None
        return ExecutionRecord.from_row(data)

    # Ingestion state operations

    def get_ingestion_state(self, file_path: str) -> IngestionState | None:
        """Get ingestion state for a file."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM ingestion_state WHERE file_path = ?", (file_path,)
            ).fetchone()
            if row:
                return IngestionState(
                    file_path=row["file_path"],
                    file_size=row["file_size"],
                    last_modified=row["last_modified"],
                    rows_processed=row["rows_processed"],
                    last_processed=row["last_processed"],
                )
            return None

    def update_ingestion_state(self, state: IngestionState) -> None:
        """Update ingestion state for a file."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO ingestion_state (
                    file_path, file_size, last_modified, rows_processed, last_processed
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    state.file_path,
                    state.file_size,
                    state.last_modified,
                    state.rows_processed,
                    state.last_processed,
                ),
            )

    def get_last_ingestion_time(self) -> datetime | None:
        """Get the most recent ingestion time across all files."""
        with self._connect() as conn:
            row = conn.execute("SELECT MAX(last_processed) as last FROM ingestion_state").fetchone()
            if not row or not row["last"]:
                return None
            # SQLite aggregates return strings, not converted datetimes
            val = row["last"]
            return datetime.fromisoformat(val) if isinstance(val, str) else val

    # Utility operations

    def get_db_stats(self) -> dict:
        """Get database statistics."""
        with self._connect() as conn:
            event_count = conn.execute("SELECT COUNT(*) FROM processing_log").fetchone()[0]
            execution_count = conn.execute("SELECT COUNT(*) FROM process_log").fetchone()[0]
            file_count = conn.execute("SELECT COUNT(*) FROM ingestion_state").fetchone()[0]
            key_count = conn.execute(
                """
                SELECT COUNT(*) FROM (
                    SELECT DISTINCT LOWER(schema_name), LOWER(table_name), LOWER(db_engine)
                    FROM processing_log
                )
                """
            ).fetchone()[0]

            date_range = conn.execute(
                "SELECT MIN(processed_at) as min_ts, MAX(processed_at) as max_ts "
                "FROM processing_log"
            ).fetchone()

            db_size = self.db_path.stat().st_size if self.db_path.exists() else 0

            def to_iso(val):
                if val is None:
                    return None
                return val if isinstance(val, str) else val.isoformat()

            return {
                "log_event_count": event_count,
                "execution_count": execution_count,
                "key_count": key_count,
                "files_processed": file_count,
                "earliest_event": to_iso(date_range["min_ts"]),
                "latest_event": to_iso(date_range["max_ts"]),
                "db_size_bytes": db_size,
                "db_path": str(self.db_path),
            }
