"""Tests for the query implementations."""

from datetime import timedelta

from conftest import make_event, make_execution

from sync_history.queries import (
    get_status,
    query_execution_history,
    query_execution_timeline,
)
from sync_history.sessions import ReconstructionConfig

# Uses fixtures from conftest.py: storage, populated_storage


class TestGetStatus:
    """Tests for status queries."""

    def test_empty_status(self, storage):
        """Test status before anything is ingested."""
        result = get_status(storage)
        assert result["last_ingestion"] is None
        assert result["log_event_count"] == 0

    def test_populated_status(self, populated_storage):
        """Test that DB stats are included."""
        result = get_status(populated_storage)
        assert result["log_event_count"] == 9
        assert result["execution_count"] == 5
        assert "db_path" in result


class TestQueryExecutionHistory:
    """Tests for flow-based history queries."""

    def test_basic_history(self, populated_storage):
        """Test sessions reconstructed for one table."""
        result = query_execution_history(populated_storage, "public", "orders", "PostgreSQL")
        assert result["events_scanned"] == 7  # SKIP row excluded
        assert result["session_count"] == 2
        assert result["limit"] == 50

        latest, earlier = result["sessions"]
        assert latest["record_ids"] == [5, 6, 7]
        assert latest["status"] == "ERROR"
        assert latest["error_message"] == "Sync error occurred"
        assert latest["duration_seconds"] == 180
        assert latest["total_rows_processed"] == 40

        assert earlier["record_ids"] == [1, 2, 3, 4]
        assert earlier["status"] == "LISTENING_CHANGES"
        assert earlier["status_flow"] == [
            "FULL_LOAD",
            "IN_PROGRESS",
            "IN_PROGRESS",
            "LISTENING_CHANGES",
        ]
        assert earlier["duration_seconds"] == 600
        assert earlier["total_rows_processed"] == 1200
        assert earlier["start_time"] == "2025-03-01T12:00:00"
        assert earlier["end_time"] == "2025-03-01T12:10:00"

    def test_case_insensitive_key(self, populated_storage):
        """Test that the table key matches regardless of case."""
        result = query_execution_history(populated_storage, "PUBLIC", "ORDERS", "postgresql")
        assert result["session_count"] == 2
        assert result["schema_name"] == "PUBLIC"

    def test_limit(self, populated_storage):
        """Test that the limit keeps the newest sessions."""
        result = query_execution_history(
            populated_storage, "public", "orders", "PostgreSQL", limit=1
        )
        assert result["session_count"] == 1
        assert result["sessions"][0]["record_ids"] == [5, 6, 7]

    def test_limit_clamped(self, populated_storage):
        """Test that out-of-range and junk limits are normalized."""
        high = query_execution_history(populated_storage, "public", "orders", "PostgreSQL", 500)
        assert high["limit"] == 100
        low = query_execution_history(populated_storage, "public", "orders", "PostgreSQL", 0)
        assert low["limit"] == 1
        junk = query_execution_history(populated_storage, "public", "orders", "PostgreSQL", "x")
        assert junk["limit"] == 50

    def test_missing_key_part(self, populated_storage):
        """Test that an incomplete key returns an error entry."""
        result = query_execution_history(populated_storage, "public", "", "PostgreSQL")
        assert "error" in result

    def test_unknown_table(self, populated_storage):
        """Test that a table with no events yields no sessions."""
        result = query_execution_history(populated_storage, "public", "missing", "PostgreSQL")
        assert result["session_count"] == 0
        assert result["sessions"] == []

    def test_single_ping_table_has_no_sessions(self, populated_storage):
        """Test that a lone FULL_LOAD ping doesn't produce a session."""
        result = query_execution_history(populated_storage, "public", "invoices", "PostgreSQL")
        assert result["events_scanned"] == 1
        assert result["session_count"] == 0

    def test_row_multiplier_bounds_scan(self, populated_storage):
        """Test that the scan reads limit * multiplier rows."""
        config = ReconstructionConfig(history_row_multiplier=1)
        result = query_execution_history(
            populated_storage, "public", "orders", "PostgreSQL", limit=3, config=config
        )
        assert result["events_scanned"] == 3
        # Only ids 5-7 are read, which form the latest session
        assert [s["record_ids"] for s in result["sessions"]] == [[5, 6, 7]]

    def test_history_from_storage_is_chronological(self, storage):
        """Test that rows read newest first still produce end >= start."""
        storage.add_log_events_batch(
            [
                make_event(1, "FULL_LOAD", 0),
                make_event(2, "IN_PROGRESS", 1),
                make_event(3, "NO_DATA", 4),
            ]
        )
        result = query_execution_history(storage, "public", "orders", "PostgreSQL")
        session = result["sessions"][0]
        assert session["start_time"] <= session["end_time"]
        assert session["duration_seconds"] == 240


class TestQueryExecutionTimeline:
    """Tests for window-reconciled timeline queries."""

    def test_basic_timeline(self, populated_storage):
        """Test reconciled executions for one entity."""
        result = query_execution_timeline(populated_storage, "customers.csv")
        assert result["records_scanned"] == 4
        assert result["total_executions"] == 3
        assert result["merged_count"] == 1
        assert result["running_count"] == 1
        assert result["max_duration_seconds"] == 360
        assert result["limit"] == 20

    def test_chronological_window(self, populated_storage):
        """Test that executions come out oldest first for charting."""
        result = query_execution_timeline(populated_storage, "customers.csv")
        executions = result["executions"]
        assert [e["record_ids"] for e in executions] == [[10, 11], [12], [13]]

        merged = executions[0]
        assert merged["id"] == 11
        assert merged["status_flow"] == ["IN_PROGRESS", "SUCCESS"]
        assert merged["final_status"] == "SUCCESS"
        assert merged["final_duration"] == 60
        assert merged["duration_seconds"] == 360
        assert merged["in_progress"]["duration_seconds"] == 300

        assert executions[2]["status"] == "IN_PROGRESS"
        assert executions[2]["end_time"] is None

    def test_bar_heights(self, populated_storage):
        """Test bar heights relative to the longest execution."""
        result = query_execution_timeline(populated_storage, "customers.csv")
        assert result["bar_heights"] == [100.0, 33.33, 2.0]

    def test_limit(self, populated_storage):
        """Test that the window keeps the newest executions."""
        result = query_execution_timeline(populated_storage, "customers.csv", limit=2)
        assert [e["record_ids"] for e in result["executions"]] == [[12], [13]]
        assert result["max_duration_seconds"] == 120
        # Scaled against the charted window, not the older 360s merged run
        assert result["bar_heights"] == [100.0, 2.0]

    def test_process_type_filter(self, populated_storage):
        """Test filtering executions by process type."""
        result = query_execution_timeline(
            populated_storage, "customers.csv", process_type="API_SYNC"
        )
        assert result["total_executions"] == 0
        assert result["executions"] == []
        assert result["bar_heights"] == []
        assert result["max_duration_seconds"] == 0

    def test_other_entity_isolated(self, populated_storage):
        """Test that another entity's rows are not mixed in."""
        result = query_execution_timeline(populated_storage, "other.csv")
        assert result["total_executions"] == 1
        assert result["executions"][0]["id"] == 20

    def test_missing_process_name(self, populated_storage):
        """Test that a missing entity name returns an error entry."""
        assert "error" in query_execution_timeline(populated_storage, "")

    def test_configured_window(self, storage):
        """Test that a narrow pairing window keeps long runs apart."""
        storage.add_executions_batch(
            [
                make_execution(1, "IN_PROGRESS", 0),
                make_execution(2, "SUCCESS", 90, end_minutes=91),
            ]
        )
        wide = query_execution_timeline(storage, "customers.csv")
        assert wide["total_executions"] == 1

        config = ReconstructionConfig(pairing_window=timedelta(hours=1))
        narrow = query_execution_timeline(storage, "customers.csv", config=config)
        assert narrow["total_executions"] == 2
        assert narrow["merged_count"] == 0
