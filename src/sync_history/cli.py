"""Command-line interface for sync session history."""

import argparse
import json
from pathlib import Path

from sync_history.ingest import DEFAULT_EXPORTS_DIR, ingest_exports
from sync_history.queries import (
    DEFAULT_HISTORY_LIMIT,
    get_status,
    query_execution_history,
    query_execution_timeline,
)
from sync_history.sessions import format_duration
from sync_history.storage import SQLiteStorage

# Formatter registry: list of (predicate, formatter) tuples
# Each predicate checks if this formatter can handle the data
# Order matters - first match wins
_FORMATTERS: list[tuple[callable, callable]] = []


def _register_formatter(predicate: callable):
    """Decorator to register a formatter with its predicate."""

    def decorator(formatter: callable):
        _FORMATTERS.append((predicate, formatter))
        return formatter

    return decorator


@_register_formatter(lambda d: "error" in d)
def _format_error(data: dict) -> list[str]:
    return [f"Error: {data['error']}"]


@_register_formatter(lambda d: "sessions" in d and "events_scanned" in d)
def _format_history(data: dict) -> list[str]:
    lines = [
        f"Execution history for {data['schema_name']}.{data['table_name']} ({data['db_engine']})",
        f"Sessions: {data['session_count']} (from {data['events_scanned']} status events)",
        "",
    ]
    for session in data["sessions"]:
        start = session["start_time"][:19] if session.get("start_time") else "unknown"
        flow = " → ".join(session.get("status_flow", []))
        lines.append(
            f"  [{start}] {session['status']} in {format_duration(session['duration_seconds'])}"
            f" - {session['total_rows_processed']} rows"
        )
        lines.append(f"    {flow}")
        if session.get("error_message"):
            lines.append(f"    Error: {session['error_message']}")
    return lines


@_register_formatter(lambda d: "executions" in d and "bar_heights" in d)
def _format_timeline(data: dict) -> list[str]:
    lines = [
        f"Execution timeline for {data['process_name']}",
        f"Executions: {data['total_executions']} "
        f"({data['merged_count']} merged, {data['running_count']} running)",
        f"Longest: {format_duration(data['max_duration_seconds'])}",
        "",
    ]
    for execution, height in zip(data["executions"], data["bar_heights"]):
        start = execution["start_time"][:19] if execution.get("start_time") else "unknown"
        bar = "#" * max(1, round(height / 5))
        status = execution.get("final_status") or execution["status"]
        duration = format_duration(execution.get("duration_seconds"))
        lines.append(f"  [{start}] {bar} {status} {duration}")
    return lines


@_register_formatter(lambda d: "files_found" in d)
def _format_ingest(data: dict) -> list[str]:
    return [
        f"Files found: {data['files_found']}",
        f"Files processed: {data['files_processed']}",
        f"Status events added: {data['log_events_added']}",
        f"Executions added: {data['executions_added']}",
        f"Errors: {data.get('errors', 0)}",
    ]


@_register_formatter(lambda d: "log_event_count" in d)
def _format_status(data: dict) -> list[str]:
    lines = [
        f"Database: {data.get('db_path', 'unknown')}",
        f"Size: {data.get('db_size_bytes', 0) / 1024:.1f} KB",
        f"Status events: {data['log_event_count']} across {data.get('key_count', 0)} tables",
        f"Executions: {data.get('execution_count', 0)}",
    ]
    if data.get("earliest_event"):
        lines.append(f"Date range: {data['earliest_event'][:10]} to {data['latest_event'][:10]}")
    if data.get("last_ingestion"):
        lines.append(f"Last ingestion: {data['last_ingestion'][:19]}")
    return lines


def format_output(data: dict, json_output: bool = False) -> str:
    """Format output as JSON or human-readable."""
    if json_output:
        return json.dumps(data, indent=2, default=str)

    for predicate, formatter in _FORMATTERS:
        if predicate(data):
            return "\n".join(formatter(data))

    # Fallback to JSON if no formatter matches
    return json.dumps(data, indent=2, default=str)


def cmd_status(args):
    """Show database status."""
    storage = SQLiteStorage()
    print(format_output(get_status(storage), args.json))


def cmd_ingest(args):
    """Ingest JSONL exports."""
    storage = SQLiteStorage()
    exports_dir = Path(args.dir).expanduser() if args.dir else DEFAULT_EXPORTS_DIR
    result = ingest_exports(storage, exports_dir=exports_dir, force=args.force)
    print(format_output(result, args.json))


def cmd_history(args):
    """Show reconstructed sync sessions for a table."""
    storage = SQLiteStorage()
    result = query_execution_history(
        storage,
        schema_name=args.schema,
        table_name=args.table,
        db_engine=args.engine,
        limit=args.limit,
    )
    print(format_output(result, args.json))


def cmd_timeline(args):
    """Show reconciled executions for an entity."""
    storage = SQLiteStorage()
    result = query_execution_timeline(
        storage,
        process_name=args.process_name,
        process_type=args.type,
        limit=args.limit,
    )
    print(format_output(result, args.json))


def main():
    """CLI entry point."""
    epilog = """
Examples:
  sync-history-cli status                                  # Database stats
  sync-history-cli ingest --dir ./exports                  # Load JSONL exports
  sync-history-cli history public orders PostgreSQL        # Sync sessions for a table
  sync-history-cli timeline customers.csv --type CSV_SYNC  # Execution chart

All commands support --json for machine-readable output.
Data location: ~/.local/share/sync-history/data.db (override with SYNC_HISTORY_DB)
"""
    parser = argparse.ArgumentParser(
        description="Sync History CLI - Inspect reconstructed table sync runs",
        prog="sync-history-cli",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # status
    sub = subparsers.add_parser("status", help="Show database status")
    sub.set_defaults(func=cmd_status)

    # ingest
    sub = subparsers.add_parser("ingest", help="Ingest JSONL exports")
    sub.add_argument("--dir", help=f"Exports directory (default: {DEFAULT_EXPORTS_DIR})")
    sub.add_argument("--force", action="store_true", help="Force re-ingestion")
    sub.set_defaults(func=cmd_ingest)

    # history
    sub = subparsers.add_parser("history", help="Show sync sessions for a table")
    sub.add_argument("schema", help="Schema name")
    sub.add_argument("table", help="Table name")
    sub.add_argument("engine", help="Source database engine")
    sub.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_HISTORY_LIMIT,
        help=f"Max sessions (default: {DEFAULT_HISTORY_LIMIT})",
    )
    sub.set_defaults(func=cmd_history)

    # timeline
    sub = subparsers.add_parser("timeline", help="Show reconciled executions for an entity")
    sub.add_argument("process_name", help="Entity name (CSV source, API, table)")
    sub.add_argument("--type", help="Process type filter (e.g. API_SYNC)")
    sub.add_argument("--limit", type=int, help="Executions to chart (default: 20)")
    sub.set_defaults(func=cmd_timeline)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
