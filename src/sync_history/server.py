"""MCP Sync History Server.

Provides tools for inspecting reconstructed sync sessions:
- get_status: Ingestion status + DB stats
- ingest_exports: Load JSONL exports of the status logs
- get_execution_history: Sync sessions for one catalog table
- get_execution_timeline: Reconciled executions for one entity, chart-ready
"""

import logging
import os
from pathlib import Path

from fastmcp import FastMCP

from sync_history import __version__
from sync_history import ingest as ingest_module
from sync_history import queries
from sync_history.storage import SQLiteStorage

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("sync-history")
if os.environ.get("DEV_MODE"):
    logger.setLevel(logging.DEBUG)

# Initialize MCP server
mcp = FastMCP("sync-history")

# Initialize storage
storage = SQLiteStorage()


@mcp.tool()
def get_status() -> dict:
    """Get ingestion status and database stats.

    Returns:
        Status info including last ingestion time, row counts, and DB size
    """
    return {
        "status": "ok",
        "version": __version__,
        **queries.get_status(storage),
    }


@mcp.tool()
def ingest_exports(exports_dir: str | None = None, force: bool = False) -> dict:
    """Load JSONL exports of processing_log and process_log rows.

    Args:
        exports_dir: Directory containing the exports (default: ~/.local/share/sync-history/exports)
        force: Re-read files even if they haven't changed

    Returns:
        Ingestion stats (files processed, rows added, errors)
    """
    directory = Path(exports_dir).expanduser() if exports_dir else ingest_module.DEFAULT_EXPORTS_DIR
    result = ingest_module.ingest_exports(storage, exports_dir=directory, force=force)
    return {"status": "ok", **result}


@mcp.tool()
def get_execution_history(
    schema_name: str,
    table_name: str,
    db_engine: str,
    limit: int = queries.DEFAULT_HISTORY_LIMIT,
) -> dict:
    """Get reconstructed sync sessions for a catalog table.

    Args:
        schema_name: Schema of the synced table
        table_name: Name of the synced table
        db_engine: Source engine (e.g. PostgreSQL, MariaDB, MSSQL)
        limit: Maximum sessions to return (1-100, default: 50)

    Returns:
        Sessions most recent first, each with start/end, status flow and rows processed
    """
    return queries.query_execution_history(storage, schema_name, table_name, db_engine, limit)


@mcp.tool()
def get_execution_timeline(
    process_name: str,
    process_type: str | None = None,
    limit: int | None = None,
) -> dict:
    """Get an entity's executions with IN_PROGRESS and terminal rows merged.

    Args:
        process_name: Entity whose executions to show (CSV source, API name, table)
        process_type: Optional process type filter (e.g. "API_SYNC")
        limit: Number of executions to chart (default: 20)

    Returns:
        Executions oldest first with bar heights relative to the longest run
    """
    return queries.query_execution_timeline(
        storage, process_name, process_type=process_type, limit=limit
    )


def create_app():
    """Create the ASGI app for uvicorn."""
    # stateless_http=True allows resilience to server restarts
    return mcp.http_app(stateless_http=True)


def main():
    """Run the MCP server."""
    import uvicorn

    port = int(os.environ.get("PORT", 8082))
    host = os.environ.get("HOST", "127.0.0.1")

    logger.info(f"Starting Sync History on {host}:{port}")
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
