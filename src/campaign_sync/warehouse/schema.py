"""
Schema management for the canonical store.

The DDL lives in docker/init-db.sql (also mounted into the development
database container); every statement is idempotent, so applying it to an
existing database is safe.
"""

from pathlib import Path

from campaign_sync.observability.logger import get_logger, log_operation

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

DEFAULT_SCHEMA_FILE = "docker/init-db.sql"
TABLES = ("tenant", "campaign", "campaign_record", "fetch_window", "sync_run")


def apply_schema(pool: DatabaseConnectionPool, schema_file: str | Path = DEFAULT_SCHEMA_FILE) -> None:
    """
    Run the DDL file in one transaction.

    Raises:
        FileNotFoundError: If the schema file does not exist
        psycopg.DatabaseError: If a statement fails
    """
    path = Path(schema_file)
    ddl = path.read_text(encoding="utf-8")

    with log_operation("Applying schema", logger=logger, schema_file=str(path)):
        # No parameters: psycopg sends the script as one multi-statement query
        pool.execute_command(ddl)


def table_counts(pool: DatabaseConnectionPool) -> dict[str, int]:
    """Row count of every pipeline table."""
    counts = {}
    for table in TABLES:
        rows = pool.execute_query(f"SELECT COUNT(*) AS n FROM {table}")
        counts[table] = int(rows[0]["n"])
    return counts
