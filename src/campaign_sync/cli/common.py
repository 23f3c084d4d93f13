"""
Arguments and helpers shared by the command-line tools.
"""

import argparse
from datetime import datetime

from campaign_sync.config import Settings, load_settings
from campaign_sync.warehouse.connection import DatabaseConnectionPool


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """--config plus --db-* overrides of the configured database settings."""
    parser.add_argument(
        "--config",
        help="Path to the YAML configuration (default: $CAMPAIGN_SYNC_CONFIG or config/sources.yaml)"
    )
    parser.add_argument("--db-host", help="Database host (overrides configuration)")
    parser.add_argument("--db-port", type=int, help="Database port (overrides configuration)")
    parser.add_argument("--db-name", help="Database name (overrides configuration)")
    parser.add_argument("--db-user", help="Database user (overrides configuration)")
    parser.add_argument("--db-password", help="Database password (overrides configuration)")


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Load settings and apply the --db-* overrides."""
    settings = load_settings(args.config)
    overrides = {
        "host": args.db_host,
        "port": args.db_port,
        "name": args.db_name,
        "user": args.db_user,
        "password": args.db_password,
    }
    for field_name, value in overrides.items():
        if value is not None:
            setattr(settings.database, field_name, value)
    return settings


def open_pool(settings: Settings) -> DatabaseConnectionPool:
    pool = DatabaseConnectionPool.from_settings(settings.database)
    pool.open()
    return pool


def format_timestamp(ts: datetime | str | None) -> str:
    """Format timestamp for display."""
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"
