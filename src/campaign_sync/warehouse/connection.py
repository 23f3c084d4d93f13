"""
PostgreSQL connection pool management using psycopg3

This module provides the connection pool shared by every store in the
warehouse package. Rows are returned as dictionaries.
"""
import os
import time
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg
from psycopg import OperationalError
from psycopg.rows import dict_row
from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool, PoolTimeout

from campaign_sync.observability.logger import get_logger

logger = get_logger(__name__)

Params = tuple | dict[str, Any] | None


class DatabaseConnectionPool:
    """
    PostgreSQL connection pool manager using psycopg3

    Provides pooled connections, explicit transactions and small helpers
    for one-shot queries and commands.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 2,
        max_size: int = 10,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize database connection pool

        Args:
            host: Database host (defaults to env var DB_HOST)
            port: Database port (defaults to env var DB_PORT)
            database: Database name (defaults to env var DB_NAME)
            user: Database user (defaults to env var DB_USER)
            password: Database password (defaults to env var DB_PASSWORD)
            min_size: Minimum pool size
            max_size: Maximum pool size
            timeout: Connection timeout in seconds

        Raises:
            ValueError: If no password is configured
        """
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "campaign_sync")
        self.user = user or os.getenv("DB_USER", "campaign_sync")
        self.password = password or os.getenv("DB_PASSWORD")

        if not self.password:
            raise ValueError(
                "Database password must be provided. "
                "Set DB_PASSWORD environment variable or pass to constructor."
            )

        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout

        self.conninfo = make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=self.password,
            connect_timeout=int(self.timeout),
        )

        self._pool: ConnectionPool | None = None

    @classmethod
    def from_settings(cls, settings) -> "DatabaseConnectionPool":
        """
        Build a pool from DatabaseSettings.

        Args:
            settings: campaign_sync.config.DatabaseSettings
        """
        return cls(**settings.pool_kwargs())

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the connection pool with retry logic.

        Args:
            max_retries: Maximum number of connection attempts
            retry_delay: Delay between retries in seconds

        Raises:
            OperationalError: If connection fails after all retries
        """
        if self._pool is not None:
            return

        self._pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )

        for attempt in range(1, max_retries + 1):
            try:
                self._pool.open(wait=True, timeout=self.timeout)
                logger.info(
                    f"Connection pool open: {self.host}:{self.port}/{self.database} "
                    f"(min={self.min_size}, max={self.max_size})"
                )
                return
            except (OperationalError, PoolTimeout) as e:
                if attempt < max_retries:
                    logger.warning(f"Database not reachable (attempt {attempt}/{max_retries}): {e}")
                    time.sleep(retry_delay)
                else:
                    self._pool.close()
                    self._pool = None
                    raise OperationalError(
                        f"Failed to connect to database after {max_retries} attempts: {e}"
                    ) from e

    def close(self) -> None:
        """Close the connection pool"""
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self) -> Iterator[psycopg.Connection]:
        """
        Get a connection from the pool

        Yields:
            psycopg.Connection: Database connection

        Raises:
            RuntimeError: If pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self) -> Iterator[psycopg.Cursor]:
        """
        Get a cursor from a pooled connection

        Yields:
            psycopg.Cursor: Database cursor
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                yield cur

    @contextmanager
    def transaction(self) -> Iterator[psycopg.Cursor]:
        """
        Run statements in a single transaction.

        Commits when the block exits normally and rolls back on exception.

        Yields:
            psycopg.Cursor bound to the transaction
        """
        with self.get_connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    yield cur

    def execute_query(self, query: str, params: Params = None) -> list[dict]:
        """
        Execute a SELECT query and return results

        Args:
            query: SQL SELECT query
            params: Query parameters (optional)

        Returns:
            List of dictionaries (one per row)
        """
        with self.get_cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def execute_command(self, command: str, params: Params = None) -> int:
        """
        Execute an INSERT/UPDATE/DELETE command

        Args:
            command: SQL command
            params: Command parameters (optional)

        Returns:
            Number of rows affected
        """
        with self.transaction() as cur:
            cur.execute(command, params)
            return cur.rowcount

    def execute_returning(self, command: str, params: Params = None) -> dict | None:
        """
        Execute a command with a RETURNING clause and commit

        Returns:
            The first returned row, or None
        """
        with self.transaction() as cur:
            cur.execute(command, params)
            return cur.fetchone()

    def execute_batch(self, command: str, params_list: list[Params]) -> None:
        """
        Execute a command in batch mode for multiple parameter sets

        Args:
            command: SQL command
            params_list: List of parameter tuples or dicts
        """
        if not params_list:
            return
        with self.transaction() as cur:
            cur.executemany(command, params_list)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
