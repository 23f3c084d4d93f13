"""
Fetch-window tracker.

Persists which source files and which (tenant, calendar month) windows
have already been retrieved, so re-runs skip them. This module is the
only writer of the fetch_window table.

File windows are one-time marks: a second mark for the same file name is
rejected idempotently (returns False) by the uniqueness constraint.
Month windows record the literal from/to bounds actually queried; a
repeated mark for the same month widens the stored bounds. The tracker
does not compute gaps, it only records and reports marks.
"""

from datetime import datetime

import psycopg

from campaign_sync.core.models import FetchWindow, SourceTag
from campaign_sync.observability.logger import get_logger
from campaign_sync.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

_COLUMNS = (
    "window_id, source, tenant_id, window_key, window_kind, "
    "window_from, window_to, record_count, fetched_at"
)


class FetchWindowTracker:
    """Reads and writes fetch-window markers."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def is_fetched(self, source: SourceTag | str, tenant_id: int | None, window_key: str) -> bool:
        """Whether a window has been marked."""
        return self.get_window(source, tenant_id, window_key) is not None

    def get_window(
        self, source: SourceTag | str, tenant_id: int | None, window_key: str
    ) -> FetchWindow | None:
        rows = self.pool.execute_query(
            f"""
            SELECT {_COLUMNS} FROM fetch_window
            WHERE source = %s AND COALESCE(tenant_id, 0) = COALESCE(%s, 0) AND window_key = %s
            """,
            (SourceTag(source).value, tenant_id, window_key),
        )
        return FetchWindow(**rows[0]) if rows else None

    def mark_fetched(
        self,
        source: SourceTag | str,
        tenant_id: int | None,
        window_key: str,
        kind: str,
        window_from: datetime | None = None,
        window_to: datetime | None = None,
        record_count: int = 0,
    ) -> bool:
        """
        Mark a window as fetched.

        Args:
            source: Source tag
            tenant_id: Tenant (None for file windows)
            window_key: File name or YYYY-MM
            kind: "file" or "month"
            window_from: Literal lower bound queried (month windows)
            window_to: Literal upper bound queried (month windows)
            record_count: Raw records retrieved

        Returns:
            True when a new marker was created, False when one already existed

        Raises:
            psycopg.DatabaseError: If the write fails
        """
        window = FetchWindow(
            source=SourceTag(source),
            tenant_id=tenant_id,
            window_key=window_key,
            window_kind=kind,
            window_from=window_from,
            window_to=window_to,
            record_count=record_count,
        )

        if window.window_kind == "file":
            conflict_action = "DO NOTHING"
        else:
            conflict_action = """DO UPDATE SET
                window_from = LEAST(fetch_window.window_from, EXCLUDED.window_from),
                window_to = GREATEST(fetch_window.window_to, EXCLUDED.window_to),
                record_count = fetch_window.record_count + EXCLUDED.record_count,
                fetched_at = NOW()"""

        command = f"""
            INSERT INTO fetch_window (
                source, tenant_id, window_key, window_kind,
                window_from, window_to, record_count
            ) VALUES (
                %(source)s, %(tenant_id)s, %(window_key)s, %(window_kind)s,
                %(window_from)s, %(window_to)s, %(record_count)s
            )
            ON CONFLICT (source, (COALESCE(tenant_id, 0)), window_key) {conflict_action}
            RETURNING (xmax = 0) AS inserted
        """

        try:
            row = self.pool.execute_returning(
                command,
                {
                    "source": window.source.value,
                    "tenant_id": window.tenant_id,
                    "window_key": window.window_key,
                    "window_kind": window.window_kind,
                    "window_from": window.window_from,
                    "window_to": window.window_to,
                    "record_count": window.record_count,
                },
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to mark window {window.source.value}/{tenant_id}/{window_key}: {e}")
            raise

        inserted = bool(row and row["inserted"])
        if not inserted and window.window_kind == "file":
            logger.info(f"File already marked as imported, ignoring: {window_key}")
        return inserted

    def list_windows(
        self,
        source: SourceTag | str | None = None,
        tenant_id: int | None = None,
        kind: str | None = None,
    ) -> list[FetchWindow]:
        """List markers, newest window keys first."""
        query = f"SELECT {_COLUMNS} FROM fetch_window WHERE 1=1"
        params: list = []

        if source is not None:
            query += " AND source = %s"
            params.append(SourceTag(source).value)
        if tenant_id is not None:
            query += " AND tenant_id = %s"
            params.append(tenant_id)
        if kind is not None:
            query += " AND window_kind = %s"
            params.append(kind)

        query += " ORDER BY source, tenant_id NULLS FIRST, window_key DESC"
        return [FetchWindow(**row) for row in self.pool.execute_query(query, tuple(params))]

    def month_marks(self, source: SourceTag | str, tenant_id: int) -> dict[str, FetchWindow]:
        """Month markers of one tenant keyed by YYYY-MM."""
        return {
            window.window_key: window
            for window in self.list_windows(source, tenant_id=tenant_id, kind="month")
        }

    def imported_filenames(self, source: SourceTag | str) -> set[str]:
        """File names already imported for a file-based source."""
        rows = self.pool.execute_query(
            "SELECT window_key FROM fetch_window WHERE source = %s AND window_kind = 'file'",
            (SourceTag(source).value,),
        )
        return {row["window_key"] for row in rows}

    def reset_window(
        self, source: SourceTag | str, tenant_id: int | None, window_key: str
    ) -> int:
        """Remove one marker so the window is fetched again. Returns rows deleted."""
        deleted = self.pool.execute_command(
            """
            DELETE FROM fetch_window
            WHERE source = %s AND COALESCE(tenant_id, 0) = COALESCE(%s, 0) AND window_key = %s
            """,
            (SourceTag(source).value, tenant_id, window_key),
        )
        logger.info(f"Reset fetch window {SourceTag(source).value}/{tenant_id}/{window_key}: {deleted} removed")
        return deleted

    def reset_source(self, source: SourceTag | str) -> int:
        """Remove every marker of a source. Returns rows deleted."""
        deleted = self.pool.execute_command(
            "DELETE FROM fetch_window WHERE source = %s", (SourceTag(source).value,)
        )
        logger.info(f"Reset all fetch windows of {SourceTag(source).value}: {deleted} removed")
        return deleted
