"""
Sync run log.

One row per orchestration invocation. Rows are append-only: a run is
inserted when it starts and its completion fields are set exactly once.
"""

import psycopg

from campaign_sync.core.models import ERROR_MESSAGE_MAX_LENGTH, SourceTag, SyncRun
from campaign_sync.observability.logger import get_logger
from campaign_sync.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

_COLUMNS = (
    "run_id, source, sync_type, triggered_by, status, started_at, completed_at, "
    "duration_seconds, files_processed, campaigns_processed, records_processed, "
    "records_rejected, error_count, error_message"
)


def truncate_message(message: str | None, limit: int = ERROR_MESSAGE_MAX_LENGTH) -> str | None:
    """Clip an error summary to the column limit."""
    if not message:
        return None
    return message if len(message) <= limit else message[: limit - 3] + "..."


class SyncLogStore:
    """Writes and reads sync_run rows."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def start_run(self, run: SyncRun) -> SyncRun:
        """
        Insert a new, running sync run.

        Args:
            run: SyncRun without run_id

        Returns:
            The run with run_id and started_at as stored

        Raises:
            psycopg.DatabaseError: If the insert fails
        """
        try:
            row = self.pool.execute_returning(
                """
                INSERT INTO sync_run (source, sync_type, triggered_by, started_at)
                VALUES (%s, %s, %s, %s)
                RETURNING run_id, started_at
                """,
                (run.source.value, run.sync_type.value, run.triggered_by, run.started_at),
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to open sync run for {run.source.value}: {e}")
            raise

        logger.debug(f"Opened sync run {row['run_id']} for {run.source.value}")
        return run.model_copy(update={"run_id": row["run_id"], "started_at": row["started_at"]})

    def complete_run(self, run: SyncRun) -> bool:
        """
        Set the completion fields of a run.

        Completion is written once; a second call for the same run is a no-op.

        Returns:
            True if the row was updated

        Raises:
            ValueError: If the run has no id or no outcome
            psycopg.DatabaseError: If the update fails
        """
        if run.run_id is None or run.status is None:
            raise ValueError("complete_run requires a stored run with an outcome")

        try:
            updated = self.pool.execute_command(
                """
                UPDATE sync_run SET
                    status = %(status)s,
                    completed_at = %(completed_at)s,
                    duration_seconds = %(duration_seconds)s,
                    files_processed = %(files_processed)s,
                    campaigns_processed = %(campaigns_processed)s,
                    records_processed = %(records_processed)s,
                    records_rejected = %(records_rejected)s,
                    error_count = %(error_count)s,
                    error_message = %(error_message)s
                WHERE run_id = %(run_id)s AND completed_at IS NULL
                """,
                {
                    "run_id": run.run_id,
                    "status": run.status.value,
                    "completed_at": run.completed_at,
                    "duration_seconds": run.duration_seconds,
                    "files_processed": run.files_processed,
                    "campaigns_processed": run.campaigns_processed,
                    "records_processed": run.records_processed,
                    "records_rejected": run.records_rejected,
                    "error_count": run.error_count,
                    "error_message": truncate_message(run.error_message),
                },
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to complete sync run {run.run_id}: {e}")
            raise

        if updated == 0:
            logger.warning(f"Sync run {run.run_id} was already completed; ignoring")
        return updated == 1

    def recent_runs(self, limit: int = 20, source: SourceTag | str | None = None) -> list[SyncRun]:
        """
        Most recent runs first.

        Args:
            limit: Maximum number of runs
            source: Restrict to one source
        """
        query = f"SELECT {_COLUMNS} FROM sync_run"
        params: list = []
        if source is not None:
            query += " WHERE source = %s"
            params.append(SourceTag(source).value)
        query += " ORDER BY started_at DESC, run_id DESC LIMIT %s"
        params.append(limit)

        return [SyncRun(**row) for row in self.pool.execute_query(query, tuple(params))]

    def latest_run(self, source: SourceTag | str) -> SyncRun | None:
        runs = self.recent_runs(limit=1, source=source)
        return runs[0] if runs else None
