"""
SyncRun model: one row per orchestration invocation.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .enums import SourceTag, SyncOutcome, SyncType

ERROR_MESSAGE_MAX_LENGTH = 500


class SyncRun(BaseModel):
    """
    Structured outcome of a sync run.

    Append-only: only the completion fields are set after creation.

    Attributes:
        run_id: Primary key (None before insert)
        source: Source that was synced
        sync_type: manual or scheduled
        triggered_by: Free-text identity of the caller
        status: None while running, then success / failed / partial
        files_processed: Files processed (bulk file source)
        campaigns_processed: Distinct campaigns touched
        records_processed: Records merged
        records_rejected: Records dropped by the normalizer
        error_count: Failed units plus rejected records
        error_message: Human-readable summary, truncated to 500 characters
    """

    run_id: int | None = None
    source: SourceTag
    sync_type: SyncType = SyncType.MANUAL
    triggered_by: str | None = None
    status: SyncOutcome | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    duration_seconds: float | None = None
    files_processed: int = 0
    campaigns_processed: int = 0
    records_processed: int = 0
    records_rejected: int = 0
    error_count: int = 0
    error_message: str | None = Field(default=None, max_length=ERROR_MESSAGE_MAX_LENGTH)

    class Config:
        json_schema_extra = {
            "example": {
                "run_id": 87,
                "source": "marketing_api",
                "sync_type": "scheduled",
                "triggered_by": "scheduler",
                "status": "partial",
                "records_processed": 12840,
                "error_count": 1,
                "error_message": "tenant 4 (Beta Dental): HTTP 502 from reporting API",
            }
        }
