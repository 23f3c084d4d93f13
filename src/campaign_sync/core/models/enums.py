"""
Closed enumerations shared across the pipeline.
"""

from enum import Enum


class SourceTag(str, Enum):
    """External systems the pipeline ingests from."""

    BULK_FILE = "bulk_file"
    MARKETING_API = "marketing_api"
    CALL_CENTER = "call_center"


class RecordStatus(str, Enum):
    """Normalized delivery status of a record."""

    SUCCESS = "success"
    FAILURE = "failure"
    OTHER = "other"


class SyncType(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class SyncOutcome(str, Enum):
    """Final outcome of a sync run."""

    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class SyncState(str, Enum):
    """Orchestrator state per source."""

    IDLE = "idle"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"


class UnitStatus(str, Enum):
    """Status of one unit (file or tenant) within a run."""

    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"
