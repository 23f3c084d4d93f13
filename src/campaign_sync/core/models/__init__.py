"""
Core data models for the campaign sync pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .campaign import Campaign
from .canonical_record import CanonicalRecord
from .enums import RecordStatus, SourceTag, SyncOutcome, SyncState, SyncType, UnitStatus
from .fetch_window import FetchWindow
from .rollup import (
    UNKNOWN_TENANT_ID,
    UNKNOWN_TENANT_NAME,
    CampaignRollup,
    DateRange,
    Pagination,
    RecordRow,
    RollupFilter,
    RollupMetrics,
    RollupResponse,
    StatusCounts,
    TenantRollup,
)
from .sync_run import ERROR_MESSAGE_MAX_LENGTH, SyncRun
from .tenant import Tenant

__all__ = [
    "SourceTag",
    "RecordStatus",
    "SyncType",
    "SyncOutcome",
    "SyncState",
    "UnitStatus",
    "Tenant",
    "Campaign",
    "CanonicalRecord",
    "FetchWindow",
    "SyncRun",
    "ERROR_MESSAGE_MAX_LENGTH",
    "DateRange",
    "RollupFilter",
    "StatusCounts",
    "RollupMetrics",
    "TenantRollup",
    "CampaignRollup",
    "RecordRow",
    "Pagination",
    "RollupResponse",
    "UNKNOWN_TENANT_ID",
    "UNKNOWN_TENANT_NAME",
]
