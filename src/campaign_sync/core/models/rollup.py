"""
Rollup query filter and response models.

The filter is validated once at the query boundary; the engine and the
store accept only a validated RollupFilter.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .enums import RecordStatus, SourceTag

UNKNOWN_TENANT_ID = 0
UNKNOWN_TENANT_NAME = "Unknown"
MAX_PAGE_SIZE = 500


class DateRange(BaseModel):
    """
    Inclusive calendar-day range applied to record event timestamps (UTC).
    """

    start: date
    end: date

    @field_validator("end")
    @classmethod
    def check_order(cls, v, info):
        """Validate that end is not before start."""
        start = info.data.get("start")
        if start is not None and v < start:
            raise ValueError(f"end ({v}) must not be before start ({start})")
        return v

    def bounds(self) -> tuple[datetime, datetime]:
        """
        Half-open UTC bounds covering both end days.

        Returns:
            (start of start day, start of the day after end)
        """
        lower = datetime.combine(self.start, time.min, tzinfo=timezone.utc)
        upper = datetime.combine(self.end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        return lower, upper

    def contains(self, moment: datetime) -> bool:
        lower, upper = self.bounds()
        return lower <= moment < upper


class RollupFilter(BaseModel):
    """
    Filter for a rollup query.

    The level is implied: no tenant -> tenant level, tenant only ->
    campaign level, tenant and campaign -> record level. The status filter
    applies to the record list only, never to the metrics cards.

    Attributes:
        date_range: Optional inclusive date range on event timestamps
        status: Optional status filter for the record list
        tenant_id: Tenant to drill into (0 = unlinked campaigns)
        campaign_id: Campaign to list records for (requires tenant_id)
        source: Restrict to one source
        page: 1-based page number
        page_size: Rows per page (1-500)
        sort: Event timestamp ordering of the record list
    """

    date_range: DateRange | None = None
    status: RecordStatus | None = None
    tenant_id: int | None = Field(default=None, ge=0)
    campaign_id: int | None = Field(default=None, ge=1)
    source: SourceTag | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)
    sort: Literal["desc", "asc"] = "desc"

    @field_validator("campaign_id")
    @classmethod
    def campaign_requires_tenant(cls, v, info):
        """Validate that a campaign drill-down names its tenant."""
        if v is not None and info.data.get("tenant_id") is None:
            raise ValueError("campaign_id requires tenant_id")
        return v

    @property
    def level(self) -> Literal["tenant", "campaign", "record"]:
        if self.tenant_id is None:
            return "tenant"
        if self.campaign_id is None:
            return "campaign"
        return "record"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class StatusCounts(BaseModel):
    """Counts shared by metrics cards and aggregate rows."""

    total_records: int = 0
    success_count: int = 0
    failure_count: int = 0
    other_count: int = 0
    total_cost: Decimal = Decimal("0")

    def add(self, status: RecordStatus, count: int, cost: Decimal) -> None:
        self.total_records += count
        self.total_cost += cost
        if status == RecordStatus.SUCCESS:
            self.success_count += count
        elif status == RecordStatus.FAILURE:
            self.failure_count += count
        else:
            self.other_count += count


class RollupMetrics(StatusCounts):
    """Metrics cards for the current drill-down scope (pre status filter)."""

    campaign_count: int = 0
    success_rate: float = 0.0


class TenantRollup(StatusCounts):
    tenant_id: int
    tenant_name: str
    campaign_count: int = 0


class CampaignRollup(StatusCounts):
    """Campaigns sharing a name within one tenant, aggregated."""

    tenant_id: int
    campaign_name: str
    campaign_ids: list[int] = Field(default_factory=list)
    sources: list[SourceTag] = Field(default_factory=list)


class RecordRow(BaseModel):
    record_id: int
    campaign_id: int
    campaign_name: str
    source: SourceTag
    recipient: str
    event_at: datetime
    status: RecordStatus
    raw_status: str | None = None
    status_reason: str | None = None
    cost: Decimal = Decimal("0")
    compliance_fee: Decimal = Decimal("0")
    tts_fee: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    email: str | None = None
    carrier: str | None = None
    line_type: str | None = None
    source_file: str | None = None


class Pagination(BaseModel):
    page: int
    page_size: int
    total_pages: int
    total_records: int


class RollupResponse(BaseModel):
    """
    Result of a rollup query.

    Exactly one of tenants / campaigns / records is populated, matching level.
    """

    level: Literal["tenant", "campaign", "record"]
    tenant_id: int | None = None
    tenant_name: str | None = None
    campaign_id: int | None = None
    metrics: RollupMetrics
    tenants: list[TenantRollup] | None = None
    campaigns: list[CampaignRollup] | None = None
    records: list[RecordRow] | None = None
    pagination: Pagination
