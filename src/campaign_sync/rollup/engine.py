"""
Hierarchical rollup engine.

Answers the three drill-down queries of the dashboard:

1. tenant level: per-tenant totals (unlinked campaigns bucket into "Unknown")
2. campaign level: per-campaign-name totals within one tenant
3. record level: paginated records of one campaign

The date range applies before aggregation at every level. The status
filter only narrows the record list: the metrics cards are always
computed from the date-filtered scope before the status filter, so
drilling down never changes the counts shown above the list.

Every level is derived from the same grouped (tenant, campaign, status)
rows, so a tenant's campaign-level rows always sum to its tenant row.
"""

import math
from decimal import Decimal
from typing import Protocol

from campaign_sync.core.errors import NotFoundError
from campaign_sync.core.models import (
    UNKNOWN_TENANT_ID,
    UNKNOWN_TENANT_NAME,
    CampaignRollup,
    DateRange,
    Pagination,
    RecordRow,
    RecordStatus,
    RollupFilter,
    RollupMetrics,
    RollupResponse,
    SourceTag,
    TenantRollup,
)
from campaign_sync.observability.logger import get_logger
from campaign_sync.observability.metrics import rollup_query_duration_seconds, track_duration

logger = get_logger(__name__)


class RollupStore(Protocol):
    """Read path the engine needs; see warehouse.rollup_queries."""

    def aggregate(
        self,
        date_range: DateRange | None = None,
        source: SourceTag | None = None,
        tenant_id: int | None = None,
        campaign_id: int | None = None,
    ) -> list[dict]: ...

    def count_records(self, campaign_id: int, date_range=None, source=None, status=None) -> int: ...

    def list_records(
        self, campaign_id: int, date_range=None, source=None, status=None,
        sort: str = "desc", limit: int = 50, offset: int = 0,
    ) -> list[dict]: ...

    def get_campaign(self, campaign_id: int) -> dict | None: ...

    def tenant_name(self, tenant_id: int) -> str | None: ...


def paginate(total: int, page: int, page_size: int) -> Pagination:
    return Pagination(
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
        total_records=total,
    )


def build_metrics(rows: list[dict]) -> RollupMetrics:
    """Metrics cards from grouped rows (no status filter applied)."""
    metrics = RollupMetrics()
    campaigns = set()
    for row in rows:
        metrics.add(RecordStatus(row["status"]), int(row["record_count"]), Decimal(row["total_cost"]))
        campaigns.add(row["campaign_id"])
    metrics.campaign_count = len(campaigns)
    if metrics.total_records:
        metrics.success_rate = round(metrics.success_count * 100.0 / metrics.total_records, 2)
    return metrics


def rollup_tenants(rows: list[dict]) -> list[TenantRollup]:
    """
    Group rows by tenant. Unlinked campaigns go to tenant 0, "Unknown".

    Tenants are ordered by name with the Unknown bucket last.
    """
    tenants: dict[int, TenantRollup] = {}
    campaigns: dict[int, set] = {}

    for row in rows:
        tenant_id = row["tenant_id"] if row["tenant_id"] is not None else UNKNOWN_TENANT_ID
        if tenant_id not in tenants:
            name = row.get("tenant_name") if tenant_id != UNKNOWN_TENANT_ID else None
            tenants[tenant_id] = TenantRollup(
                tenant_id=tenant_id, tenant_name=name or UNKNOWN_TENANT_NAME
            )
            campaigns[tenant_id] = set()
        tenants[tenant_id].add(
            RecordStatus(row["status"]), int(row["record_count"]), Decimal(row["total_cost"])
        )
        campaigns[tenant_id].add(row["campaign_id"])

    for tenant_id, rollup in tenants.items():
        rollup.campaign_count = len(campaigns[tenant_id])

    return sorted(
        tenants.values(),
        key=lambda t: (t.tenant_id == UNKNOWN_TENANT_ID, t.tenant_name.casefold(), t.tenant_id),
    )


def rollup_campaigns(rows: list[dict], tenant_id: int) -> list[CampaignRollup]:
    """Group one tenant's rows by trimmed campaign name, ordered by name."""
    groups: dict[str, CampaignRollup] = {}

    for row in rows:
        name = (row["campaign_name"] or "").strip()
        key = name.casefold()
        if key not in groups:
            groups[key] = CampaignRollup(tenant_id=tenant_id, campaign_name=name)
        group = groups[key]
        group.add(RecordStatus(row["status"]), int(row["record_count"]), Decimal(row["total_cost"]))
        if row["campaign_id"] not in group.campaign_ids:
            group.campaign_ids.append(row["campaign_id"])
        source = SourceTag(row["source"])
        if source not in group.sources:
            group.sources.append(source)

    for group in groups.values():
        group.campaign_ids.sort()

    return [groups[key] for key in sorted(groups)]


class RollupEngine:
    """
    Read-only rollup queries over the canonical store.
    """

    def __init__(self, store: RollupStore):
        self.store = store

    def query(self, rollup_filter: RollupFilter) -> RollupResponse:
        """
        Run the query matching the filter's drill-down level.

        Args:
            rollup_filter: Validated filter

        Returns:
            RollupResponse

        Raises:
            NotFoundError: If the campaign does not belong to the tenant
        """
        level = rollup_filter.level
        with track_duration(rollup_query_duration_seconds, level=level):
            if level == "tenant":
                return self._tenant_level(rollup_filter)
            if level == "campaign":
                return self._campaign_level(rollup_filter)
            return self._record_level(rollup_filter)

    def _tenant_level(self, f: RollupFilter) -> RollupResponse:
        rows = self.store.aggregate(date_range=f.date_range, source=f.source)
        tenants = rollup_tenants(rows)
        return RollupResponse(
            level="tenant",
            metrics=build_metrics(rows),
            tenants=tenants[f.offset:f.offset + f.page_size],
            pagination=paginate(len(tenants), f.page, f.page_size),
        )

    def _campaign_level(self, f: RollupFilter) -> RollupResponse:
        tenant_name = self.store.tenant_name(f.tenant_id)
        if tenant_name is None:
            raise NotFoundError(f"Tenant {f.tenant_id} does not exist")

        rows = self.store.aggregate(date_range=f.date_range, source=f.source, tenant_id=f.tenant_id)
        campaigns = rollup_campaigns(rows, f.tenant_id)
        return RollupResponse(
            level="campaign",
            tenant_id=f.tenant_id,
            tenant_name=tenant_name,
            metrics=build_metrics(rows),
            campaigns=campaigns[f.offset:f.offset + f.page_size],
            pagination=paginate(len(campaigns), f.page, f.page_size),
        )

    def _record_level(self, f: RollupFilter) -> RollupResponse:
        campaign = self.store.get_campaign(f.campaign_id)
        owner = None
        if campaign is not None:
            owner = campaign["tenant_id"] if campaign["tenant_id"] is not None else UNKNOWN_TENANT_ID
        if campaign is None or owner != f.tenant_id:
            raise NotFoundError(f"Campaign {f.campaign_id} not found for tenant {f.tenant_id}")

        metrics_rows = self.store.aggregate(
            date_range=f.date_range, source=f.source, tenant_id=f.tenant_id, campaign_id=f.campaign_id
        )
        total = self.store.count_records(
            f.campaign_id, date_range=f.date_range, source=f.source, status=f.status
        )
        rows = self.store.list_records(
            f.campaign_id,
            date_range=f.date_range,
            source=f.source,
            status=f.status,
            sort=f.sort,
            limit=f.page_size,
            offset=f.offset,
        )

        return RollupResponse(
            level="record",
            tenant_id=f.tenant_id,
            tenant_name=self.store.tenant_name(f.tenant_id),
            campaign_id=f.campaign_id,
            metrics=build_metrics(metrics_rows),
            records=[RecordRow(**row) for row in rows],
            pagination=paginate(total, f.page, f.page_size),
        )
