"""
Read-only queries behind the rollup engine.

The store returns grouped counts at (tenant, campaign, status)
granularity plus paginated record rows. All rollup arithmetic happens in
the engine, so every drill-down level sums the same grouped rows.
"""

from decimal import Decimal
from typing import Any

from campaign_sync.core.models import (
    UNKNOWN_TENANT_ID,
    UNKNOWN_TENANT_NAME,
    DateRange,
    RecordStatus,
    SourceTag,
)
from campaign_sync.warehouse.connection import DatabaseConnectionPool

_RECORD_COLUMNS = """
    r.record_id, r.campaign_id, c.campaign_name, c.source, r.recipient, r.event_at,
    r.status, r.raw_status, r.status_reason, r.cost, r.compliance_fee, r.tts_fee,
    (r.cost + r.compliance_fee + r.tts_fee) AS total_cost,
    r.first_name, r.last_name, r.company, r.email, r.carrier, r.line_type, r.source_file
"""


class RollupQueryStore:
    """PostgreSQL implementation of the rollup read path."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    @staticmethod
    def _scope(
        date_range: DateRange | None,
        source: SourceTag | None,
        tenant_id: int | None = None,
        campaign_id: int | None = None,
        status: RecordStatus | None = None,
    ) -> tuple[str, dict[str, Any]]:
        clauses = ["1=1"]
        params: dict[str, Any] = {}

        if date_range is not None:
            lower, upper = date_range.bounds()
            clauses.append("r.event_at >= %(lower)s AND r.event_at < %(upper)s")
            params.update(lower=lower, upper=upper)
        if source is not None:
            clauses.append("c.source = %(source)s")
            params["source"] = SourceTag(source).value
        if tenant_id is not None:
            if tenant_id == UNKNOWN_TENANT_ID:
                clauses.append("c.tenant_id IS NULL")
            else:
                clauses.append("c.tenant_id = %(tenant_id)s")
                params["tenant_id"] = tenant_id
        if campaign_id is not None:
            clauses.append("c.campaign_id = %(campaign_id)s")
            params["campaign_id"] = campaign_id
        if status is not None:
            clauses.append("r.status = %(status)s")
            params["status"] = RecordStatus(status).value

        return " AND ".join(clauses), params

    def aggregate(
        self,
        date_range: DateRange | None = None,
        source: SourceTag | None = None,
        tenant_id: int | None = None,
        campaign_id: int | None = None,
    ) -> list[dict]:
        """
        Grouped counts per (tenant, campaign, status).

        Returns:
            Rows with tenant_id (None when unlinked), tenant_name,
            campaign_id, campaign_name, source, status, record_count, total_cost
        """
        where, params = self._scope(date_range, source, tenant_id, campaign_id)
        rows = self.pool.execute_query(
            f"""
            SELECT
                c.tenant_id,
                t.name AS tenant_name,
                c.campaign_id,
                c.campaign_name,
                c.source,
                r.status,
                COUNT(*) AS record_count,
                COALESCE(SUM(r.cost + r.compliance_fee + r.tts_fee), 0) AS total_cost
            FROM campaign_record r
            JOIN campaign c ON c.campaign_id = r.campaign_id
            LEFT JOIN tenant t ON t.tenant_id = c.tenant_id
            WHERE {where}
            GROUP BY c.tenant_id, t.name, c.campaign_id, c.campaign_name, c.source, r.status
            """,
            params,
        )
        for row in rows:
            row["total_cost"] = Decimal(row["total_cost"])
        return rows

    def count_records(
        self,
        campaign_id: int,
        date_range: DateRange | None = None,
        source: SourceTag | None = None,
        status: RecordStatus | None = None,
    ) -> int:
        where, params = self._scope(date_range, source, campaign_id=campaign_id, status=status)
        rows = self.pool.execute_query(
            f"""
            SELECT COUNT(*) AS total
            FROM campaign_record r JOIN campaign c ON c.campaign_id = r.campaign_id
            WHERE {where}
            """,
            params,
        )
        return int(rows[0]["total"])

    def list_records(
        self,
        campaign_id: int,
        date_range: DateRange | None = None,
        source: SourceTag | None = None,
        status: RecordStatus | None = None,
        sort: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        """Record rows of one campaign ordered by event time."""
        where, params = self._scope(date_range, source, campaign_id=campaign_id, status=status)
        direction = "ASC" if sort == "asc" else "DESC"
        params.update(limit=limit, offset=offset)
        return self.pool.execute_query(
            f"""
            SELECT {_RECORD_COLUMNS}
            FROM campaign_record r JOIN campaign c ON c.campaign_id = r.campaign_id
            WHERE {where}
            ORDER BY r.event_at {direction}, r.record_id {direction}
            LIMIT %(limit)s OFFSET %(offset)s
            """,
            params,
        )

    def get_campaign(self, campaign_id: int) -> dict | None:
        rows = self.pool.execute_query(
            "SELECT campaign_id, campaign_name, source, tenant_id FROM campaign WHERE campaign_id = %s",
            (campaign_id,),
        )
        return rows[0] if rows else None

    def tenant_name(self, tenant_id: int) -> str | None:
        """Display name of a tenant; 'Unknown' for the unlinked bucket."""
        if tenant_id == UNKNOWN_TENANT_ID:
            return UNKNOWN_TENANT_NAME
        rows = self.pool.execute_query(
            "SELECT name FROM tenant WHERE tenant_id = %s", (tenant_id,)
        )
        return rows[0]["name"] if rows else None
