"""
Dedup/merge engine.

Upserts normalized records into the canonical store. The merge engine is
the only writer of campaign_record rows and of campaign.record_count.

Per campaign batch, in one transaction:
1. the campaign is created if missing (unlinked unless the caller passes
   the tenant the records were fetched for)
2. duplicate identity keys inside the batch collapse to the last one
3. INSERT ... ON CONFLICT (campaign_id, recipient, event_at) DO UPDATE
   refreshes the mutable fields; identity never changes
4. record_count is recomputed with a COUNT(*) sub-query, never incremented

Concurrent merges of the same key are resolved by the uniqueness
constraint plus the conflict update and are never surfaced as errors.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable

import psycopg

from campaign_sync.core.correlation import DEFAULT_DELIMITER, correlate
from campaign_sync.core.models import Campaign, CanonicalRecord, SourceTag, Tenant
from campaign_sync.observability.logger import get_logger
from campaign_sync.observability.metrics import merge_duration_seconds, observe_histogram
from campaign_sync.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

_CAMPAIGN_COLUMNS = (
    "campaign_id, source, source_campaign_id, campaign_name, tenant_id, "
    "manually_linked, record_count, created_at, updated_at"
)

_UPSERT_RECORD_SQL = """
    INSERT INTO campaign_record (
        campaign_id, recipient, event_at, status, raw_status, status_reason,
        cost, compliance_fee, tts_fee, first_name, last_name, company, email,
        carrier, line_type, external_record_id, source_file
    ) VALUES (
        %(campaign_id)s, %(recipient)s, %(event_at)s, %(status)s, %(raw_status)s,
        %(status_reason)s, %(cost)s, %(compliance_fee)s, %(tts_fee)s,
        %(first_name)s, %(last_name)s, %(company)s, %(email)s, %(carrier)s,
        %(line_type)s, %(external_record_id)s, %(source_file)s
    )
    ON CONFLICT (campaign_id, recipient, event_at) DO UPDATE SET
        status = EXCLUDED.status,
        raw_status = EXCLUDED.raw_status,
        status_reason = EXCLUDED.status_reason,
        cost = EXCLUDED.cost,
        compliance_fee = EXCLUDED.compliance_fee,
        tts_fee = EXCLUDED.tts_fee,
        source_file = EXCLUDED.source_file,
        updated_at = NOW()
"""


@dataclass
class MergeResult:
    """
    Outcome of merging one campaign batch.

    Attributes:
        campaign_id: Campaign primary key
        created_campaign: Whether the campaign was created by this merge
        records_received: Records passed in
        records_upserted: Records written after in-batch dedup
        duplicates_collapsed: Records dropped as in-batch duplicates
        record_count: Campaign record count after the merge
    """

    campaign_id: int
    created_campaign: bool
    records_received: int
    records_upserted: int
    duplicates_collapsed: int
    record_count: int


def collapse_duplicates(records: Iterable[CanonicalRecord]) -> list[CanonicalRecord]:
    """
    Collapse records sharing an identity key; the last occurrence wins.

    Order of first appearance is preserved.
    """
    by_key: "OrderedDict[tuple, CanonicalRecord]" = OrderedDict()
    for record in records:
        by_key[record.identity_key] = record
    return list(by_key.values())


def group_by_campaign(records: Iterable[CanonicalRecord]) -> dict[tuple[str, str], list[CanonicalRecord]]:
    """Group records by (source, source campaign id), preserving order."""
    groups: dict[tuple[str, str], list[CanonicalRecord]] = {}
    for record in records:
        groups.setdefault((record.source.value, record.source_campaign_id), []).append(record)
    return groups


class RecordMerger:
    """
    Idempotent upsert of canonical records and campaign bookkeeping.
    """

    def __init__(self, pool: DatabaseConnectionPool, batch_size: int = 500):
        """
        Args:
            pool: Database connection pool
            batch_size: Records per executemany call
        """
        self.pool = pool
        self.batch_size = batch_size

    def merge_records(
        self, records: list[CanonicalRecord], tenant_id: int | None = None
    ) -> list[MergeResult]:
        """
        Merge records spanning any number of campaigns.

        Args:
            records: Normalized records
            tenant_id: Tenant the records were fetched for (API sources)

        Returns:
            One MergeResult per campaign
        """
        return [
            self.merge_batch(batch, tenant_id=tenant_id)
            for batch in group_by_campaign(records).values()
        ]

    def merge_batch(
        self, records: list[CanonicalRecord], tenant_id: int | None = None
    ) -> MergeResult:
        """
        Merge a batch of records belonging to one campaign.

        Args:
            records: Records sharing source and source campaign id
            tenant_id: Tenant to link a newly seen campaign to

        Returns:
            MergeResult

        Raises:
            ValueError: If the batch is empty or spans several campaigns
            psycopg.DatabaseError: If the transaction fails
        """
        if not records:
            raise ValueError("merge_batch requires at least one record")
        campaign_keys = {(r.source, r.source_campaign_id) for r in records}
        if len(campaign_keys) != 1:
            raise ValueError(f"merge_batch expects one campaign, got {len(campaign_keys)}")

        unique = collapse_duplicates(records)
        head = unique[-1]
        started = time.monotonic()

        try:
            with self.pool.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO campaign (source, source_campaign_id, campaign_name, tenant_id)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (source, source_campaign_id) DO UPDATE SET
                        campaign_name = EXCLUDED.campaign_name,
                        tenant_id = CASE
                            WHEN campaign.manually_linked THEN campaign.tenant_id
                            ELSE COALESCE(EXCLUDED.tenant_id, campaign.tenant_id)
                        END,
                        updated_at = NOW()
                    RETURNING campaign_id, (xmax = 0) AS created
                    """,
                    (head.source.value, head.source_campaign_id, head.campaign_name, tenant_id),
                )
                campaign_row = cur.fetchone()
                campaign_id = campaign_row["campaign_id"]

                for start in range(0, len(unique), self.batch_size):
                    chunk = unique[start:start + self.batch_size]
                    cur.executemany(
                        _UPSERT_RECORD_SQL,
                        [self._record_params(campaign_id, record) for record in chunk],
                    )

                cur.execute(
                    """
                    UPDATE campaign SET
                        record_count = (
                            SELECT COUNT(*) FROM campaign_record WHERE campaign_id = %(id)s
                        ),
                        updated_at = NOW()
                    WHERE campaign_id = %(id)s
                    RETURNING record_count
                    """,
                    {"id": campaign_id},
                )
                record_count = cur.fetchone()["record_count"]

        except psycopg.DatabaseError as e:
            logger.error(
                f"Failed to merge {len(unique)} records into campaign "
                f"{head.source.value}/{head.source_campaign_id}: {e}"
            )
            raise

        observe_histogram(merge_duration_seconds, time.monotonic() - started, source=head.source.value)

        result = MergeResult(
            campaign_id=campaign_id,
            created_campaign=bool(campaign_row["created"]),
            records_received=len(records),
            records_upserted=len(unique),
            duplicates_collapsed=len(records) - len(unique),
            record_count=record_count,
        )
        logger.debug(
            f"Merged campaign {head.source.value}/{head.source_campaign_id}: "
            f"{result.records_upserted} upserted, {result.duplicates_collapsed} collapsed, "
            f"count={result.record_count}"
        )
        return result

    @staticmethod
    def _record_params(campaign_id: int, record: CanonicalRecord) -> dict:
        return {
            "campaign_id": campaign_id,
            "recipient": record.recipient,
            "event_at": record.event_at,
            "status": record.status.value,
            "raw_status": record.raw_status,
            "status_reason": record.status_reason,
            "cost": record.cost,
            "compliance_fee": record.compliance_fee,
            "tts_fee": record.tts_fee,
            "first_name": record.first_name,
            "last_name": record.last_name,
            "company": record.company,
            "email": record.email,
            "carrier": record.carrier,
            "line_type": record.line_type,
            "external_record_id": record.external_record_id,
            "source_file": record.source_file,
        }

    # =======================
    # CAMPAIGN LINKING
    # =======================

    def list_campaigns(
        self,
        source: SourceTag | str | None = None,
        tenant_id: int | None = None,
        unlinked_only: bool = False,
    ) -> list[Campaign]:
        """List campaigns ordered by source and name."""
        query = f"SELECT {_CAMPAIGN_COLUMNS} FROM campaign WHERE 1=1"
        params: list = []
        if source is not None:
            query += " AND source = %s"
            params.append(SourceTag(source).value)
        if tenant_id is not None:
            query += " AND tenant_id = %s"
            params.append(tenant_id)
        if unlinked_only:
            query += " AND tenant_id IS NULL"
        query += " ORDER BY source, campaign_name, campaign_id"
        return [Campaign(**row) for row in self.pool.execute_query(query, tuple(params))]

    def relink_campaigns(
        self,
        source: SourceTag | str,
        tenants: list[Tenant],
        delimiter: str = DEFAULT_DELIMITER,
    ) -> int:
        """
        Re-evaluate name correlation for every campaign of a source.

        Manually linked campaigns are left alone. Campaigns whose name no
        longer matches any tenant are unlinked.

        Returns:
            Number of campaigns whose tenant changed
        """
        changes = []
        for campaign in self.list_campaigns(source):
            if campaign.manually_linked:
                continue
            tenant_id = correlate(campaign.campaign_name, tenants, delimiter)
            if tenant_id != campaign.tenant_id:
                changes.append((tenant_id, campaign.campaign_id))

        if changes:
            self.pool.execute_batch(
                """
                UPDATE campaign SET tenant_id = %s, updated_at = NOW()
                WHERE campaign_id = %s AND manually_linked = FALSE
                """,
                changes,
            )
        logger.info(f"Correlation for {SourceTag(source).value}: {len(changes)} campaign(s) relinked")
        return len(changes)

    def link_campaign(self, campaign_id: int, tenant_id: int) -> bool:
        """
        Manually link a campaign to a tenant; correlation will not override it.

        Returns:
            False if the campaign does not exist
        """
        updated = self.pool.execute_command(
            """
            UPDATE campaign SET tenant_id = %s, manually_linked = TRUE, updated_at = NOW()
            WHERE campaign_id = %s
            """,
            (tenant_id, campaign_id),
        )
        logger.info(f"Campaign {campaign_id} manually linked to tenant {tenant_id}")
        return updated == 1

    def unlink_campaign(self, campaign_id: int, pin: bool = True) -> bool:
        """
        Remove a campaign's tenant link.

        Args:
            campaign_id: Campaign to unlink
            pin: Keep it unlinked (correlation skips it); with pin=False the
                campaign returns to automatic correlation on the next run

        Returns:
            False if the campaign does not exist
        """
        updated = self.pool.execute_command(
            """
            UPDATE campaign SET tenant_id = NULL, manually_linked = %s, updated_at = NOW()
            WHERE campaign_id = %s
            """,
            (pin, campaign_id),
        )
        logger.info(f"Campaign {campaign_id} unlinked (pinned={pin})")
        return updated == 1

    # =======================
    # DATA RESET
    # =======================

    def reset_source(self, source: SourceTag | str) -> dict[str, int]:
        """
        Delete every record and campaign of a source.

        Fetch-window markers are owned by the tracker and reset separately.

        Returns:
            {"records": n, "campaigns": m}
        """
        tag = SourceTag(source).value
        with self.pool.transaction() as cur:
            cur.execute(
                """
                DELETE FROM campaign_record r USING campaign c
                WHERE r.campaign_id = c.campaign_id AND c.source = %s
                """,
                (tag,),
            )
            records = cur.rowcount
            cur.execute("DELETE FROM campaign WHERE source = %s", (tag,))
            campaigns = cur.rowcount

        logger.warning(f"Reset source {tag}: {records} records and {campaigns} campaigns deleted")
        return {"records": records, "campaigns": campaigns}
