"""
Integration tests for the rollup engine over PostgreSQL.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from campaign_sync.core.errors import NotFoundError
from campaign_sync.core.models import CanonicalRecord, RecordStatus, SourceTag
from campaign_sync.rollup.engine import RollupEngine
from campaign_sync.utils.validation import build_rollup_filter
from campaign_sync.warehouse.merge import RecordMerger
from campaign_sync.warehouse.rollup_queries import RollupQueryStore
from campaign_sync.warehouse.tenants import TenantStore


def record(source, campaign, name, recipient, day, status, cost="0"):
    return CanonicalRecord(
        source=source,
        source_campaign_id=campaign,
        campaign_name=name,
        recipient=recipient,
        event_at=datetime(2024, 3, day, 9, 0, tzinfo=timezone.utc),
        status=status,
        cost=Decimal(cost),
        compliance_fee=Decimal("0.002") if source == SourceTag.BULK_FILE else Decimal("0"),
    )


@pytest.fixture
def seeded(db_pool):
    """
    Acme owns a bulk-file and a call-center campaign with the same name,
    Beta owns one API campaign, and one bulk-file campaign is unlinked.
    """
    tenants = TenantStore(db_pool)
    acme = tenants.add_tenant("Acme Roofing")
    beta = tenants.add_tenant("Beta Dental")
    merger = RecordMerger(db_pool)

    storm = merger.merge_batch([
        record(SourceTag.BULK_FILE, "b1", "Acme Roofing - Storm", "5550001", 1, RecordStatus.SUCCESS, "0.01"),
        record(SourceTag.BULK_FILE, "b1", "Acme Roofing - Storm", "5550002", 2, RecordStatus.FAILURE, "0.01"),
        record(SourceTag.BULK_FILE, "b1", "Acme Roofing - Storm", "5550003", 20, RecordStatus.OTHER, "0.01"),
    ], tenant_id=acme.tenant_id)
    dialer = merger.merge_batch([
        record(SourceTag.CALL_CENTER, "d1", " acme roofing - storm ", "5550004", 3, RecordStatus.SUCCESS, "0.50"),
    ], tenant_id=acme.tenant_id)
    recall = merger.merge_batch([
        record(SourceTag.MARKETING_API, "m1", "Beta Dental - Recall", "a@beta.test", 5, RecordStatus.SUCCESS),
        record(SourceTag.MARKETING_API, "m1", "Beta Dental - Recall", "b@beta.test", 25, RecordStatus.FAILURE),
    ], tenant_id=beta.tenant_id)
    orphan = merger.merge_batch([
        record(SourceTag.BULK_FILE, "b9", "Orphan Promo", "5550009", 6, RecordStatus.FAILURE, "0.01"),
    ])

    return {
        "engine": RollupEngine(RollupQueryStore(db_pool)),
        "acme": acme.tenant_id,
        "beta": beta.tenant_id,
        "storm": storm.campaign_id,
        "dialer": dialer.campaign_id,
        "recall": recall.campaign_id,
        "orphan": orphan.campaign_id,
    }


@pytest.mark.integration
class TestRollupOverPostgres:

    def test_tenant_level(self, seeded):
        response = seeded["engine"].query(build_rollup_filter())

        assert [t.tenant_name for t in response.tenants] == ["Acme Roofing", "Beta Dental", "Unknown"]
        acme = response.tenants[0]
        assert acme.total_records == 4
        assert acme.campaign_count == 2
        # cost + compliance fee on bulk-file records
        assert acme.total_cost == Decimal("0.536")
        assert response.metrics.total_records == 7
        assert response.metrics.success_count == 3

    def test_same_name_campaigns_roll_up_together(self, seeded):
        response = seeded["engine"].query(build_rollup_filter(tenant_id=seeded["acme"]))

        assert len(response.campaigns) == 1
        storm = response.campaigns[0]
        assert storm.campaign_name.casefold() == "acme roofing - storm"
        assert storm.campaign_ids == sorted([seeded["storm"], seeded["dialer"]])
        assert set(storm.sources) == {SourceTag.BULK_FILE, SourceTag.CALL_CENTER}
        assert storm.total_records == 4

    def test_unknown_bucket(self, seeded):
        response = seeded["engine"].query(build_rollup_filter(tenant_id=0))

        assert response.tenant_name == "Unknown"
        assert [c.campaign_name for c in response.campaigns] == ["Orphan Promo"]

    def test_record_level_with_status_filter(self, seeded):
        response = seeded["engine"].query(build_rollup_filter(
            tenant_id=seeded["acme"], campaign_id=seeded["storm"], status="failure",
        ))

        assert [r.recipient for r in response.records] == ["5550002"]
        assert response.pagination.total_records == 1
        # Metrics cards ignore the status filter
        assert response.metrics.total_records == 3

    def test_record_level_sorting_and_paging(self, seeded):
        engine = seeded["engine"]

        first_page = engine.query(build_rollup_filter(
            tenant_id=seeded["acme"], campaign_id=seeded["storm"], sort="asc", page_size=2,
        ))
        second_page = engine.query(build_rollup_filter(
            tenant_id=seeded["acme"], campaign_id=seeded["storm"], sort="asc", page=2, page_size=2,
        ))

        assert [r.recipient for r in first_page.records] == ["5550001", "5550002"]
        assert [r.recipient for r in second_page.records] == ["5550003"]
        assert first_page.pagination.total_pages == 2

    def test_date_range(self, seeded):
        response = seeded["engine"].query(build_rollup_filter(
            start_date=date(2024, 3, 1), end_date=date(2024, 3, 10),
        ))

        assert response.metrics.total_records == 5
        assert {t.tenant_name: t.total_records for t in response.tenants} == {
            "Acme Roofing": 3, "Beta Dental": 1, "Unknown": 1,
        }

    def test_source_filter(self, seeded):
        response = seeded["engine"].query(build_rollup_filter(source="call_center"))

        assert [t.tenant_name for t in response.tenants] == ["Acme Roofing"]
        assert response.metrics.total_cost == Decimal("0.50")

    def test_campaign_of_other_tenant_not_found(self, seeded):
        with pytest.raises(NotFoundError):
            seeded["engine"].query(build_rollup_filter(tenant_id=seeded["beta"], campaign_id=seeded["storm"]))

    def test_unknown_tenant_not_found(self, seeded):
        with pytest.raises(NotFoundError):
            seeded["engine"].query(build_rollup_filter(tenant_id=999))
