"""
Pytest configuration and fixtures for campaign-sync tests

This module provides shared fixtures for unit, integration, and E2E tests:
in-memory stand-ins for the PostgreSQL stores (unit tests) and a
testcontainers PostgreSQL database (integration and E2E tests).
"""
import os
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Generator

import psycopg
import pytest

from campaign_sync.config import CredentialStore, Settings, SourceSettings, SyncSettings
from campaign_sync.core.correlation import correlate
from campaign_sync.core.models import (
    UNKNOWN_TENANT_ID,
    UNKNOWN_TENANT_NAME,
    Campaign,
    FetchWindow,
    SourceTag,
    Tenant,
)
from campaign_sync.sources.base import FetchResult, SourceAdapter
from campaign_sync.sync.orchestrator import SyncOrchestrator
from campaign_sync.warehouse.merge import MergeResult, collapse_duplicates, group_by_campaign

ROOT_DIR = os.path.dirname(os.path.dirname(__file__))

TEST_DB_NAME = "test_campaign_sync"
TEST_DB_USER = "test_pipeline"
TEST_DB_PASSWORD = "test_password"


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# IN-MEMORY STORES
# =======================

class InMemoryTenantStore:
    """TenantStore stand-in."""

    def __init__(self, tenants: list[Tenant] | None = None):
        self.tenants = {t.tenant_id: t for t in tenants or []}

    def list_tenants(self, active_only: bool = True) -> list[Tenant]:
        tenants = sorted(self.tenants.values(), key=lambda t: t.tenant_id)
        return [t for t in tenants if t.is_active or not active_only]

    def get_tenant(self, tenant_id: int) -> Tenant | None:
        return self.tenants.get(tenant_id)

    def add_tenant(self, name: str, is_active: bool = True) -> Tenant:
        for tenant in self.tenants.values():
            if tenant.match_name == name.strip().casefold():
                return tenant
        tenant = Tenant(tenant_id=len(self.tenants) + 1, name=name.strip(), is_active=is_active)
        self.tenants[tenant.tenant_id] = tenant
        return tenant

    def set_active(self, tenant_id: int, is_active: bool) -> bool:
        if tenant_id not in self.tenants:
            return False
        self.tenants[tenant_id] = self.tenants[tenant_id].model_copy(update={"is_active": is_active})
        return True


class InMemoryTracker:
    """FetchWindowTracker stand-in with the same marking rules."""

    def __init__(self):
        self._lock = threading.Lock()
        self.windows: dict[tuple, FetchWindow] = {}

    def _key(self, source, tenant_id, window_key):
        return (SourceTag(source), tenant_id or 0, window_key)

    def is_fetched(self, source, tenant_id, window_key) -> bool:
        return self._key(source, tenant_id, window_key) in self.windows

    def get_window(self, source, tenant_id, window_key):
        return self.windows.get(self._key(source, tenant_id, window_key))

    def mark_fetched(self, source, tenant_id, window_key, kind, window_from=None, window_to=None, record_count=0):
        key = self._key(source, tenant_id, window_key)
        with self._lock:
            existing = self.windows.get(key)
            if existing is not None and kind == "file":
                return False
            if existing is not None:
                self.windows[key] = existing.model_copy(update={
                    "window_from": min(existing.window_from, window_from),
                    "window_to": max(existing.window_to, window_to),
                    "record_count": existing.record_count + record_count,
                })
                return False
            self.windows[key] = FetchWindow(
                source=SourceTag(source), tenant_id=tenant_id, window_key=window_key, window_kind=kind,
                window_from=window_from, window_to=window_to, record_count=record_count,
            )
            return True

    def list_windows(self, source=None, tenant_id=None, kind=None):
        return [
            w for w in self.windows.values()
            if (source is None or w.source == SourceTag(source))
            and (tenant_id is None or w.tenant_id == tenant_id)
            and (kind is None or w.window_kind == kind)
        ]

    def month_marks(self, source, tenant_id):
        return {w.window_key: w for w in self.list_windows(source, tenant_id=tenant_id, kind="month")}

    def imported_filenames(self, source):
        return {w.window_key for w in self.list_windows(source, kind="file")}


class InMemoryMerger:
    """RecordMerger stand-in: identity-key upsert plus recomputed counts."""

    def __init__(self):
        self._lock = threading.Lock()
        self.campaigns: dict[tuple[str, str], Campaign] = {}
        self.records: dict[tuple, object] = {}
        self.relink_calls = 0

    def merge_records(self, records, tenant_id=None):
        return [self.merge_batch(batch, tenant_id) for batch in group_by_campaign(records).values()]

    def merge_batch(self, records, tenant_id=None):
        unique = collapse_duplicates(records)
        head = unique[-1]
        key = (head.source.value, head.source_campaign_id)
        with self._lock:
            created = key not in self.campaigns
            if created:
                self.campaigns[key] = Campaign(
                    campaign_id=len(self.campaigns) + 1,
                    source=head.source,
                    source_campaign_id=head.source_campaign_id,
                    campaign_name=head.campaign_name,
                    tenant_id=tenant_id,
                )
            elif tenant_id is not None and not self.campaigns[key].manually_linked:
                self.campaigns[key] = self.campaigns[key].model_copy(update={"tenant_id": tenant_id})
            for record in unique:
                self.records[record.identity_key] = record
            count = sum(1 for k in self.records if (k[0], k[1]) == key)
            self.campaigns[key] = self.campaigns[key].model_copy(update={"record_count": count})
            campaign = self.campaigns[key]

        return MergeResult(
            campaign_id=campaign.campaign_id,
            created_campaign=created,
            records_received=len(records),
            records_upserted=len(unique),
            duplicates_collapsed=len(records) - len(unique),
            record_count=campaign.record_count,
        )

    def relink_campaigns(self, source, tenants, delimiter=" - "):
        self.relink_calls += 1
        changed = 0
        for key, campaign in list(self.campaigns.items()):
            if campaign.source != SourceTag(source) or campaign.manually_linked:
                continue
            tenant_id = correlate(campaign.campaign_name, tenants, delimiter)
            if tenant_id != campaign.tenant_id:
                self.campaigns[key] = campaign.model_copy(update={"tenant_id": tenant_id})
                changed += 1
        return changed

    def records_for(self, tenant_id):
        ids = {c.source_campaign_id for c in self.campaigns.values() if c.tenant_id == tenant_id}
        return [r for r in self.records.values() if r.source_campaign_id in ids]


class InMemorySyncLog:
    """SyncLogStore stand-in."""

    def __init__(self):
        self._lock = threading.Lock()
        self.runs: dict[int, object] = {}

    def start_run(self, run):
        with self._lock:
            run_id = len(self.runs) + 1
            stored = run.model_copy(update={"run_id": run_id})
            self.runs[run_id] = stored
            return stored

    def complete_run(self, run):
        with self._lock:
            if self.runs[run.run_id].completed_at is not None:
                return False
            self.runs[run.run_id] = run
            return True

    def recent_runs(self, limit=20, source=None):
        runs = [r for r in self.runs.values() if source is None or r.source == SourceTag(source)]
        return sorted(runs, key=lambda r: r.run_id, reverse=True)[:limit]

    def latest_run(self, source):
        runs = self.recent_runs(1, source)
        return runs[0] if runs else None


class InMemoryRollupStore:
    """
    RollupQueryStore stand-in over plain row dicts.

    Each row: record_id, tenant_id (None = unlinked), tenant_name, campaign_id,
    campaign_name, source, recipient, event_at, status, cost.
    """

    def __init__(self, rows: list[dict], tenants: dict[int, str]):
        self.rows = rows
        self.tenants = tenants

    def _scoped(self, date_range=None, source=None, tenant_id=None, campaign_id=None, status=None):
        result = []
        for row in self.rows:
            if date_range is not None and not date_range.contains(row["event_at"]):
                continue
            if source is not None and row["source"] != SourceTag(source).value:
                continue
            if tenant_id is not None:
                owner = row["tenant_id"] if row["tenant_id"] is not None else UNKNOWN_TENANT_ID
                if owner != tenant_id:
                    continue
            if campaign_id is not None and row["campaign_id"] != campaign_id:
                continue
            if status is not None and row["status"] != status.value:
                continue
            result.append(row)
        return result

    def aggregate(self, date_range=None, source=None, tenant_id=None, campaign_id=None):
        groups: dict[tuple, dict] = {}
        for row in self._scoped(date_range, source, tenant_id, campaign_id):
            key = (row["tenant_id"], row["campaign_id"], row["status"])
            if key not in groups:
                groups[key] = {
                    "tenant_id": row["tenant_id"],
                    "tenant_name": self.tenants.get(row["tenant_id"]),
                    "campaign_id": row["campaign_id"],
                    "campaign_name": row["campaign_name"],
                    "source": row["source"],
                    "status": row["status"],
                    "record_count": 0,
                    "total_cost": Decimal("0"),
                }
            groups[key]["record_count"] += 1
            groups[key]["total_cost"] += row["cost"]
        return list(groups.values())

    def count_records(self, campaign_id, date_range=None, source=None, status=None):
        return len(self._scoped(date_range, source, campaign_id=campaign_id, status=status))

    def list_records(self, campaign_id, date_range=None, source=None, status=None, sort="desc", limit=50, offset=0):
        rows = sorted(
            self._scoped(date_range, source, campaign_id=campaign_id, status=status),
            key=lambda r: (r["event_at"], r["record_id"]),
            reverse=sort == "desc",
        )
        return [
            {
                "record_id": r["record_id"],
                "campaign_id": r["campaign_id"],
                "campaign_name": r["campaign_name"],
                "source": r["source"],
                "recipient": r["recipient"],
                "event_at": r["event_at"],
                "status": r["status"],
                "cost": r["cost"],
                "total_cost": r["cost"],
            }
            for r in rows[offset:offset + limit]
        ]

    def get_campaign(self, campaign_id):
        for row in self.rows:
            if row["campaign_id"] == campaign_id:
                return {"campaign_id": campaign_id, "campaign_name": row["campaign_name"],
                        "source": row["source"], "tenant_id": row["tenant_id"]}
        return None

    def tenant_name(self, tenant_id):
        if tenant_id == UNKNOWN_TENANT_ID:
            return UNKNOWN_TENANT_NAME
        return self.tenants.get(tenant_id)


class ScriptedMonthAdapter(SourceAdapter):
    """
    Month-windowed adapter returning scripted rows per tenant.

    responses[tenant_id] is a list of raw rows, or an exception to raise.
    An optional gate (threading.Event) blocks fetch until set.
    """

    source = SourceTag.MARKETING_API
    window_kind = "month"

    def __init__(self, settings, credentials, responses=None, gate=None):
        super().__init__(settings, credentials)
        self.responses = responses or {}
        self.gate = gate
        self.calls: list = []
        self._lock = threading.Lock()

    def fetch(self, cursor):
        with self._lock:
            self.calls.append(cursor)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        response = self.responses.get(cursor.tenant_id, [])
        if isinstance(response, Exception):
            raise response
        rows = [row for row in response if row["date_sent"].startswith(cursor.year_month)]
        return FetchResult(raw_records=rows, cursor=cursor)


# =======================
# UNIT FIXTURES
# =======================

@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def three_tenants() -> list[Tenant]:
    return [
        Tenant(tenant_id=1, name="Acme Roofing"),
        Tenant(tenant_id=2, name="Beta Dental"),
        Tenant(tenant_id=3, name="Cobalt Law"),
    ]


@pytest.fixture
def tenant_store(three_tenants) -> InMemoryTenantStore:
    return InMemoryTenantStore(three_tenants)


@pytest.fixture
def tracker() -> InMemoryTracker:
    return InMemoryTracker()


@pytest.fixture
def merger() -> InMemoryMerger:
    return InMemoryMerger()


@pytest.fixture
def sync_log() -> InMemorySyncLog:
    return InMemorySyncLog()


@pytest.fixture
def rollup_rows() -> list[dict]:
    """
    Ten records over four campaigns: two Acme campaigns sharing a name,
    one Beta campaign and one unlinked campaign.
    """
    def row(record_id, tenant_id, campaign_id, name, source, day, status, cost="0.01"):
        return {
            "record_id": record_id,
            "tenant_id": tenant_id,
            "campaign_id": campaign_id,
            "campaign_name": name,
            "source": source,
            "recipient": f"555010{record_id:04d}",
            "event_at": datetime(2024, 3, day, 9, 0, tzinfo=timezone.utc),
            "status": status,
            "cost": Decimal(cost),
        }

    return [
        row(1, 1, 10, "Acme Roofing - Storm", "bulk_file", 1, "success"),
        row(2, 1, 10, "Acme Roofing - Storm", "bulk_file", 2, "failure"),
        row(3, 1, 10, "Acme Roofing - Storm", "bulk_file", 20, "other"),
        row(4, 1, 11, " acme roofing - storm ", "call_center", 3, "success", "0.50"),
        row(5, 1, 11, " acme roofing - storm ", "call_center", 4, "failure", "0.50"),
        row(6, 2, 12, "Beta Dental - Recall", "marketing_api", 5, "success", "0"),
        row(7, 2, 12, "Beta Dental - Recall", "marketing_api", 6, "success", "0"),
        row(8, 2, 12, "Beta Dental - Recall", "marketing_api", 25, "failure", "0"),
        row(9, None, 13, "Orphan Promo", "bulk_file", 6, "failure"),
        row(10, None, 13, "Orphan Promo", "bulk_file", 7, "other"),
    ]


@pytest.fixture(scope="session")
def rollup_store_class():
    """Store class itself, for property-based tests that build their own rows."""
    return InMemoryRollupStore


@pytest.fixture
def rollup_store(rollup_rows) -> InMemoryRollupStore:
    return InMemoryRollupStore(rollup_rows, {1: "Acme Roofing", 2: "Beta Dental"})


@pytest.fixture
def month_credentials() -> CredentialStore:
    return CredentialStore({"marketing_api": {"tenants": {1: {}, 2: {}, 3: {}}}})


@pytest.fixture
def make_month_adapter(month_credentials):
    """Factory for ScriptedMonthAdapter with history starting 2024-02."""
    def _make(responses=None, gate=None, history_start="2024-02", credentials=None):
        settings = SourceSettings(history_start=history_start)
        return ScriptedMonthAdapter(settings, credentials or month_credentials, responses, gate)
    return _make


@pytest.fixture
def make_orchestrator(tenant_store, tracker, merger, sync_log, fixed_now):
    """Factory wiring an orchestrator to the in-memory stores."""
    created = []

    def _make(adapters, max_concurrency=2, timeout=5.0, settings=None):
        orchestrator = SyncOrchestrator(
            settings=settings or Settings(
                sync=SyncSettings(max_concurrency=max_concurrency, adapter_timeout_seconds=timeout)
            ),
            adapters={adapter.source: adapter for adapter in adapters},
            tenant_store=tenant_store,
            tracker=tracker,
            merger=merger,
            sync_log=sync_log,
            clock=lambda: fixed_now,
        )
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        orchestrator.shutdown(wait=True)



# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance with initialized database
    """
    try:
        from testcontainers.postgres import PostgresContainer

        container = PostgresContainer(
            image="postgres:16.2-alpine",
            username=TEST_DB_USER,
            password=TEST_DB_PASSWORD,
            dbname=TEST_DB_NAME,
        )
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available for integration tests: {e}")

    try:
        init_sql_path = os.path.join(ROOT_DIR, "docker", "init-db.sql")
        with open(init_sql_path, "r") as f:
            init_sql = f.read()

        with psycopg.connect(**db_params(container)) as conn:
            with conn.cursor() as cur:
                cur.execute(init_sql)
            conn.commit()

        yield container
    finally:
        container.stop()


def db_params(container) -> dict:
    return {
        "host": container.get_container_host_ip(),
        "port": int(container.get_exposed_port(5432)),
        "dbname": TEST_DB_NAME,
        "user": TEST_DB_USER,
        "password": TEST_DB_PASSWORD,
    }


@pytest.fixture
def db_connection(postgres_container) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a database connection for a single test

    Yields:
        psycopg Connection object
    """
    with psycopg.connect(**db_params(postgres_container)) as conn:
        yield conn
        conn.rollback()


@pytest.fixture
def clean_db(db_connection) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a clean database by truncating all tables before each test

    Yields:
        psycopg Connection object with clean database
    """
    with db_connection.cursor() as cur:
        cur.execute(
            "TRUNCATE TABLE campaign_record, campaign, fetch_window, sync_run, tenant "
            "RESTART IDENTITY CASCADE"
        )
        db_connection.commit()

    yield db_connection


@pytest.fixture
def db_pool(postgres_container, clean_db):
    """Open DatabaseConnectionPool on a clean test database."""
    from campaign_sync.warehouse.connection import DatabaseConnectionPool

    params = db_params(postgres_container)
    pool = DatabaseConnectionPool(
        host=params["host"],
        port=params["port"],
        database=TEST_DB_NAME,
        user=TEST_DB_USER,
        password=TEST_DB_PASSWORD,
        min_size=1,
        max_size=4,
    )
    pool.open()
    yield pool
    pool.close()


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads config/test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(ROOT_DIR, "config", "test.env")
    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
