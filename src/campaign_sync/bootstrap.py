"""
Wiring of the stores, adapters, orchestrator and rollup engine.
"""

from dataclasses import dataclass

from campaign_sync.config import Settings
from campaign_sync.rollup.engine import RollupEngine
from campaign_sync.sources.registry import build_adapters
from campaign_sync.sync.orchestrator import SyncOrchestrator
from campaign_sync.warehouse.connection import DatabaseConnectionPool
from campaign_sync.warehouse.fetch_tracker import FetchWindowTracker
from campaign_sync.warehouse.merge import RecordMerger
from campaign_sync.warehouse.rollup_queries import RollupQueryStore
from campaign_sync.warehouse.sync_log import SyncLogStore
from campaign_sync.warehouse.tenants import TenantStore


@dataclass
class Services:
    settings: Settings
    orchestrator: SyncOrchestrator
    rollup_engine: RollupEngine
    sync_log: SyncLogStore
    tracker: FetchWindowTracker
    merger: RecordMerger
    tenants: TenantStore


def build_services(settings: Settings, pool: DatabaseConnectionPool) -> Services:
    """Build every service on one open connection pool."""
    tenants = TenantStore(pool)
    tracker = FetchWindowTracker(pool)
    merger = RecordMerger(pool, batch_size=settings.sync.merge_batch_size)
    sync_log = SyncLogStore(pool)

    orchestrator = SyncOrchestrator(
        settings=settings,
        adapters=build_adapters(settings),
        tenant_store=tenants,
        tracker=tracker,
        merger=merger,
        sync_log=sync_log,
    )
    return Services(
        settings=settings,
        orchestrator=orchestrator,
        rollup_engine=RollupEngine(RollupQueryStore(pool)),
        sync_log=sync_log,
        tracker=tracker,
        merger=merger,
        tenants=tenants,
    )
