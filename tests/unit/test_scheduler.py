"""
Unit tests for the interval scheduler and the logging context.
"""

import json
import logging

import pytest

from campaign_sync.config import Settings, SourceSettings
from campaign_sync.core.models import SourceTag, SyncType
from campaign_sync.observability.logger import (
    CustomJsonFormatter,
    bind_sync_context,
    current_sync_context,
)
from campaign_sync.sync.scheduler import SyncScheduler


@pytest.fixture
def scheduler(make_orchestrator, make_month_adapter):
    settings = Settings(sources={
        SourceTag.MARKETING_API: SourceSettings(interval_minutes=15),
        SourceTag.CALL_CENTER: SourceSettings(enabled=False),
    })
    orchestrator = make_orchestrator([make_month_adapter({}, history_start="2024-03")])
    sync_scheduler = SyncScheduler(settings, orchestrator)
    yield sync_scheduler
    sync_scheduler.stop()


class TestSyncScheduler:

    def test_one_job_per_configured_source(self, scheduler):
        scheduler.start()

        jobs = scheduler.jobs()

        # Only marketing_api has an adapter; call_center is disabled anyway
        assert [job["id"] for job in jobs] == ["sync_marketing_api"]
        assert jobs[0]["next_run_time"] is not None

    def test_run_source_records_scheduled_run(self, scheduler, sync_log):
        scheduler.run_source(SourceTag.MARKETING_API)

        run = sync_log.latest_run(SourceTag.MARKETING_API)
        assert run.sync_type == SyncType.SCHEDULED
        assert run.triggered_by == "scheduler"

    def test_busy_source_is_skipped(self, scheduler, sync_log):
        with scheduler.orchestrator.guard.acquire(SourceTag.MARKETING_API):
            scheduler.run_source(SourceTag.MARKETING_API)

        assert sync_log.latest_run(SourceTag.MARKETING_API) is None


class TestLogContext:

    def test_nested_binding(self):
        with bind_sync_context(source="bulk_file", run_id=7):
            with bind_sync_context(unit="a.json"):
                assert current_sync_context() == {"source": "bulk_file", "run_id": 7, "unit": "a.json"}
            assert "unit" not in current_sync_context()
        assert current_sync_context() == {}

    def test_context_rendered_in_json(self):
        formatter = CustomJsonFormatter(fmt="%(timestamp)s %(level)s %(message)s")
        record = logging.LogRecord("campaign-sync", logging.INFO, __file__, 1, "merged", None, None)

        with bind_sync_context(source="call_center", run_id=3):
            payload = json.loads(formatter.format(record))

        assert payload["message"] == "merged"
        assert payload["level"] == "INFO"
        assert payload["source"] == "call_center"
        assert payload["run_id"] == 3
