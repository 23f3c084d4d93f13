"""
Unit tests for the HTTP API.

The app is built around in-memory services and exercised with FastAPI's
TestClient.
"""

import threading

import pytest
from fastapi.testclient import TestClient

from campaign_sync.api.app import create_app
from campaign_sync.bootstrap import Services
from campaign_sync.config import Settings
from campaign_sync.core.errors import SourceError
from campaign_sync.core.models import SourceTag
from campaign_sync.rollup.engine import RollupEngine


@pytest.fixture
def gate():
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def orchestrator(make_orchestrator, make_month_adapter, gate):
    rows = {
        1: [{"e_id": "A1", "subject1": "Acme Roofing - Spring", "email_address": "a@acme.test",
             "date_sent": "2024-03-02 09:00:00", "status": "sent"}],
        2: SourceError("HTTP 502", source="marketing_api"),
    }
    return make_orchestrator([make_month_adapter(rows, gate=gate, history_start="2024-03")])


@pytest.fixture
def client(orchestrator, rollup_store, sync_log, tracker, merger, tenant_store):
    services = Services(
        settings=Settings(),
        orchestrator=orchestrator,
        rollup_engine=RollupEngine(rollup_store),
        sync_log=sync_log,
        tracker=tracker,
        merger=merger,
        tenants=tenant_store,
    )
    return TestClient(create_app(services))


class TestSyncEndpoints:
    """Tests for trigger, progress and history"""

    def test_trigger_accepted_then_conflict(self, client, orchestrator, gate):
        accepted = client.post("/sync/marketing_api", params={"triggered_by": "dashboard"})

        assert accepted.status_code == 202
        body = accepted.json()
        assert body["accepted"] is True
        assert body["source"] == "marketing_api"
        assert body["run_id"] == 1

        conflict = client.post("/sync/marketing_api")

        assert conflict.status_code == 409
        assert conflict.json()["error"] == "SYNC_IN_PROGRESS"
        assert conflict.json()["elapsed_seconds"] >= 0

        gate.set()
        orchestrator.shutdown(wait=True)

        progress = client.get("/sync/progress", params={"source": "marketing_api"}).json()
        assert progress["is_running"] is False
        assert progress["last_run"]["status"] == "partial"
        assert progress["last_run"]["triggered_by"] == "dashboard"

    def test_unknown_source_is_404(self, client):
        assert client.post("/sync/fax_machine").status_code == 404

    def test_unconfigured_source_is_422(self, client):
        response = client.post("/sync/call_center")

        assert response.status_code == 422
        assert response.json()["error"] == "CONFIGURATION_ERROR"

    def test_progress_of_every_source(self, client):
        body = client.get("/sync/progress").json()

        assert set(body["sources"]) == {tag.value for tag in SourceTag}
        assert body["sources"]["bulk_file"]["state"] == "idle"

    def test_history(self, client, orchestrator, gate):
        gate.set()
        orchestrator.run(SourceTag.MARKETING_API)
        orchestrator.run(SourceTag.MARKETING_API)

        body = client.get("/sync/history", params={"limit": 1}).json()

        assert body["count"] == 1
        assert body["runs"][0]["run_id"] == 2

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 500}, {"source": "fax_machine"}])
    def test_history_rejects_bad_parameters(self, client, params):
        assert client.get("/sync/history", params=params).status_code == 400


class TestRollupEndpoint:
    """Tests for GET /rollup"""

    def test_tenant_level(self, client):
        body = client.get("/rollup").json()

        assert body["level"] == "tenant"
        assert body["metrics"]["total_records"] == 10
        assert [t["tenant_name"] for t in body["tenants"]] == ["Acme Roofing", "Beta Dental", "Unknown"]
        assert "campaigns" not in body

    def test_record_level_with_status(self, client):
        body = client.get("/rollup", params={"tenant_id": 1, "campaign_id": 10, "status": "failure"}).json()

        assert body["level"] == "record"
        assert [r["record_id"] for r in body["records"]] == [2]
        assert body["metrics"]["total_records"] == 3

    def test_date_range(self, client):
        body = client.get("/rollup", params={"start_date": "2024-03-01", "end_date": "2024-03-10"}).json()
        assert body["metrics"]["total_records"] == 8

    @pytest.mark.parametrize("params", [
        {"campaign_id": 10},
        {"status": "bogus"},
        {"start_date": "2024-03-01"},
        {"start_date": "2024-03-10", "end_date": "2024-03-01"},
        {"page_size": 0},
        {"source": "fax_machine"},
    ])
    def test_invalid_filters_are_400(self, client, params):
        assert client.get("/rollup", params=params).status_code == 400

    def test_campaign_outside_tenant_is_404(self, client):
        assert client.get("/rollup", params={"tenant_id": 1, "campaign_id": 12}).status_code == 404


class TestOpsEndpoints:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["version"]

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "campaign_sync_runs_total" in response.text
