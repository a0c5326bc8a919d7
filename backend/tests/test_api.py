"""Tests for the FastAPI admin host and the read-through fixtures endpoint."""
import asyncio
import time
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from conftest import FakeFootballAPI, make_config, make_fixture
from database.cache import InMemoryCache, CacheError
from football_api.client import UpstreamError
from sync.models import OutcomeStatus, TaskKey, TaskOutcome
from sync.populator import BulkPopulator
from sync.services import build_services

MATCH_DAY = date(2025, 11, 19)


def _services(**overrides):
    config = make_config(**overrides)
    api = FakeFootballAPI()
    api.add(39, MATCH_DAY, make_fixture(1, kickoff=datetime(2025, 11, 19, 15, tzinfo=timezone.utc), status="FT"))
    return build_services(config, cache=InMemoryCache(), api=api)


@pytest.fixture
def services():
    return _services()


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


class TestHealthAndAuth:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_admin_routes_open_without_token(self, client):
        assert client.get("/api/admin/sync").status_code == 200

    def test_admin_token_required_when_configured(self):
        with TestClient(create_app(services=_services(admin_token="secret"))) as client:
            assert client.get("/api/admin/dashboard").status_code == 401
            assert client.get("/api/admin/sync", headers={"X-Admin-Token": "wrong"}).status_code == 401
            assert client.get("/api/admin/sync", headers={"X-Admin-Token": "secret"}).status_code == 200
            # Public read path is not guarded
            assert client.get("/health").status_code == 200


class TestSyncRoute:

    def test_unknown_action_is_400(self, client):
        response = client.post("/api/admin/sync", json={"action": "sync_everything"})
        assert response.status_code == 400
        assert "Invalid action" in response.json()["error"]

    def test_force_sync_without_type_is_rejected_before_enqueue(self, client, services):
        response = client.post("/api/admin/sync", json={"action": "force_sync"})

        assert response.status_code == 400
        assert services.orchestrator.get_stats()["total_tasks"] == 0

    def test_historical_days_validated(self, client):
        response = client.post("/api/admin/sync", json={"action": "historical_sync", "days": 0})
        assert response.status_code == 400

    def test_start_sync_in_foreground(self, client, services):
        response = client.post("/api/admin/sync", json={"action": "start_sync", "wait": True})

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "completed"
        assert body["result"]["tasks"] == 1
        assert services.api.count("fixtures") == 1

    def test_long_actions_are_detached(self, client):
        response = client.post("/api/admin/sync", json={"action": "smart_sync"})

        assert response.status_code == 200
        assert response.json()["status"] == "started"

    def test_clear_queue(self, client):
        response = client.post("/api/admin/sync", json={"action": "clear_queue"})
        assert response.json()["result"] == {"cleared": 0}


class TestSchedulerRoute:

    def test_start_update_stop(self, client):
        started = client.post("/api/admin/scheduler", json={"action": "start"}).json()
        assert started["schedulerStatus"]["state"] == "running"

        updated = client.post("/api/admin/scheduler", json={
            "action": "update_config",
            "config": {"quick_sync_minutes": 15},
        }).json()
        assert updated["schedulerStatus"]["config"]["quick_sync_minutes"] == 15

        stopped = client.post("/api/admin/scheduler", json={"action": "stop"}).json()
        assert stopped["schedulerStatus"]["state"] == "stopped"

    def test_update_config_requires_config(self, client):
        response = client.post("/api/admin/scheduler", json={"action": "update_config"})
        assert response.status_code == 400
        assert "Missing config" in response.json()["error"]

    def test_invalid_config_is_400(self, client):
        response = client.post("/api/admin/scheduler", json={
            "action": "update_config",
            "config": {"max_concurrent_operations": 0},
        })
        assert response.status_code == 400

    def test_status(self, client):
        body = client.get("/api/admin/scheduler").json()
        assert body["schedulerStatus"]["state"] == "stopped"
        assert "restart" in body["availableActions"]


class TestPopulateRoute:

    def test_second_job_conflicts(self, services):
        slow = AsyncMock()

        async def sync_fixtures(league_id, day, **kwargs):
            await asyncio.sleep(0.5)
            return TaskOutcome(TaskKey.fixtures(league_id, day), OutcomeStatus.SUCCEEDED, api_calls=1)

        slow.sync_fixtures.side_effect = sync_fixtures
        services.populator = BulkPopulator(services.config, slow)

        with TestClient(create_app(services=services)) as client:
            first = client.post("/api/admin/populate", json={
                "action": "start_massive", "leagues": [39], "past_days": 0, "future_days": 0,
            })
            assert first.status_code == 200
            assert first.json()["stats"]["running"] is True

            second = client.post("/api/admin/populate", json={"action": "start_quick"})
            assert second.status_code == 409

            deadline = time.monotonic() + 5
            while client.get("/api/admin/populate").json()["stats"]["running"]:
                assert time.monotonic() < deadline
                time.sleep(0.05)

            stats = client.post("/api/admin/populate", json={"action": "status"}).json()["stats"]
            assert stats["succeeded"] == 1

    def test_invalid_custom_job(self, client):
        response = client.post("/api/admin/populate", json={"action": "start_massive", "past_days": 999})
        assert response.status_code == 400

    def test_stop_when_idle(self, client):
        response = client.post("/api/admin/populate", json={"action": "stop"})
        assert response.status_code == 200
        assert response.json()["stats"]["running"] is False


class TestDashboard:

    def test_dashboard_shape(self, client):
        client.post("/api/admin/sync", json={"action": "start_sync", "wait": True})

        body = client.get("/api/admin/dashboard").json()

        # Today's (empty) list for the one configured league
        assert body["cache"]["fixtures"] == 1
        assert body["sync"]["succeeded"] == 1
        assert body["scheduler"]["state"] == "stopped"
        assert body["population"]["running"] is False
        assert body["apiUsage"]["daily_limit"] == 7500


class TestFixturesRoute:

    def test_read_through(self, client, services):
        first = client.get("/api/fixtures", params={"league": 39, "date": "2025-11-19"}).json()
        second = client.get("/api/fixtures", params={"league": 39, "date": "2025-11-19"}).json()

        assert first["source"] == "upstream"
        assert first["fixtures"][0]["fixture"]["id"] == 1
        assert second["source"] == "cache"
        assert services.api.count("fixtures") == 1

    def test_bad_date(self, client):
        response = client.get("/api/fixtures", params={"league": 39, "date": "19/11/2025"})
        assert response.status_code == 400

    def test_upstream_failure_is_502(self, client, services):
        services.api.fail_fixtures[(39, MATCH_DAY)] = UpstreamError("provider down")

        response = client.get("/api/fixtures", params={"league": 39, "date": "2025-11-19"})

        assert response.status_code == 502
        assert "provider down" in response.json()["error"]

    def test_cache_failure_is_502(self, services):
        services.cache = AsyncMock()
        services.cache.get.side_effect = CacheError("db down")

        with TestClient(create_app(services=services)) as client:
            response = client.get("/api/fixtures", params={"league": 39, "date": "2025-11-19"})

        assert response.status_code == 502
