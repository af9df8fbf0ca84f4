"""
Tests for the sync control API routes.

The engine is replaced by a MagicMock with AsyncMock methods.

Run with: pytest tests/test_routes.py -v
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from outreach_sync.db.models import (
    SyncOutcome,
    SyncOutcomeStatus,
    SyncSchedule,
    SyncStatusView,
    SyncType,
)
from outreach_sync.routes import sync
from outreach_sync.sync.errors import ConfigurationError

from .fakes import ACCOUNT, WORKSPACE

BASE = f"/api/v1/sync/{WORKSPACE}/{ACCOUNT}"


def make_app(engine):
    app = FastAPI()
    app.include_router(sync.router, prefix="/api/v1")
    app.state.sync_engine = engine
    return app


@pytest.fixture
def engine():
    engine = MagicMock()
    schedule = SyncSchedule(workspace_id=WORKSPACE, account_id=ACCOUNT, enabled=True)
    engine.enable = AsyncMock(return_value=schedule)
    engine.disable = AsyncMock(return_value=schedule.model_copy(update={"enabled": False}))
    engine.update_settings = AsyncMock(return_value=schedule)
    engine.reset_cursor = AsyncMock(return_value=schedule)
    engine.trigger_now = AsyncMock(return_value=SyncOutcome(
        workspace_id=WORKSPACE,
        account_id=ACCOUNT,
        items_synced=42,
        status=SyncOutcomeStatus.SUCCESS,
    ))
    engine.get_status = AsyncMock(return_value=SyncStatusView(
        workspace_id=WORKSPACE,
        account_id=ACCOUNT,
        is_enabled=True,
        interval_minutes=30,
        sync_type=SyncType.BOTH,
        total_items_synced=42,
    ))
    engine.list_jobs = MagicMock(return_value=[{"id": "sync:ws_1:acc_1:interval"}])
    engine.jobs.running = True
    return engine


@pytest.fixture
def client(engine):
    return TestClient(make_app(engine))


class TestScheduleControl:

    def test_enable_defaults(self, client, engine):
        response = client.post(f"{BASE}/enable")

        assert response.status_code == 200
        assert response.json()["enabled"] is True
        engine.enable.assert_awaited_once_with(
            WORKSPACE, ACCOUNT, interval_minutes=None, sync_type=SyncType.BOTH
        )

    def test_enable_with_body(self, client, engine):
        response = client.post(f"{BASE}/enable", json={"interval_minutes": 10, "sync_type": "contacts"})

        assert response.status_code == 200
        engine.enable.assert_awaited_once_with(
            WORKSPACE, ACCOUNT, interval_minutes=10, sync_type=SyncType.CONTACTS
        )

    def test_enable_rejects_bad_interval(self, client):
        response = client.post(f"{BASE}/enable", json={"interval_minutes": 0})
        assert response.status_code == 422

    def test_disable(self, client):
        response = client.post(f"{BASE}/disable")

        assert response.status_code == 200
        assert response.json()["enabled"] is False

    def test_disable_unknown_account(self, client, engine):
        engine.disable.side_effect = ConfigurationError(WORKSPACE, ACCOUNT)

        response = client.post(f"{BASE}/disable")

        assert response.status_code == 404
        assert ACCOUNT in response.json()["detail"]

    def test_update_settings(self, client, engine):
        response = client.patch(f"{BASE}/settings", json={"interval_minutes": 15})

        assert response.status_code == 200
        engine.update_settings.assert_awaited_once_with(
            WORKSPACE, ACCOUNT, interval_minutes=15, sync_type=None
        )

    def test_reset(self, client, engine):
        response = client.post(f"{BASE}/reset")

        assert response.status_code == 200
        engine.reset_cursor.assert_awaited_once_with(WORKSPACE, ACCOUNT)


class TestTrigger:

    def test_trigger(self, client, engine):
        response = client.post(f"{BASE}/trigger")

        assert response.status_code == 200
        assert response.json()["items_synced"] == 42
        engine.trigger_now.assert_awaited_once_with(WORKSPACE, ACCOUNT, sync_type=None)

    def test_trigger_with_sync_type(self, client, engine):
        client.post(f"{BASE}/trigger", json={"sync_type": "messages"})

        engine.trigger_now.assert_awaited_once_with(WORKSPACE, ACCOUNT, sync_type=SyncType.MESSAGES)

    def test_trigger_unknown_account(self, client, engine):
        engine.trigger_now.side_effect = ConfigurationError(WORKSPACE, ACCOUNT)

        assert client.post(f"{BASE}/trigger").status_code == 404


class TestStatus:

    def test_status(self, client):
        response = client.get(f"{BASE}/status")

        assert response.status_code == 200
        body = response.json()
        assert body["is_enabled"] is True
        assert body["total_items_synced"] == 42
        assert body["recent_syncs"] == []

    def test_status_unknown_account(self, client, engine):
        engine.get_status.side_effect = ConfigurationError(WORKSPACE, ACCOUNT)

        assert client.get(f"{BASE}/status").status_code == 404

    def test_jobs(self, client):
        response = client.get("/api/v1/sync/jobs")

        assert response.status_code == 200
        assert response.json() == {
            "scheduler_running": True,
            "job_count": 1,
            "jobs": [{"id": "sync:ws_1:acc_1:interval"}],
        }

    def test_engine_not_started(self):
        client = TestClient(make_app(None))

        assert client.get(f"{BASE}/status").status_code == 503
