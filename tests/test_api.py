"""Tests for the FastAPI surface, with the services mocked out."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from productsync.api.app import create_app
from productsync.bootstrap import build_services
from productsync.models.sync import (
    ConnectionState, ConnectionStatus, FullSyncResult, PullResult, PushResult,
    ReconnectResult, SyncDirection, SyncPhase, SyncProgress, SyncStatus,
)
from productsync.services.notifier import SyncNotifier


def connection_status():
    return ConnectionStatus(
        state=ConnectionState.CONNECTED, internet_connected=True, db_connected=True, max_attempts=5,
    )


@pytest.fixture
def services():
    notifier = SyncNotifier()

    async def push():
        notifier.publish(SyncProgress(phase=SyncPhase.STARTED, direction=SyncDirection.UPLOAD))
        return PushResult(success=True, uploaded_count=2)

    sync_manager = MagicMock()
    sync_manager.push = AsyncMock(side_effect=push)
    sync_manager.pull = AsyncMock(return_value=PullResult(success=True, downloaded_count=4))
    sync_manager.full_sync = AsyncMock(return_value=FullSyncResult(success=True, uploaded_count=2, downloaded_count=4))
    sync_manager.get_status = AsyncMock(return_value=SyncStatus(pending_uploads=1, auto_sync_enabled=True))

    monitor = MagicMock()
    monitor.status.return_value = connection_status()
    monitor.check_internet = AsyncMock(return_value=True)
    monitor.check_remote_health = AsyncMock(return_value=True)
    monitor.reconnect = AsyncMock(return_value=ReconnectResult(success=True))

    first_run = MagicMock()
    first_run.is_first_run.return_value = True
    first_run.run_initial_sync = AsyncMock(return_value=PullResult(success=True, downloaded_count=4))

    return SimpleNamespace(
        identity=SimpleNamespace(node_id="node-test"),
        notifier=notifier,
        sync_manager=sync_manager,
        monitor=monitor,
        first_run=first_run,
        start=AsyncMock(),
        stop=AsyncMock(),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as client:
        yield client


class TestLifespan:
    def test_services_started_and_stopped(self, services):
        with TestClient(create_app(services)) as client:
            assert client.get("/").json()["node_id"] == "node-test"
            services.start.assert_awaited_once()
        services.stop.assert_awaited_once()


class TestSyncEndpoints:
    """Test /sync routes."""

    def test_push(self, client):
        response = client.post("/sync/push")

        assert response.status_code == 200
        assert response.json() == {"success": True, "uploaded_count": 2, "failed_count": 0, "error": None}

    def test_pull(self, client):
        assert client.post("/sync/pull").json()["downloaded_count"] == 4

    def test_full(self, client):
        body = client.post("/sync/full").json()

        assert body["uploaded_count"] == 2
        assert body["downloaded_count"] == 4

    def test_status(self, client):
        body = client.get("/sync/status").json()

        assert body["pending_uploads"] == 1
        assert body["auto_sync_enabled"] is True

    def test_toggle_auto_sync(self, client, services):
        response = client.put("/sync/auto", json={"enabled": False})

        assert response.status_code == 200
        services.sync_manager.set_auto_sync.assert_called_once_with(False)

    def test_toggle_requires_body(self, client):
        assert client.put("/sync/auto", json={}).status_code == 422

    def test_event_stream(self, client):
        with client.websocket_connect("/sync/events") as websocket:
            client.post("/sync/push")
            message = websocket.receive_json()

        assert message["type"] == "sync"
        assert message["phase"] == "started"
        assert message["direction"] == "upload"


class TestConnectionEndpoints:
    """Test /connection routes."""

    def test_status(self, client):
        body = client.get("/connection/status").json()

        assert body["state"] == "connected"
        assert body["max_attempts"] == 5

    def test_check_runs_both_probes(self, client, services):
        client.post("/connection/check")

        services.monitor.check_internet.assert_awaited_once()
        services.monitor.check_remote_health.assert_awaited_once()

    def test_reconnect(self, client):
        assert client.post("/connection/reconnect").json() == {"success": True, "error": None}


class TestFirstRunEndpoints:
    """Test /first-run routes."""

    def test_state(self, client):
        assert client.get("/first-run").json() == {"first_run": True}

    def test_initial_sync(self, client, services):
        assert client.post("/first-run/sync").json()["downloaded_count"] == 4
        services.first_run.run_initial_sync.assert_awaited_once()

    def test_skip(self, client, services):
        services.first_run.is_first_run.return_value = False

        assert client.post("/first-run/skip").json() == {"first_run": False}
        services.first_run.skip.assert_called_once()


class TestBootstrap:
    """Test the wiring of the real services container."""

    @pytest.mark.asyncio
    async def test_services_are_wired(self, settings):
        services = build_services(settings)

        assert services.sync_manager.node_id == services.identity.node_id
        assert services.sync_manager.scheduler is not None
        assert settings.node_identity_file.exists()
        assert services.first_run.is_first_run() is True

        # Eventos de conexão chegam ao notifier
        received = []
        services.notifier.subscribe(received.append)
        await services.remote.connect()
        await services.monitor.check_remote_health()
        assert received[-1].state == ConnectionState.CONNECTED

        await services.stop()
