"""Tests for ConnectionMonitor.

Probes go through httpx.MockTransport and the backoff delays through a
recording sleep, so no network and no real waiting is involved.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio

from productsync.models.sync import ConnectionState
from productsync.services.connection_monitor import NO_INTERNET, ConnectionMonitor


class FakeRemote:
    """RemoteStore de mentira: saúde controlada pelo teste."""

    def __init__(self, healthy=False, recovers=False):
        self.healthy = healthy
        self.recovers = recovers
        self.connects = 0
        self.disconnects = 0

    async def check_health(self):
        return self.healthy

    async def connect(self):
        self.connects += 1
        if not self.recovers:
            raise ConnectionRefusedError("connection refused")
        self.healthy = True

    async def disconnect(self):
        self.disconnects += 1


class Probe:
    """Endpoint de teste de internet controlável."""

    def __init__(self):
        self.online = True
        self.status_code = 204

    def handler(self, request):
        if not self.online:
            raise httpx.ConnectError("network unreachable", request=request)
        return httpx.Response(self.status_code)


@pytest.fixture
def probe():
    return Probe()


@pytest.fixture
def delays():
    return []


@pytest_asyncio.fixture
async def client(probe):
    async with httpx.AsyncClient(transport=httpx.MockTransport(probe.handler)) as client:
        yield client


@pytest.fixture
def make_monitor(client, delays):
    async def fake_sleep(seconds):
        delays.append(seconds)
        await asyncio.sleep(0)

    def build(remote, **kwargs):
        kwargs.setdefault("max_attempts", 3)
        kwargs.setdefault("base_delay", 1.0)
        return ConnectionMonitor(
            remote, probe_url="https://probe.test/", client=client, sleep=fake_sleep, **kwargs
        )

    return build


async def wait_reconnect(monitor):
    for _ in range(1000):
        if not monitor.is_reconnecting:
            return
        await asyncio.sleep(0)
    raise AssertionError("reconnect loop did not finish")


class TestProbes:
    """Test internet and database probes."""

    @pytest.mark.asyncio
    async def test_internet_probe(self, make_monitor, probe):
        monitor = make_monitor(FakeRemote(healthy=True))

        assert await monitor.check_internet() is True
        probe.online = False
        assert await monitor.check_internet() is False
        assert monitor.internet_connected is False

    @pytest.mark.asyncio
    async def test_server_error_counts_as_offline(self, make_monitor, probe):
        monitor = make_monitor(FakeRemote(healthy=True))
        probe.status_code = 503

        assert await monitor.check_internet() is False

    @pytest.mark.asyncio
    async def test_healthy_remote_is_connected(self, make_monitor):
        monitor = make_monitor(FakeRemote(healthy=True))
        events = []
        monitor.subscribe(events.append)

        assert await monitor.check_remote_health() is True

        assert monitor.state == ConnectionState.CONNECTED
        assert monitor.is_connected
        assert events[-1].state == ConnectionState.CONNECTED
        assert events[-1].db_connected is True

    @pytest.mark.asyncio
    async def test_no_internet_stays_disconnected(self, make_monitor, probe):
        remote = FakeRemote(healthy=False)
        monitor = make_monitor(remote)
        probe.online = False
        await monitor.check_internet()

        assert await monitor.check_remote_health() is False

        assert monitor.state == ConnectionState.DISCONNECTED
        assert monitor.is_reconnecting is False
        assert remote.connects == 0

    @pytest.mark.asyncio
    async def test_regaining_internet_rechecks_database(self, make_monitor, probe):
        remote = FakeRemote(healthy=False)
        monitor = make_monitor(remote)
        probe.online = False
        await monitor.check_internet()

        remote.healthy = True
        probe.online = True
        await monitor.check_internet()

        assert monitor.state == ConnectionState.CONNECTED


class TestReconnect:
    """Test the exponential backoff reconnect loop."""

    @pytest.mark.asyncio
    async def test_backoff_delay(self, make_monitor):
        monitor = make_monitor(FakeRemote(), base_delay=5.0)

        assert [monitor.backoff_delay(n) for n in range(1, 6)] == [5.0, 10.0, 20.0, 40.0, 80.0]

    @pytest.mark.asyncio
    async def test_reconnects_after_failure(self, make_monitor, delays):
        remote = FakeRemote(healthy=False, recovers=True)
        monitor = make_monitor(remote)
        events = []
        monitor.subscribe(events.append)

        await monitor.check_remote_health()
        await wait_reconnect(monitor)

        assert monitor.state == ConnectionState.CONNECTED
        assert monitor.reconnect_attempts == 0
        assert delays == [1.0]
        assert remote.disconnects == 1
        assert remote.connects == 1
        assert [e.state for e in events] == [ConnectionState.RECONNECTING, ConnectionState.CONNECTED]

    @pytest.mark.asyncio
    async def test_exhausted_attempts_leave_disconnected(self, make_monitor, delays):
        remote = FakeRemote(healthy=False, recovers=False)
        monitor = make_monitor(remote)
        events = []
        monitor.subscribe(events.append)

        await monitor.check_remote_health()
        await wait_reconnect(monitor)

        assert delays == [1.0, 2.0, 4.0]
        assert [e.attempt for e in events if e.state == ConnectionState.RECONNECTING] == [1, 2, 3]
        assert monitor.state == ConnectionState.DISCONNECTED
        assert events[-1].error == (
            "Failed to reconnect after 3 attempts. "
            "Please check your network or database configuration."
        )

        # Esgotado: novas falhas não reabrem o ciclo sozinhas
        await monitor.check_remote_health()
        assert monitor.is_reconnecting is False

    @pytest.mark.asyncio
    async def test_manual_reconnect_after_exhaustion(self, make_monitor):
        remote = FakeRemote(healthy=False, recovers=False)
        monitor = make_monitor(remote)
        await monitor.check_remote_health()
        await wait_reconnect(monitor)

        remote.recovers = True
        result = await monitor.reconnect()

        assert result.success is True
        assert monitor.state == ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_manual_reconnect_without_internet(self, make_monitor, probe):
        monitor = make_monitor(FakeRemote(healthy=False))
        probe.online = False

        result = await monitor.reconnect()

        assert result.success is False
        assert result.error == NO_INTERNET
        assert monitor.state == ConnectionState.DISCONNECTED
        assert monitor.is_reconnecting is False

    @pytest.mark.asyncio
    async def test_stop_cancels_reconnect(self, make_monitor):
        monitor = make_monitor(FakeRemote(healthy=False), base_delay=3600.0)

        async def blocking_sleep(seconds):
            await asyncio.Event().wait()

        monitor._sleep = blocking_sleep
        await monitor.check_remote_health()
        assert monitor.is_reconnecting

        await monitor.stop()

        assert monitor.is_reconnecting is False
