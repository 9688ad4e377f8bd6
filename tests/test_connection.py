"""
Unit tests for the MongoDB connection manager.
"""

import asyncio

import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from profile_service.connection import (
    ConnectionManager,
    ConnectionState,
    DatabaseUnavailableError,
    shutdown,
)


class FakeAdmin:
    def __init__(self, client):
        self._client = client

    async def command(self, name):
        self._client.commands.append(name)
        if self._client.error is not None:
            raise self._client.error
        return {"ok": 1}


class FakeClient:
    """Minimal stand-in for AsyncMongoClient."""

    def __init__(self, uri, error=None, close_error=None, **options):
        self.uri = uri
        self.options = options
        self.error = error
        self.close_error = close_error
        self.commands = []
        self.closed = False
        self.admin = FakeAdmin(self)

    def __getitem__(self, name):
        return {"users": f"{name}.users"}

    async def close(self):
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeClientFactory:
    """Builds clients that fail with the queued errors, then succeed."""

    def __init__(self, errors=(), close_error=None):
        self._errors = list(errors)
        self._close_error = close_error
        self.clients = []

    def __call__(self, uri, **options):
        error = self._errors.pop(0) if self._errors else None
        client = FakeClient(uri, error=error, close_error=self._close_error, **options)
        self.clients.append(client)
        return client


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_manager(factory, sleep=None, **kwargs) -> ConnectionManager:
    return ConnectionManager(
        "mongodb://localhost:27017/user-account",
        "user-account",
        client_factory=factory,
        sleep=sleep or RecordingSleep(),
        **kwargs,
    )


class TestConnect:
    """Tests for single connection attempts."""

    async def test_successful_connect_marks_ready(self):
        factory = FakeClientFactory()
        manager = make_manager(factory)

        assert manager.state is ConnectionState.DISCONNECTED
        await manager.connect()

        assert manager.is_ready()
        assert manager.collection == "user-account.users"
        assert factory.clients[0].commands == ["ping"]

    async def test_client_options(self):
        factory = FakeClientFactory()
        manager = make_manager(
            factory, server_selection_timeout_ms=5000, socket_timeout_ms=45000
        )

        await manager.connect()

        options = factory.clients[0].options
        assert options["serverSelectionTimeoutMS"] == 5000
        assert options["socketTimeoutMS"] == 45000
        assert options["tz_aware"] is True
        assert len(options["event_listeners"]) == 1

    async def test_failed_connect_closes_client(self):
        factory = FakeClientFactory(errors=[ServerSelectionTimeoutError("no servers")])
        manager = make_manager(factory)

        with pytest.raises(ServerSelectionTimeoutError):
            await manager.connect()

        assert not manager.is_ready()
        assert manager.state is ConnectionState.DISCONNECTED
        assert factory.clients[0].closed
        with pytest.raises(DatabaseUnavailableError):
            manager.collection

    async def test_failing_hook_resets_state_and_closes_client(self):
        async def on_connect(database):
            raise RuntimeError("boom")

        factory = FakeClientFactory()
        manager = make_manager(factory, on_connect=on_connect)

        with pytest.raises(RuntimeError):
            await manager.connect()

        assert manager.state is ConnectionState.DISCONNECTED
        assert factory.clients[0].closed

    async def test_on_connect_hook_runs_before_ready(self):
        seen = []

        async def on_connect(database):
            seen.append((database, manager.is_ready()))

        manager = make_manager(FakeClientFactory(), on_connect=on_connect)

        await manager.connect()

        assert seen == [({"users": "user-account.users"}, False)]


class TestConnectWithRetry:
    """Tests for the fixed-delay reconnect loop."""

    async def test_retries_with_fixed_delay_until_success(self):
        factory = FakeClientFactory(
            errors=[
                ServerSelectionTimeoutError("no servers"),
                OperationFailure("auth failed", code=18),
                ServerSelectionTimeoutError("no servers"),
            ]
        )
        sleep = RecordingSleep()
        manager = make_manager(factory, sleep=sleep, reconnect_delay=5.0)

        await manager.connect_with_retry()

        assert manager.is_ready()
        assert sleep.delays == [5.0, 5.0, 5.0]
        assert len(factory.clients) == 4

    async def test_unexpected_hook_error_is_retried(self):
        calls = []

        async def flaky_hook(database):
            calls.append(database)
            if len(calls) == 1:
                raise RuntimeError("boom")

        factory = FakeClientFactory()
        sleep = RecordingSleep()
        manager = make_manager(factory, sleep=sleep, on_connect=flaky_hook)

        await manager.connect_with_retry()

        assert manager.is_ready()
        assert sleep.delays == [5.0]
        assert factory.clients[0].closed
        assert not factory.clients[1].closed

    async def test_no_sleep_when_first_attempt_succeeds(self):
        sleep = RecordingSleep()
        manager = make_manager(FakeClientFactory(), sleep=sleep)

        await manager.connect_with_retry()

        assert sleep.delays == []

    async def test_start_runs_loop_in_background(self):
        manager = make_manager(FakeClientFactory())

        task = manager.start()
        await task

        assert manager.is_ready()

    async def test_stop_cancels_pending_loop(self):
        factory = FakeClientFactory(
            errors=[ServerSelectionTimeoutError("no servers")] * 100
        )

        async def slow_sleep(delay):
            await asyncio.sleep(3600)

        manager = make_manager(factory, sleep=slow_sleep)
        task = manager.start()
        await asyncio.sleep(0)

        await manager.stop()

        assert task.cancelled()
        assert not manager.is_ready()


class TestTopologyChanges:
    """Readiness follows the driver after the initial connect."""

    async def test_disconnect_and_reconnect(self):
        manager = make_manager(FakeClientFactory())
        await manager.connect()

        manager._handle_topology_change(False)
        assert not manager.is_ready()

        manager._handle_topology_change(True)
        assert manager.is_ready()

    async def test_ignored_before_first_connect(self):
        manager = make_manager(FakeClientFactory())

        manager._handle_topology_change(True)

        assert not manager.is_ready()


class TestShutdown:
    """Tests for closing the connection at process exit."""

    async def test_clean_close_returns_zero(self):
        factory = FakeClientFactory()
        manager = make_manager(factory)
        await manager.connect()

        assert await shutdown(manager) == 0
        assert factory.clients[0].closed
        assert manager.state is ConnectionState.DISCONNECTED

    async def test_close_without_connection_returns_zero(self):
        manager = make_manager(FakeClientFactory())

        assert await shutdown(manager) == 0

    async def test_failed_close_returns_one(self):
        factory = FakeClientFactory(close_error=RuntimeError("close failed"))
        manager = make_manager(factory)
        await manager.connect()

        assert await shutdown(manager) == 1
        assert manager.state is ConnectionState.DISCONNECTED
