"""
pytest configuration and fixtures.
"""

from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from profile_service.api import create_app
from profile_service.connection import DatabaseUnavailableError
from profile_service.profile_store import ProfileStore


class FakeClock:
    """Clock advancing one second per call."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FakeConnectionManager:
    """Stand-in for ConnectionManager with switchable readiness."""

    def __init__(self, collection, ready: bool = True):
        self._collection = collection
        self.ready = ready
        self.started = False
        self.stopped = False

    def is_ready(self) -> bool:
        return self.ready

    @property
    def collection(self):
        if not self.ready:
            raise DatabaseUnavailableError("MongoDB client is not connected")
        return self._collection

    def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True


@pytest.fixture
def collection():
    """Fresh in-memory profile collection."""
    return AsyncMongoMockClient()["user-account"]["users"]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def store(collection, clock) -> ProfileStore:
    profile_store = ProfileStore(collection, clock=clock)
    await profile_store.ensure_indexes()
    return profile_store


@pytest.fixture
def connection_manager(collection) -> FakeConnectionManager:
    return FakeConnectionManager(collection)


@pytest.fixture
def client(connection_manager) -> Generator[TestClient, None, None]:
    """Test client for an app wired to the fake connection manager."""
    app = create_app(connection_manager)
    with TestClient(app) as test_client:
        yield test_client
