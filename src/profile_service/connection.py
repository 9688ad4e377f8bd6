"""MongoDB connection lifecycle for the Profile service.

The *ConnectionManager* owns the single `AsyncMongoClient` of the process.
It keeps trying to connect with a fixed delay until the server answers a
``ping``, and afterwards follows the driver's topology events so that
`is_ready()` keeps reporting the real state of the connection::

    DISCONNECTED -> CONNECTING -> CONNECTED <-> DISCONNECTED
                                     |
                                DISCONNECTING -> DISCONNECTED

Handlers never touch the client directly; they ask the manager whether it
is ready and for the profile collection.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Optional

from pymongo import AsyncMongoClient, monitoring
from pymongo.errors import (
    ConnectionFailure,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
)

logger = logging.getLogger(__name__)

AUTHENTICATION_FAILED = 18

ClientFactory = Callable[..., Any]
Sleep = Callable[[float], Awaitable[None]]
ConnectHook = Callable[[Any], Awaitable[None]]


class ConnectionState(enum.IntEnum):
    """Lifecycle states of the database connection."""

    DISCONNECTED = 0
    CONNECTED = 1
    CONNECTING = 2
    DISCONNECTING = 3


class DatabaseUnavailableError(RuntimeError):
    """Raised when the database is accessed while the connection is not ready."""


class _TopologyListener(monitoring.TopologyListener):
    """Forward driver topology changes to the owning manager."""

    def __init__(self, manager: ConnectionManager):
        self._manager = manager

    def opened(self, event: monitoring.TopologyOpenedEvent) -> None:
        pass

    def description_changed(
        self, event: monitoring.TopologyDescriptionChangedEvent
    ) -> None:
        self._manager._handle_topology_change(
            event.new_description.has_readable_server()
        )

    def closed(self, event: monitoring.TopologyClosedEvent) -> None:
        pass


class ConnectionManager:
    """Own and supervise the connection to MongoDB.

    Args:
        uri: MongoDB connection string.
        db_name: Database holding the profile collection.
        collection_name: Name of the profile collection.
        reconnect_delay: Seconds to wait between failed connection attempts.
        server_selection_timeout_ms: Timeout of a single connection attempt.
        socket_timeout_ms: Idle socket timeout handed to the driver.
        client_factory: Callable building the client; defaults to
            `pymongo.AsyncMongoClient`.
        sleep: Coroutine used to wait between attempts.
        on_connect: Coroutine run with the database after every successful
            connection, before the manager reports ready.
    """

    def __init__(
        self,
        uri: str,
        db_name: str,
        *,
        collection_name: str = "users",
        reconnect_delay: float = 5.0,
        server_selection_timeout_ms: int = 5000,
        socket_timeout_ms: int = 45000,
        client_factory: Optional[ClientFactory] = None,
        sleep: Sleep = asyncio.sleep,
        on_connect: Optional[ConnectHook] = None,
    ):
        self._uri = uri
        self._db_name = db_name
        self._collection_name = collection_name
        self._reconnect_delay = reconnect_delay
        self._server_selection_timeout_ms = server_selection_timeout_ms
        self._socket_timeout_ms = socket_timeout_ms
        self._client_factory = client_factory or AsyncMongoClient
        self._sleep = sleep
        self._on_connect = on_connect

        self._client = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_ready(self) -> bool:
        """Return whether data requests can be served right now."""
        return self._state is ConnectionState.CONNECTED

    @property
    def database(self):
        if self._client is None:
            raise DatabaseUnavailableError("MongoDB client is not connected")
        return self._client[self._db_name]

    @property
    def collection(self):
        return self.database[self._collection_name]

    async def connect(self) -> None:
        """Make a single connection attempt.

        Raises:
            PyMongoError: If the server cannot be reached or rejects the
                credentials.
            Exception: Whatever the connect hook raises.
        """
        self._state = ConnectionState.CONNECTING
        client = self._client_factory(
            self._uri,
            serverSelectionTimeoutMS=self._server_selection_timeout_ms,
            socketTimeoutMS=self._socket_timeout_ms,
            tz_aware=True,
            event_listeners=[_TopologyListener(self)],
        )
        try:
            await client.admin.command("ping")
            if self._on_connect is not None:
                await self._on_connect(client[self._db_name])
        except Exception:
            self._state = ConnectionState.DISCONNECTED
            await client.close()
            raise

        self._client = client
        self._state = ConnectionState.CONNECTED
        logger.info(
            "Connected to MongoDB (database=%s, collection=%s)",
            self._db_name,
            self._collection_name,
        )

    async def connect_with_retry(self) -> None:
        """Connect, retrying after a fixed delay until an attempt succeeds."""
        attempt = 0
        while True:
            attempt += 1
            try:
                await self.connect()
                return
            except PyMongoError as exc:
                _log_connection_error(exc, attempt)
            except Exception:
                logger.error(
                    "Unexpected error connecting to MongoDB (attempt %d)",
                    attempt,
                    exc_info=True,
                )
            logger.info("Retrying MongoDB connection in %ss", self._reconnect_delay)
            await self._sleep(self._reconnect_delay)

    def start(self) -> asyncio.Task:
        """Launch the reconnect loop as a background task."""
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(
                self.connect_with_retry(), name="mongodb-connect"
            )
        return self._reconnect_task

    async def stop(self) -> None:
        """Cancel the reconnect loop if it is still running."""
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        """Stop reconnecting and close the client if one is open.

        Raises:
            Exception: Whatever the driver raises while closing.
        """
        await self.stop()
        client, self._client = self._client, None
        if client is None:
            self._state = ConnectionState.DISCONNECTED
            return

        self._state = ConnectionState.DISCONNECTING
        try:
            await client.close()
        finally:
            self._state = ConnectionState.DISCONNECTED

    def _handle_topology_change(self, readable: bool) -> None:
        if self._client is None:
            # Initial attempt still running or already closed.
            return
        if self._state is ConnectionState.CONNECTED and not readable:
            self._state = ConnectionState.DISCONNECTED
            logger.warning("MongoDB disconnected")
        elif self._state is ConnectionState.DISCONNECTED and readable:
            self._state = ConnectionState.CONNECTED
            logger.info("MongoDB reconnected")


def _log_connection_error(exc: PyMongoError, attempt: int) -> None:
    if isinstance(exc, ServerSelectionTimeoutError):
        reason = "Server selection error: MongoDB may not be available"
    elif isinstance(exc, ConnectionFailure):
        reason = "Network error: please check if MongoDB is running"
    elif isinstance(exc, OperationFailure) and exc.code == AUTHENTICATION_FAILED:
        reason = "Authentication failed: please check your username and password"
    else:
        reason = "MongoDB connection error"
    logger.error("%s (attempt %d): %s", reason, attempt, exc)


async def shutdown(manager: ConnectionManager) -> int:
    """Close *manager* and return the process exit status.

    Returns:
        int: ``0`` when the connection closed cleanly, ``1`` otherwise.
    """
    try:
        await manager.close()
    except Exception:
        logger.error("Error during shutdown", exc_info=True)
        return 1
    logger.info("MongoDB connection closed.")
    return 0
