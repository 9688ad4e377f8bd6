"""FastAPI dependency factories for the Profile service."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from profile_service.connection import ConnectionManager, DatabaseUnavailableError
from profile_service.profile_store import ProfileStore


def get_connection_manager(request: Request) -> ConnectionManager:
    """Return the shared *ConnectionManager* from the lifespan state."""

    return request.state.connection_manager


def require_database(
    connection: Annotated[ConnectionManager, Depends(get_connection_manager)],
) -> None:
    """Reject the request before any store access unless MongoDB is ready.

    Raises:
        DatabaseUnavailableError: If the connection is not ready.
    """

    if not connection.is_ready():
        raise DatabaseUnavailableError("Database connection is not ready")


def get_profile_store(
    connection: Annotated[ConnectionManager, Depends(get_connection_manager)],
) -> ProfileStore:
    """Create a *ProfileStore* bound to the profile collection."""

    return ProfileStore(connection.collection)
