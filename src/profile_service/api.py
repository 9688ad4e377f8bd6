"""Application entry point for the Profile service.

Public API:
    - build_connection_manager: Wires a *ConnectionManager* from settings.
    - create_app: Creates and configures the FastAPI application instance.
    - startup: Serves the application and returns the process exit status.
    - main: Console script entry point.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from profile_service.connection import (
    ConnectionManager,
    DatabaseUnavailableError,
    shutdown,
)
from profile_service.profile_store import ProfileStore
from profile_service.router import error_response, router as profile_router
from profile_service.settings import Settings, settings

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_connection_manager(config: Settings) -> ConnectionManager:
    """Create a *ConnectionManager* that also maintains the profile indexes."""

    async def ensure_indexes(database) -> None:
        await ProfileStore(database[config.profile_collection]).ensure_indexes()

    return ConnectionManager(
        config.mongodb_uri,
        config.mongo_db_name,
        collection_name=config.profile_collection,
        reconnect_delay=config.reconnect_delay_seconds,
        server_selection_timeout_ms=config.server_selection_timeout_ms,
        socket_timeout_ms=config.socket_timeout_ms,
        on_connect=ensure_indexes,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the reconnect loop for as long as the application is serving.

    The manager is exposed through the `state` mapping so that request
    handlers can reach it. Closing the client is left to the owner of the
    manager (see `startup`).
    """
    connection_manager: ConnectionManager = app.state.connection_manager
    connection_manager.start()
    try:
        yield {"connection_manager": connection_manager}
    finally:
        await connection_manager.stop()


async def database_unavailable_handler(request: Request, exc: DatabaseUnavailableError):
    return error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Database temporarily unavailable",
        message="Please try again in a few moments",
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = {
        ".".join(str(part) for part in error["loc"][1:]) or "body": error["msg"]
        for error in exc.errors()
    }
    return error_response(
        status.HTTP_400_BAD_REQUEST, "Validation Error", details=details
    )


def create_app(connection_manager: ConnectionManager) -> FastAPI:
    """Instantiate and configure the FastAPI application."""

    app = FastAPI(
        title="Profile Service",
        description="Reads and upserts user profiles stored in MongoDB.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.connection_manager = connection_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DatabaseUnavailableError, database_unavailable_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(profile_router)
    return app


class ProfileServer(uvicorn.Server):
    """Uvicorn server that stops gracefully on SIGINT/SIGTERM.

    Unlike the stock server it does not re-raise the signal afterwards, so
    the entry point can still close the database and pick the exit status.
    """

    @contextlib.contextmanager
    def capture_signals(self):
        loop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            loop.add_signal_handler(sig, self._on_signal, sig)
        try:
            yield
        finally:
            for sig in HANDLED_SIGNALS:
                loop.remove_signal_handler(sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("%s received, shutting down gracefully", sig.name)
        self.handle_exit(sig, None)


async def startup() -> int:
    """Serve the application and return the process exit status."""
    connection_manager = build_connection_manager(settings)
    app = create_app(connection_manager)

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    server = ProfileServer(config)
    logger.info("Server running on http://%s:%s", settings.host, settings.port)
    await server.serve()

    return await shutdown(connection_manager)


def main() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(startup()))


if __name__ == "__main__":
    main()
