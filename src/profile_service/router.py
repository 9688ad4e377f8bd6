"""API router for the Profile service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import FileResponse, JSONResponse
from pymongo.errors import ConnectionFailure

from profile_service.connection import ConnectionManager
from profile_service.dependencies import (
    get_connection_manager,
    get_profile_store,
    require_database,
)
from profile_service.profile_store import ProfileStore, ProfileValidationError
from profile_service.schemas import (
    ErrorResponse,
    HealthCheckResponse,
    Profile,
    UpdateProfileRequest,
    UpdateProfileResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"

DATA_ERROR_RESPONSES = {
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def error_response(status_code: int, error: str, **extra) -> JSONResponse:
    """Build the ``{error, message?|details?}`` payload used by every endpoint."""

    content = {"error": error}
    content.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(status_code=status_code, content=content)


def _store_failure(exc: Exception, action: str) -> JSONResponse:
    if isinstance(exc, ConnectionFailure):
        logger.warning("Database unavailable while %s: %s", action, exc)
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Database unavailable",
            message="Please try again later",
        )
    logger.error("Error while %s", action, exc_info=exc)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error"
    )


@router.get("/", include_in_schema=False)
async def landing_page() -> FileResponse:
    return FileResponse(STATIC_DIR / "index.html")


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    tags=["Health"],
)
async def health_check(
    connection: Annotated[ConnectionManager, Depends(get_connection_manager)],
) -> HealthCheckResponse:
    """Liveness probe that also reports database connectivity."""

    return HealthCheckResponse(
        status="OK",
        database="connected" if connection.is_ready() else "disconnected",
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/api/profile",
    response_model=Profile,
    summary="Get the demo profile, creating it on first access",
    tags=["Profiles"],
    dependencies=[Depends(require_database)],
    responses=DATA_ERROR_RESPONSES,
)
async def get_profile(
    store: Annotated[ProfileStore, Depends(get_profile_store)],
):
    try:
        return await store.fetch_or_create_demo()
    except Exception as exc:
        return _store_failure(exc, "fetching the profile")


@router.post(
    "/api/update-profile",
    response_model=UpdateProfileResponse,
    summary="Create or update a profile identified by email",
    tags=["Profiles"],
    dependencies=[Depends(require_database)],
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        **DATA_ERROR_RESPONSES,
    },
)
async def update_profile(
    body: UpdateProfileRequest,
    store: Annotated[ProfileStore, Depends(get_profile_store)],
):
    """Upsert the profile matching ``body.email``.

    Validation problems map to 400, lost connectivity to 503 and anything
    else to 500.
    """
    try:
        profile = await store.upsert(body.email, name=body.name, bio=body.bio)
    except ProfileValidationError as exc:
        logger.warning("Profile validation failed: %s", exc.errors)
        return error_response(
            status.HTTP_400_BAD_REQUEST, exc.message, details=exc.errors
        )
    except Exception as exc:
        return _store_failure(exc, "updating the profile")

    return UpdateProfileResponse(success=True, user=profile)


@router.get(
    "/api/users",
    response_model=list[Profile],
    summary="List all profiles",
    tags=["Profiles"],
    dependencies=[Depends(require_database)],
    responses=DATA_ERROR_RESPONSES,
)
async def list_users(
    store: Annotated[ProfileStore, Depends(get_profile_store)],
):
    try:
        return await store.list_all()
    except Exception as exc:
        return _store_failure(exc, "listing profiles")
