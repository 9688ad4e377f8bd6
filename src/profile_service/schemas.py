"""Pydantic data models for the Profile service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Profile(BaseModel):
    """A stored profile document as returned to clients."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id", description="Identifier assigned by MongoDB.")
    name: str
    email: str
    bio: str = ""
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_object_id(cls, value: object) -> object:
        return value if isinstance(value, str) else str(value)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # BSON dates carry no zone; they are always UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class UpdateProfileRequest(BaseModel):
    """Body of `POST /api/update-profile`."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    email: Optional[str] = None
    bio: Optional[str] = None


class UpdateProfileResponse(BaseModel):
    """Response schema returned after a successful upsert."""

    success: bool = True
    user: Profile


class HealthCheckResponse(BaseModel):
    """Schema used by the liveness probe endpoint."""

    status: str = Field(..., examples=["OK"])
    database: Literal["connected", "disconnected"]
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Error payload shared by all endpoints."""

    error: str
    message: Optional[str] = None
    details: Optional[dict[str, str]] = None
