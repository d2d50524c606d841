"""
Congregation contracts (API request/response schemas).
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CongregationRequest(BaseModel):
    """Congregation registration request model."""

    name: str = Field(..., min_length=1, max_length=255)
    contact_email: str | None = Field(None, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")


class CongregationPublic(BaseModel):
    """Congregation public response model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    contact_email: str | None
    status: str
    created_at: datetime
    updated_at: datetime


class TerritoryMapCreate(BaseModel):
    """Territory map creation request model."""

    map_number: int = Field(..., ge=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    image_url: str | None = Field(None, max_length=2048)


class TerritoryMapPublic(BaseModel):
    """Territory map public response model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    congregation_id: UUID
    map_number: int
    name: str
    description: str | None
    image_url: str | None
    created_at: datetime
    updated_at: datetime
