"""
Recorded address contracts (API request/response schemas).
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AddressCreate(BaseModel):
    """Address recording request model."""

    block_number: int = Field(..., ge=1)
    address: str | None = Field(None, max_length=1000)
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def require_address_or_coordinates(self) -> "AddressCreate":
        has_text = bool(self.address and self.address.strip())
        has_coordinates = self.latitude is not None and self.longitude is not None
        if not has_text and not has_coordinates:
            raise ValueError("Either an address or a latitude/longitude pair is required")
        return self


class AddressFields(BaseModel):
    """Structured form of a free-text address."""

    unit_number: str = ""
    house_number: str = ""
    street_name: str = ""
    suburb: str = ""


class AddressUpdate(BaseModel):
    """
    Address edit request model.

    Either ``address`` or ``address_fields`` may be given; the fields are formatted into
    a single line. Omitted values are left unchanged.
    """

    block_number: int | None = Field(None, ge=1)
    address: str | None = Field(None, min_length=1, max_length=1000)
    address_fields: AddressFields | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)


class AddressPublic(BaseModel):
    """Recorded address response model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    block_number: int
    address: str | None
    latitude: float | None
    longitude: float | None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime
