"""
Outreach session contracts (API request/response schemas).
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SessionCreate(BaseModel):
    """Session creation request model."""

    congregation_id: UUID | None = None  # Defaults to the caller's congregation
    map_number: int | None = Field(None, ge=1)


class SessionMapAssign(BaseModel):
    """Territory map assignment request model."""

    map_number: int = Field(..., ge=1)


class SessionJoinRequest(BaseModel):
    """Join-by-code request model."""

    code: str = Field(..., min_length=4, max_length=6, pattern=r"^[0-9]+$")


class SessionPublic(BaseModel):
    """Session public response model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    congregation_id: UUID
    created_by: UUID
    created_at: datetime
    expires_at: datetime
    is_active: bool
    map_number: int | None = None


class SessionJoinResult(BaseModel):
    """What a participant needs to render the session view after joining."""

    session_id: UUID
    code: str
    map_number: int | None
    congregation_id: UUID
    congregation_name: str | None
    is_active: bool
    expires_at: datetime
    participant_recorded: bool


class ParticipantPublic(BaseModel):
    """Session participant response model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    user_id: UUID
    joined_at: datetime


class SweepResult(BaseModel):
    """Result of an expiration sweep."""

    ended_count: int
    message: str


class ActiveSessionSummary(SessionPublic):
    """A running session in the system-wide overview."""

    congregation_name: str | None = None
