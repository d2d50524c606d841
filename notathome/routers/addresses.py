"""
Addresses Router

Recording of not-at-home addresses during a session, and administrative
corrections afterwards.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, status

from notathome.core.auth import CurrentActiveUser, ensure_manager, ensure_member
from notathome.models.contracts.address import (
    AddressCreate,
    AddressFields,
    AddressPublic,
    AddressUpdate,
)
from notathome.routers.sessions import Lifecycle, Recording
from notathome.services.address_parser import parse_address

logger = logging.getLogger(__name__)

router = APIRouter(tags=["addresses"])


@router.get("/api/sessions/{session_id}/addresses", response_model=list[AddressPublic])
async def list_addresses(
    session_id: UUID,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
    recording: Recording,
) -> list[AddressPublic]:
    """
    List addresses recorded in a session, by block.

    Args:
        session_id: Session UUID
        current_user: Current authenticated user
        lifecycle: Session lifecycle manager
        recording: Address recording service

    Returns:
        Addresses ordered by block number, then recording time
    """
    session = await lifecycle.get_session(session_id)
    ensure_member(current_user, session.congregation_id)

    addresses = await recording.list_addresses(session_id)
    return [AddressPublic.model_validate(a) for a in addresses]


@router.post(
    "/api/sessions/{session_id}/addresses",
    response_model=AddressPublic,
    status_code=status.HTTP_201_CREATED,
)
async def record_address(
    session_id: UUID,
    data: AddressCreate,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
    recording: Recording,
) -> AddressPublic:
    """
    Record a not-at-home address. Rejected once the session has ended.
    """
    session = await lifecycle.get_session(session_id)
    ensure_member(current_user, session.congregation_id)

    address = await recording.record_address(session_id, current_user.user_id, data)
    return AddressPublic.model_validate(address)


@router.get("/api/addresses/{address_id}/fields", response_model=AddressFields)
async def get_address_fields(
    address_id: UUID,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
    recording: Recording,
) -> AddressFields:
    """Structured form of a recorded address, to pre-fill the edit form."""
    address = await recording.get_address(address_id)
    session = await lifecycle.get_session(address.session_id)
    ensure_manager(current_user, session.congregation_id)

    return parse_address(address.address or "")


@router.put("/api/addresses/{address_id}", response_model=AddressPublic)
async def update_address(
    address_id: UUID,
    data: AddressUpdate,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
    recording: Recording,
) -> AddressPublic:
    """Correct a recorded address."""
    address = await recording.get_address(address_id)
    session = await lifecycle.get_session(address.session_id)
    ensure_manager(current_user, session.congregation_id)

    address = await recording.update_address(address_id, data)
    return AddressPublic.model_validate(address)


@router.delete("/api/addresses/{address_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_address(
    address_id: UUID,
    current_user: CurrentActiveUser,
    lifecycle: Lifecycle,
    recording: Recording,
) -> None:
    """Remove a recorded address."""
    address = await recording.get_address(address_id)
    session = await lifecycle.get_session(address.session_id)
    ensure_manager(current_user, session.congregation_id)

    await recording.delete_address(address_id)
