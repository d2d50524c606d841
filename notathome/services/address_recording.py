"""
Address Recording Service

Records not-at-home addresses against a session, lets congregation admins
correct or remove them, and renders the plain-text session report that is
shared once a session is worked.
"""

import logging
from collections import defaultdict
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from notathome.core.errors import NotFound, SessionEnded, SessionExpired, storage_guard
from notathome.core.pubsub import Publisher, get_connection_manager
from notathome.models.contracts.address import AddressCreate, AddressUpdate
from notathome.models.orm.address import NotAtHomeAddress
from notathome.models.orm.outreach_session import OutreachSession
from notathome.repositories.address import AddressRepository
from notathome.repositories.outreach_session import OutreachSessionRepository
from notathome.services.address_parser import format_address
from notathome.services.live_updates import LiveUpdateChannel
from notathome.services.session_lifecycle import Clock, utcnow

logger = logging.getLogger(__name__)


def render_session_report(
    session: OutreachSession,
    addresses: list[NotAtHomeAddress],
    congregation_name: str,
) -> str:
    """
    Render a session and its addresses as shareable plain text.

    Addresses are grouped under an underlined ``Block N`` heading in block
    order; records without a text address show their coordinates.
    """
    created = session.created_at
    text = f"Not At Home - {congregation_name}\n"
    text += f"Session: {session.code} - Map: {session.map_number or 'N/A'}\n"
    text += f"Date: {created:%Y-%m-%d} - Time: {created:%H:%M:%S}\n\n"

    if not addresses:
        return text + "\nNo addresses recorded for this session."

    by_block: dict[int, list[NotAtHomeAddress]] = defaultdict(list)
    for address in addresses:
        by_block[address.block_number].append(address)

    for block_number in sorted(by_block):
        title = f"Block {block_number}"
        text += f"\n\n{title}\n{'-' * len(title)}\n"
        for address in by_block[block_number]:
            if address.address:
                text += f"\n{address.address}"
            elif address.latitude is not None and address.longitude is not None:
                text += f"\nLat: {address.latitude:.6f}, Lng: {address.longitude:.6f}"

    return text


class AddressRecordingService:
    """Service for recorded addresses of a session."""

    def __init__(
        self,
        sessions: OutreachSessionRepository,
        addresses: AddressRepository,
        live_updates: LiveUpdateChannel,
        *,
        clock: Clock = utcnow,
    ):
        self.sessions = sessions
        self.addresses = addresses
        self.live_updates = live_updates
        self.clock = clock

    async def _get_session(self, session_id: UUID) -> OutreachSession:
        session = await self.sessions.get_by_id(session_id)
        if session is None:
            raise NotFound("Session not found", session_id=session_id)
        return session

    async def get_address(self, address_id: UUID) -> NotAtHomeAddress:
        """
        Get an address by ID.

        Raises:
            NotFound: If the address does not exist
        """
        async with storage_guard("get_address"):
            address = await self.addresses.get_by_id(address_id)
        if address is None:
            raise NotFound("Address not found", address_id=address_id)
        return address

    async def record_address(
        self, session_id: UUID, user_id: UUID, data: AddressCreate
    ) -> NotAtHomeAddress:
        """
        Record an address against a session that is still running.

        Raises:
            NotFound: The session does not exist
            SessionEnded: The session has been ended
            SessionExpired: The session is past its expiry
        """
        async with storage_guard("record_address"):
            session = await self._get_session(session_id)
            now = self.clock()
            if not session.is_active:
                raise SessionEnded(session_id=session_id)
            if session.is_expired(now):
                raise SessionExpired(session_id=session_id)

            address = await self.addresses.create(
                NotAtHomeAddress(
                    session_id=session_id,
                    block_number=data.block_number,
                    address=data.address.strip() if data.address else None,
                    latitude=data.latitude,
                    longitude=data.longitude,
                    created_by=user_id,
                    created_at=now,
                    updated_at=now,
                )
            )

        logger.info(
            f"Address recorded in block {address.block_number} of session {session_id}",
            extra={"session_id": str(session_id), "user_id": str(user_id)},
        )
        await self.live_updates.publish_address_recorded(address)
        return address

    async def list_addresses(self, session_id: UUID) -> list[NotAtHomeAddress]:
        """
        Addresses of a session ordered by block, then recording time.

        Raises:
            NotFound: The session does not exist
        """
        async with storage_guard("list_addresses"):
            await self._get_session(session_id)
            return await self.addresses.list_for_session(session_id)

    async def update_address(self, address_id: UUID, data: AddressUpdate) -> NotAtHomeAddress:
        """
        Apply an administrative correction. Structured fields take precedence
        over free text; omitted values stay as they are.

        Raises:
            NotFound: The address does not exist
        """
        async with storage_guard("update_address"):
            address = await self.addresses.get_by_id(address_id)
            if address is None:
                raise NotFound("Address not found", address_id=address_id)

            if data.block_number is not None:
                address.block_number = data.block_number
            if data.address_fields is not None:
                address.address = format_address(data.address_fields) or None
            elif data.address is not None:
                address.address = data.address.strip()
            if data.latitude is not None:
                address.latitude = data.latitude
            if data.longitude is not None:
                address.longitude = data.longitude
            address.updated_at = self.clock()

            address = await self.addresses.update(address)

        logger.info(f"Address updated: {address_id}", extra={"session_id": str(address.session_id)})
        return address

    async def delete_address(self, address_id: UUID) -> None:
        """
        Remove a recorded address.

        Raises:
            NotFound: The address does not exist
        """
        async with storage_guard("delete_address"):
            address = await self.addresses.get_by_id(address_id)
            if address is None:
                raise NotFound("Address not found", address_id=address_id)
            session_id = address.session_id
            await self.addresses.delete(address)

        logger.info(f"Address deleted: {address_id}", extra={"session_id": str(session_id)})

    async def export_session(self, session_id: UUID) -> str:
        """
        Render the shareable report of a session.

        Raises:
            NotFound: The session does not exist
        """
        async with storage_guard("export_session"):
            session = await self.sessions.get_with_congregation(session_id)
            if session is None:
                raise NotFound("Session not found", session_id=session_id)
            addresses = await self.addresses.list_for_session(session_id)
        congregation = session.congregation
        name = congregation.name if congregation is not None else "Unknown congregation"
        return render_session_report(session, addresses, name)


def get_address_recording(
    db: AsyncSession, publish: Publisher | None = None
) -> AddressRecordingService:
    """Build an AddressRecordingService for a database session."""
    manager = get_connection_manager()
    return AddressRecordingService(
        OutreachSessionRepository(db),
        AddressRepository(db),
        LiveUpdateChannel(publish or manager.broadcast, manager, db=db),
    )
