"""Repositories for database access."""

from notathome.repositories.address import AddressRepository
from notathome.repositories.base import BaseRepository
from notathome.repositories.congregation import CongregationRepository, TerritoryMapRepository
from notathome.repositories.outreach_session import OutreachSessionRepository
from notathome.repositories.participant import SessionParticipantRepository

__all__ = [
    "BaseRepository",
    "AddressRepository",
    "CongregationRepository",
    "OutreachSessionRepository",
    "SessionParticipantRepository",
    "TerritoryMapRepository",
]
