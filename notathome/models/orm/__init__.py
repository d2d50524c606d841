"""SQLAlchemy ORM Models for Not At Home.

Pure database models using SQLAlchemy 2.0 declarative style.
These models define the database schema and relationships.
"""

from notathome.models.orm.address import NotAtHomeAddress
from notathome.models.orm.base import Base
from notathome.models.orm.congregation import Congregation
from notathome.models.orm.outreach_session import OutreachSession
from notathome.models.orm.session_participant import SessionParticipant
from notathome.models.orm.territory_map import TerritoryMap

__all__ = [
    # Base
    "Base",
    # Congregations
    "Congregation",
    "TerritoryMap",
    # Sessions
    "OutreachSession",
    "SessionParticipant",
    # Addresses
    "NotAtHomeAddress",
]
