"""
Enums for Not At Home models.
"""

from enum import Enum


class UserRole(str, Enum):
    """Roles carried in the identity token."""

    SYSTEM_ADMIN = "system_admin"  # Approves congregations, sees everything
    CONGREGATION_ADMIN = "congregation_admin"  # Runs sessions for one congregation
    PUBLISHER = "publisher"  # Field participant

    @classmethod
    def can_manage_sessions(cls, role: "UserRole") -> bool:
        """Check if role can create/end sessions and edit recorded addresses."""
        return role in (cls.SYSTEM_ADMIN, cls.CONGREGATION_ADMIN)


class CongregationStatus(str, Enum):
    """Registration state of a congregation."""

    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"


class SessionEvent(str, Enum):
    """Events published on the live update channels."""

    SESSION_CREATED = "session_created"
    SESSION_UPDATED = "session_updated"
    SESSION_DELETED = "session_deleted"
    ADDRESS_RECORDED = "address_recorded"
