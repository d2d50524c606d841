"""
Congregation ORM model.

The tenant boundary: owns sessions, territory maps and user role assignments.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from notathome.models.enums import CongregationStatus
from notathome.models.orm.base import Base

if TYPE_CHECKING:
    from notathome.models.orm.outreach_session import OutreachSession
    from notathome.models.orm.territory_map import TerritoryMap


class Congregation(Base):
    """Congregation database table."""

    __tablename__ = "congregations"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    contact_email: Mapped[str | None] = mapped_column(String(320), default=None)
    status: Mapped[str] = mapped_column(
        String(20),
        default=CongregationStatus.PENDING.value,
        server_default=CongregationStatus.PENDING.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=text("NOW()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=text("NOW()"),
        onupdate=lambda: datetime.now(UTC),
    )

    # Relationships
    sessions: Mapped[list["OutreachSession"]] = relationship(back_populates="congregation")
    territory_maps: Mapped[list["TerritoryMap"]] = relationship(
        back_populates="congregation", cascade="all, delete-orphan"
    )

    @property
    def is_active(self) -> bool:
        """Only approved congregations may run sessions."""
        return self.status == CongregationStatus.ACTIVE.value

    __table_args__ = (Index("ix_congregations_status", "status"),)
