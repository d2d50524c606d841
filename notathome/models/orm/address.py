"""
Not-at-home address ORM model.

Addresses recorded by field participants during a session. Deleted with the
parent session.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from notathome.models.orm.base import Base

if TYPE_CHECKING:
    from notathome.models.orm.outreach_session import OutreachSession


class NotAtHomeAddress(Base):
    """Recorded address database table."""

    __tablename__ = "not_at_home_addresses"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    session_id: Mapped[UUID] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"))
    block_number: Mapped[int] = mapped_column(Integer)
    address: Mapped[str | None] = mapped_column(Text, default=None)
    latitude: Mapped[float | None] = mapped_column(Float, default=None)
    longitude: Mapped[float | None] = mapped_column(Float, default=None)
    created_by: Mapped[UUID | None] = mapped_column(default=None)
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

    session: Mapped["OutreachSession"] = relationship(back_populates="addresses")

    __table_args__ = (
        Index("ix_not_at_home_addresses_session_block", "session_id", "block_number"),
        CheckConstraint(
            "address IS NOT NULL OR (latitude IS NOT NULL AND longitude IS NOT NULL)",
            name="ck_not_at_home_addresses_location",
        ),
    )
