"""
Outreach session ORM model.

A time-boxed unit of coordinated outreach, joined by a short numeric code.
Named OutreachSession to keep it apart from SQLAlchemy's own Session.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from notathome.models.orm.base import Base

if TYPE_CHECKING:
    from notathome.models.orm.address import NotAtHomeAddress
    from notathome.models.orm.congregation import Congregation
    from notathome.models.orm.session_participant import SessionParticipant


class OutreachSession(Base):
    """Outreach session database table."""

    __tablename__ = "sessions"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(6))
    congregation_id: Mapped[UUID] = mapped_column(ForeignKey("congregations.id"))
    created_by: Mapped[UUID] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=text("NOW()"),
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    map_number: Mapped[int | None] = mapped_column(Integer, default=None)

    # Relationships
    congregation: Mapped["Congregation"] = relationship(back_populates="sessions")
    participants: Mapped[list["SessionParticipant"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )
    addresses: Mapped[list["NotAtHomeAddress"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the session's expiry time has passed."""
        return (now or datetime.now(UTC)) >= self.expires_at

    def is_joinable(self, now: datetime | None = None) -> bool:
        """A session is joinable while active and unexpired."""
        return self.is_active and not self.is_expired(now)

    __table_args__ = (
        Index("ix_sessions_congregation_id", "congregation_id"),
        Index("ix_sessions_code", "code"),
        # Codes only need to be unique among active sessions
        Index(
            "uq_sessions_active_code",
            "code",
            unique=True,
            postgresql_where=text("is_active"),
        ),
        Index("ix_sessions_active_expires_at", "is_active", "expires_at"),
    )
