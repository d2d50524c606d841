"""
Session participant ORM model.

Append-only join records; a user joining twice gets two rows.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from notathome.models.orm.base import Base

if TYPE_CHECKING:
    from notathome.models.orm.outreach_session import OutreachSession


class SessionParticipant(Base):
    """Session participant database table."""

    __tablename__ = "session_participants"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    session_id: Mapped[UUID] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"))
    user_id: Mapped[UUID] = mapped_column()
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=text("NOW()"),
    )

    session: Mapped["OutreachSession"] = relationship(back_populates="participants")

    __table_args__ = (
        Index("ix_session_participants_session_id", "session_id"),
        Index("ix_session_participants_user_id", "user_id"),
    )
