"""
Territory map ORM model.

Numbered maps a congregation works through. The image itself lives in
external object storage; only its URL is kept here.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from notathome.models.orm.base import Base

if TYPE_CHECKING:
    from notathome.models.orm.congregation import Congregation


class TerritoryMap(Base):
    """Territory map database table."""

    __tablename__ = "territory_maps"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    congregation_id: Mapped[UUID] = mapped_column(
        ForeignKey("congregations.id", ondelete="CASCADE")
    )
    map_number: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    image_url: Mapped[str | None] = mapped_column(String(2048), default=None)
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

    congregation: Mapped["Congregation"] = relationship(back_populates="territory_maps")

    __table_args__ = (
        UniqueConstraint(
            "congregation_id", "map_number", name="uq_territory_maps_congregation_number"
        ),
    )
