"""Initial congregation, session and address tables

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "congregations",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("contact_email", sa.String(length=320), nullable=True),
        sa.Column(
            "status", sa.String(length=20), server_default="pending", nullable=False
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_congregations_status", "congregations", ["status"], unique=False)

    op.create_table(
        "sessions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("code", sa.String(length=6), nullable=False),
        sa.Column("congregation_id", sa.UUID(), nullable=False),
        sa.Column("created_by", sa.UUID(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("map_number", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["congregation_id"], ["congregations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sessions_congregation_id", "sessions", ["congregation_id"], unique=False)
    op.create_index("ix_sessions_code", "sessions", ["code"], unique=False)
    op.create_index(
        "uq_sessions_active_code",
        "sessions",
        ["code"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "ix_sessions_active_expires_at", "sessions", ["is_active", "expires_at"], unique=False
    )

    op.create_table(
        "session_participants",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("session_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_session_participants_session_id", "session_participants", ["session_id"], unique=False
    )
    op.create_index(
        "ix_session_participants_user_id", "session_participants", ["user_id"], unique=False
    )

    op.create_table(
        "not_at_home_addresses",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("session_id", sa.UUID(), nullable=False),
        sa.Column("block_number", sa.Integer(), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "address IS NOT NULL OR (latitude IS NOT NULL AND longitude IS NOT NULL)",
            name="ck_not_at_home_addresses_location",
        ),
    )
    op.create_index(
        "ix_not_at_home_addresses_session_block",
        "not_at_home_addresses",
        ["session_id", "block_number"],
        unique=False,
    )

    op.create_table(
        "territory_maps",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("congregation_id", sa.UUID(), nullable=False),
        sa.Column("map_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(length=2048), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["congregation_id"], ["congregations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "congregation_id", "map_number", name="uq_territory_maps_congregation_number"
        ),
    )


def downgrade() -> None:
    op.drop_table("territory_maps")
    op.drop_index("ix_not_at_home_addresses_session_block", table_name="not_at_home_addresses")
    op.drop_table("not_at_home_addresses")
    op.drop_index("ix_session_participants_user_id", table_name="session_participants")
    op.drop_index("ix_session_participants_session_id", table_name="session_participants")
    op.drop_table("session_participants")
    op.drop_index("ix_sessions_active_expires_at", table_name="sessions")
    op.drop_index("uq_sessions_active_code", table_name="sessions")
    op.drop_index("ix_sessions_code", table_name="sessions")
    op.drop_index("ix_sessions_congregation_id", table_name="sessions")
    op.drop_table("sessions")
    op.drop_index("ix_congregations_status", table_name="congregations")
    op.drop_table("congregations")
