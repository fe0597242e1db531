"""Add channels, channel_aliases and conversation_statuses tables

Revision ID: add_channels_and_statuses
Revises:
Create Date: 2026-10-18

Message partitions are not created here: the channel service creates one
table per channel at runtime.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "add_channels_and_statuses"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "channels",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("slug", sa.String(128), nullable=False),
        sa.Column("display_name", sa.String(256), nullable=False),
        sa.Column("instance_name", sa.String(256), nullable=True),
        sa.Column("partition_name", sa.String(63), nullable=False),
        sa.Column("tracks_read", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("instance_name"),
        sa.UniqueConstraint("partition_name"),
    )
    op.create_index("ix_channels_slug", "channels", ["slug"], unique=True)

    op.create_table(
        "channel_aliases",
        sa.Column("alias", sa.String(256), nullable=False),
        sa.Column("channel_id", sa.String(36), nullable=False),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("alias"),
    )
    op.create_index(
        "ix_channel_aliases_channel_id", "channel_aliases", ["channel_id"]
    )

    op.create_table(
        "conversation_statuses",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("channel_key", sa.String(128), nullable=False),
        sa.Column("session_id", sa.String(256), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="unread"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "channel_key", "session_id", name="uq_conversation_status_channel_session"
        ),
    )
    op.create_index(
        "ix_conversation_statuses_channel_key", "conversation_statuses", ["channel_key"]
    )
    op.create_index(
        "ix_conversation_statuses_status", "conversation_statuses", ["status"]
    )


def downgrade() -> None:
    op.drop_index("ix_conversation_statuses_status", table_name="conversation_statuses")
    op.drop_index(
        "ix_conversation_statuses_channel_key", table_name="conversation_statuses"
    )
    op.drop_table("conversation_statuses")
    op.drop_index("ix_channel_aliases_channel_id", table_name="channel_aliases")
    op.drop_table("channel_aliases")
    op.drop_index("ix_channels_slug", table_name="channels")
    op.drop_table("channels")
