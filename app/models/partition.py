"""
Physical layout of a channel message partition.

Partitions are created at runtime (one table per channel), so they are
described with SQLAlchemy Core instead of a mapped class.
"""

from __future__ import annotations

import re
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

PARTITION_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,62}$")


def is_valid_partition_name(name: str) -> bool:
    return bool(PARTITION_NAME_PATTERN.match(name or ""))


def partition_name_for_slug(slug: str) -> str:
    """'souto-soares' -> 'souto_soares_conversas'."""
    base = re.sub(r"[^a-z0-9]+", "_", slug.lower()).strip("_") or "channel"
    if not base[0].isalpha():
        base = f"c_{base}"
    return f"{base[:52]}_conversas"


def build_partition_table(
    name: str,
    tracks_read: bool = True,
    metadata: Optional[MetaData] = None,
) -> Table:
    """Describe the message table for one channel. Raises ValueError on unsafe names."""
    if not is_valid_partition_name(name):
        raise ValueError(f"Invalid partition name: {name!r}")
    columns = [
        Column("id", Integer, primary_key=True, autoincrement=True),
        # Provider message id; unique so a webhook retry cannot insert twice
        Column("provider_message_id", String(256), nullable=True, unique=True),
        Column("session_id", String(256), nullable=False),
        Column("contact_name", String(256), nullable=True),
        Column("content", Text, nullable=True),
        Column("sender_kind", String(32), nullable=False),
        Column("media_type", String(16), nullable=False, default="text"),
        Column("media_ref", Text, nullable=True),
        # Inline base64 waiting for the offload batch
        Column("media_payload", Text, nullable=True),
        Column("media_mime", String(128), nullable=True),
        Column("created_at", DateTime(timezone=True), nullable=False),
    ]
    if tracks_read:
        columns.append(Column("is_read", Boolean, nullable=True))
    return Table(
        name,
        metadata if metadata is not None else MetaData(),
        *columns,
        Index(f"ix_{name}_session_created", "session_id", "created_at"),
        Index(f"ix_{name}_created", "created_at"),
    )
