"""Pydantic schemas for channels and their routing aliases."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class ChannelCreate(BaseModel):
    slug: str = Field(min_length=1, max_length=128, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    display_name: str = Field(min_length=1, max_length=256)
    partition_name: Optional[str] = Field(default=None, max_length=63)
    instance_name: Optional[str] = Field(default=None, max_length=256)
    aliases: list[str] = Field(default_factory=list)
    tracks_read: bool = True


class ChannelUpdate(BaseModel):
    """Rename or relabel a channel. A new partition_name relocates the partition."""

    slug: Optional[str] = Field(
        default=None, min_length=1, max_length=128, pattern=r"^[a-z0-9][a-z0-9_-]*$"
    )
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=256)
    partition_name: Optional[str] = Field(default=None, max_length=63)
    instance_name: Optional[str] = Field(default=None, max_length=256)


class ChannelAliasCreate(BaseModel):
    alias: str = Field(min_length=1, max_length=256)


class ChannelRead(BaseModel):
    id: str
    slug: str
    display_name: str
    instance_name: Optional[str] = None
    partition_name: str
    tracks_read: bool
    aliases: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("aliases", mode="before")
    @classmethod
    def _alias_strings(cls, value: Any) -> list[str]:
        return [getattr(a, "alias", a) for a in (value or [])]
