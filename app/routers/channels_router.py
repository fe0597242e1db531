"""Channels API: registry CRUD and routing aliases."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from app.core.routing import ChannelRouter
from app.db import get_db
from app.exceptions import ChannelConflict, PartitionRelocationError
from app.models.channel import Channel
from app.routers.utils.dependencies import get_channel_by_id, get_channel_router
from app.schemas.channel import (
    ChannelAliasCreate,
    ChannelCreate,
    ChannelRead,
    ChannelUpdate,
)
from app.services.channel_service import ChannelService

channels_router = APIRouter(prefix="/channels", tags=["Channel"])


def _conflict(e: ChannelConflict) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


@channels_router.get("", response_model=Page[ChannelRead])
def list_channels(
    params: Params = Depends(),
    db: Session = Depends(get_db),
    router: ChannelRouter = Depends(get_channel_router),
) -> Page[ChannelRead]:
    """List registered channels, ordered by slug."""
    return paginate(ChannelService(db, router).get_channels_query(), params=params)


@channels_router.post("", response_model=ChannelRead, status_code=201)
def create_channel(
    data: ChannelCreate,
    db: Session = Depends(get_db),
    router: ChannelRouter = Depends(get_channel_router),
) -> ChannelRead:
    """Register a channel and create its partition."""
    try:
        channel = ChannelService(db, router).create_channel(data)
    except ChannelConflict as e:
        raise _conflict(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return ChannelRead.model_validate(channel)


@channels_router.get("/{channel_id}", response_model=ChannelRead)
def get_channel(channel: Channel = Depends(get_channel_by_id)) -> ChannelRead:
    return ChannelRead.model_validate(channel)


@channels_router.patch("/{channel_id}", response_model=ChannelRead)
def update_channel(
    data: ChannelUpdate,
    channel: Channel = Depends(get_channel_by_id),
    db: Session = Depends(get_db),
    router: ChannelRouter = Depends(get_channel_router),
) -> ChannelRead:
    """Rename/relabel a channel; a new partition_name moves its messages table."""
    try:
        updated = ChannelService(db, router).update_channel(channel.id, data)
    except ChannelConflict as e:
        raise _conflict(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except PartitionRelocationError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    if updated is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return ChannelRead.model_validate(updated)


@channels_router.delete("/{channel_id}", status_code=204)
def delete_channel(
    channel: Channel = Depends(get_channel_by_id),
    drop_partition: bool = Query(False),
    db: Session = Depends(get_db),
    router: ChannelRouter = Depends(get_channel_router),
) -> Response:
    """Remove a channel; its partition is kept unless drop_partition is set."""
    try:
        ChannelService(db, router).delete_channel(
            channel.id, drop_partition=drop_partition
        )
    except ChannelConflict as e:
        raise _conflict(e) from e
    return Response(status_code=204)


@channels_router.post("/{channel_id}/aliases", response_model=ChannelRead)
def add_channel_alias(
    data: ChannelAliasCreate,
    channel: Channel = Depends(get_channel_by_id),
    db: Session = Depends(get_db),
    router: ChannelRouter = Depends(get_channel_router),
) -> ChannelRead:
    try:
        updated = ChannelService(db, router).add_alias(channel.id, data.alias)
    except ChannelConflict as e:
        raise _conflict(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return ChannelRead.model_validate(updated)
