from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.adapters.base import BaseGatewayAdapter
from app.adapters.evolution import build_evolution_adapter
from app.core.app_state import state
from app.core.routing import ChannelRoute, ChannelRouter
from app.db import get_db
from app.exceptions import UnknownChannel
from app.models.channel import Channel
from app.services.channel_service import ChannelService
from app.services.realtime import RealtimeHub
from app.services.storage import StorageBackend
from app.workers.llm import Summarizer, build_summarizer_from_env


def get_channel_router() -> ChannelRouter:
    return state.router


def get_storage() -> StorageBackend:
    return state.storage


def get_hub() -> RealtimeHub:
    return state.hub


def get_gateway_adapter() -> BaseGatewayAdapter:
    return build_evolution_adapter()


def get_summarizer() -> Summarizer:
    return build_summarizer_from_env()


def get_channel_route(
    channel_key: str,
    router: ChannelRouter = Depends(get_channel_router),
) -> ChannelRoute:
    """FastAPI dependency resolving a channel key (id, slug, instance or alias)."""
    try:
        return router.require(channel_key)
    except UnknownChannel as e:
        raise HTTPException(status_code=404, detail="Channel not found") from e


def get_channel_by_id(
    channel_id: str,
    db: Session = Depends(get_db),
    router: ChannelRouter = Depends(get_channel_router),
) -> Channel:
    """FastAPI dependency to get a channel by ID."""
    channel = ChannelService(db, router).get_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel
