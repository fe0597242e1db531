from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from fastapi_pagination import add_pagination

from app.config import get_settings
from app.core.app_state import state
from app.infra.logging_config import LoggingConfig, get_logger
from app.routers import (
    channels_router,
    conversations_router,
    outbound,
    realtime_router,
    system,
    webhooks,
)
from app.services.channel_service import ChannelService
from app.utils.db.db_session_helper import db_session

MEDIA_MOUNT_PATH = "/media-files"

logger = get_logger()


def _ensure_default_channel() -> None:
    try:
        with db_session() as db:
            channel = ChannelService(db, state.router).ensure_default_channel()
        logger.info("Default channel %s ready (%s)", channel.slug, channel.partition_name)
    except Exception as e:
        # The webhook path still answers; stores fail until the database is back
        logger.error("Could not ensure the default channel: %s", e)


def create_app(testing: bool = False) -> FastAPI:
    settings = get_settings()
    LoggingConfig()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if not testing:
            _ensure_default_channel()
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.include_router(webhooks.router)
    app.include_router(webhooks.legacy_router)
    app.include_router(channels_router.channels_router)
    app.include_router(conversations_router.conversations_router)
    app.include_router(outbound.router)
    app.include_router(system.router)
    app.include_router(realtime_router.router)

    if settings.storage_backend == "local":
        app.mount(
            MEDIA_MOUNT_PATH,
            StaticFiles(directory=settings.storage_local_root, check_dir=False),
            name="media-files",
        )

    add_pagination(app)
    return app


app = create_app()
