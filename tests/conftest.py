"""Shared fixtures: in-memory database, channel router, local blob storage, API client."""

from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers mapped tables on Base.metadata
from app.adapters.evolution import EvolutionAdapter
from app.core.routing import ChannelRouter, load_aliases, load_routes
from app.db import Base, get_db
from app.services.channel_service import ChannelService
from app.services.media_offload_service import MediaOffloadService
from app.services.realtime import RealtimeHub
from app.services.storage import LocalBackend

pytest_plugins = ["tests.fixtures.webhook_fixtures"]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def router(db: Session) -> ChannelRouter:
    return ChannelRouter(
        default_slug="default",
        default_partition="default_conversas",
        loader=lambda: (load_routes(db), load_aliases(db)),
    )


@pytest.fixture
def channel_service(db: Session, router: ChannelRouter) -> ChannelService:
    return ChannelService(db, router)


@pytest.fixture
def default_channel(channel_service: ChannelService):
    return channel_service.ensure_default_channel()


@pytest.fixture
def storage(tmp_path) -> LocalBackend:
    return LocalBackend(
        root=str(tmp_path / "media"), url_prefix="http://testserver/media-files"
    )


@pytest.fixture
def offloader(storage: LocalBackend) -> MediaOffloadService:
    return MediaOffloadService(
        storage,
        upload_timeout=2.0,
        batch_size=2,
        concurrency=2,
        item_delay=0,
        batch_delay=0,
    )


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture
def adapter() -> EvolutionAdapter:
    return EvolutionAdapter(
        api_url="http://gateway.test",
        api_key="secret",
        ai_persona_names=["yelena", "yelena-ai"],
    )


@pytest.fixture
def client(db, router, storage, hub, adapter, default_channel) -> Iterator[TestClient]:
    """API client bound to the test database, router, storage and hub."""
    from app.main import create_app
    from app.routers.utils import dependencies

    app = create_app(testing=True)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_channel_router] = lambda: router
    app.dependency_overrides[dependencies.get_storage] = lambda: storage
    app.dependency_overrides[dependencies.get_hub] = lambda: hub
    app.dependency_overrides[dependencies.get_gateway_adapter] = lambda: adapter
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
