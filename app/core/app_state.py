from app.config import get_settings
from app.core.routing import ChannelRouter
from app.services.realtime import RealtimeHub
from app.services.storage import StorageBackend, build_storage_backend


class AppState:
    """Process-wide collaborators shared by routers, commands and tasks."""

    def __init__(self) -> None:
        settings = get_settings()
        self.router = ChannelRouter(
            default_slug=settings.default_channel_slug,
            default_partition=settings.default_partition,
            static_aliases=settings.channel_static_aliases,
        )
        self.hub = RealtimeHub()
        self._storage: StorageBackend | None = None

    @property
    def storage(self) -> StorageBackend:
        if self._storage is None:
            self._storage = build_storage_backend()
        return self._storage

    @storage.setter
    def storage(self, backend: StorageBackend) -> None:
        self._storage = backend


state = AppState()
