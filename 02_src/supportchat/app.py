"""Application bootstrap and lifecycle management."""

from datetime import timedelta
from typing import Protocol

import httpx

from .auth import SessionResolver
from .clock import Clock, utc_now
from .config import Settings, resolve_db_path
from .logging_config import get_logger
from .presence import IPresenceLedger, PresenceLedger
from .push import INotifier, NullNotifier, PushNotifier
from .ratelimit import IRateLimiter, RateLimiter
from .storage import IStorage, Storage
from .sync import ISyncService, SyncService

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset data between test runs."""
        ...

    @property
    def storage(self) -> IStorage: ...

    @property
    def sync(self) -> ISyncService: ...

    @property
    def clock(self) -> Clock: ...

    @property
    def auth(self) -> SessionResolver: ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        settings: Settings | None = None,
        db_path: str | None = None,
        clock: Clock = utc_now,
        push_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings or Settings.from_env()
        self._db_path = resolve_db_path(
            self._settings.database_url if db_path is None else db_path
        )
        self._clock = clock
        self._push_client = push_client

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._presence: IPresenceLedger | None = None
        self._limiter: RateLimiter | None = None
        self._notifier: INotifier | None = None
        self._sync: ISyncService | None = None
        self._auth: SessionResolver | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized at %s", self._db_path)

        # 2. Presence (reads and writes through storage)
        self._presence = PresenceLedger(self._storage, clock=self._clock)

        # 3. Rate limiter (windows live in the configured limits backend)
        self._limiter = RateLimiter.from_uri(
            self._settings.ratelimit_storage_uri, clock=self._clock
        )

        # 4. Push notifier
        if self._settings.push_enabled:
            self._notifier = PushNotifier(
                self._storage,
                client=self._push_client,
                operator_name=self._settings.operator_name,
            )
        else:
            self._notifier = NullNotifier()
        logger.info("Push notifier initialized (enabled=%s)", self._settings.push_enabled)

        # 5. Sync service (depends on everything above)
        self._sync = SyncService(
            self._storage,
            self._presence,
            self._limiter,
            self._notifier,
            clock=self._clock,
        )

        # 6. Party resolver
        self._auth = SessionResolver(
            self._storage,
            self._presence,
            clock=self._clock,
            operator_name=self._settings.operator_name,
            session_ttl=timedelta(hours=self._settings.session_ttl_hours),
        )
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._notifier:
            await self._notifier.aclose()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Reset data between test runs."""
        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")
        if self._limiter:
            await self._limiter.reset()
        logger.info("Reset complete")

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def presence(self) -> IPresenceLedger:
        if not self._presence:
            raise RuntimeError("Application not started")
        return self._presence

    @property
    def limiter(self) -> IRateLimiter:
        if not self._limiter:
            raise RuntimeError("Application not started")
        return self._limiter

    @property
    def notifier(self) -> INotifier:
        if not self._notifier:
            raise RuntimeError("Application not started")
        return self._notifier

    @property
    def sync(self) -> ISyncService:
        """Get sync service instance."""
        if not self._sync:
            raise RuntimeError("Application not started")
        return self._sync

    @property
    def auth(self) -> SessionResolver:
        """Get party resolver instance."""
        if not self._auth:
            raise RuntimeError("Application not started")
        return self._auth
