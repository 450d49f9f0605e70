"""Application bootstrap and lifecycle management."""

import os
from typing import Protocol

import httpx

from .auth import TokenProvider, TokenStore, env_token_provider
from .backend import BackendClient
from .config import SyncSettings, resolve_db_path
from .connection import ConnectionManager
from .event_bus import EventBus
from .jobs import JobReconciliationEngine, PathCollection
from .logging_config import get_logger
from .models import BusMessage, ConnectionStatus, Topic, UserProfile
from .profile import UserProfileSync
from .storage import IStorage, Storage
from .telemetry import TelemetryQueue
from .transport import IPushTransport, SseTransport

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle of one sync session."""

    async def start(self) -> None:
        """Initialize components in dependency order and connect."""
        ...

    async def stop(self) -> None:
        """Logout: shutdown in reverse order."""
        ...

    def login(self, access_token: str) -> None:
        """Replace the session's access token and reconnect."""
        ...


class Application:
    """One signed-in sync session.

    Everything that would otherwise be process-wide state (the connection,
    its retry timer, the dedupe map, the job registry) hangs off this
    object, so a logout is just stop() and a new login a new instance.
    """

    def __init__(
        self,
        db_path: str | None = None,
        base_url: str | None = None,
        token_provider: TokenProvider | None = None,
        user_id: str | None = None,
        settings: SyncSettings | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        push_transport: IPushTransport | None = None,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._base_url = base_url
        # Without an injected provider the session owns its credentials
        self._tokens = TokenStore(env_token_provider())
        self._token_provider = token_provider or self._tokens.get_token
        self._user_id = user_id if user_id is not None else os.getenv("USER_ID")
        self._settings = settings or SyncSettings.from_env()
        self._http_transport = http_transport
        self._push_transport = push_transport

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._backend: BackendClient | None = None
        self._event_bus: EventBus | None = None
        self._telemetry: TelemetryQueue | None = None
        self._connection: ConnectionManager | None = None
        self._paths: PathCollection | None = None
        self._engine: JobReconciliationEngine | None = None
        self._profile_sync: UserProfileSync | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting sync session for user %s", self._user_id)

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. Backend client
        self._backend = BackendClient(
            base_url=self._base_url,
            token_provider=self._token_provider,
            transport=self._http_transport,
        )

        # 3. EventBus
        self._event_bus = EventBus()

        # 4. Telemetry (depends on Backend + Storage)
        self._telemetry = TelemetryQueue(
            self._backend, self._storage, self._settings.telemetry
        )
        await self._telemetry.start()
        logger.info("Telemetry queue started")

        # 5. Connection (depends on Backend, EventBus, Telemetry)
        transport = self._push_transport or SseTransport(self._backend.http)
        self._connection = ConnectionManager(
            transport,
            self._backend,
            self._event_bus,
            self._token_provider,
            settings=self._settings.connection,
            telemetry=self._telemetry,
        )

        # 6. Paths + job engine (depend on Backend, EventBus)
        self._paths = PathCollection(self._backend, self._settings.jobs.job_type)
        self._engine = JobReconciliationEngine(
            self._event_bus,
            self._backend,
            self._paths,
            user_id=self._user_id,
            settings=self._settings.jobs,
        )
        self._engine.start()

        # 7. Profile sync
        if self._user_id:
            self._profile_sync = UserProfileSync(
                self._event_bus, UserProfile(id=self._user_id)
            )
            self._profile_sync.start()

        # Membership does not survive a reconnect; rejoin on every open
        self._event_bus.subscribe(Topic.STATUS, self._on_status)

        self._connection.connect()
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._event_bus:
            self._event_bus.unsubscribe(Topic.STATUS, self._on_status)
        if self._profile_sync:
            self._profile_sync.stop()
        if self._engine:
            await self._engine.stop()
        if self._connection:
            await self._connection.stop()
        if self._telemetry:
            try:
                await self._telemetry.flush()
            except Exception as e:
                logger.warning("Final telemetry flush failed: %s", e)
            await self._telemetry.close()
        if self._backend:
            await self._backend.close()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")
        self._tokens.clear()

    def login(self, access_token: str) -> None:
        """Store a fresh access token and reconnect with it."""
        self._tokens.set_token(access_token)
        if self._connection:
            self._connection.connect()

    async def _on_status(self, message: BusMessage) -> None:
        if message.payload != ConnectionStatus.OPEN or not self._user_id:
            return
        if self._connection:
            await self._connection.subscribe(self._user_id)

    @property
    def tokens(self) -> TokenStore:
        return self._tokens

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def backend(self) -> BackendClient:
        if not self._backend:
            raise RuntimeError("Application not started")
        return self._backend

    @property
    def event_bus(self) -> EventBus:
        if not self._event_bus:
            raise RuntimeError("Application not started")
        return self._event_bus

    @property
    def telemetry(self) -> TelemetryQueue:
        """Get telemetry queue instance."""
        if not self._telemetry:
            raise RuntimeError("Application not started")
        return self._telemetry

    @property
    def connection(self) -> ConnectionManager:
        """Get connection manager instance."""
        if not self._connection:
            raise RuntimeError("Application not started")
        return self._connection

    @property
    def paths(self) -> PathCollection:
        if not self._paths:
            raise RuntimeError("Application not started")
        return self._paths

    @property
    def engine(self) -> JobReconciliationEngine:
        """Get job engine instance."""
        if not self._engine:
            raise RuntimeError("Application not started")
        return self._engine

    @property
    def profile(self) -> UserProfile | None:
        return self._profile_sync.profile if self._profile_sync else None
