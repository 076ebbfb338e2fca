"""DriveGateway: composition root wiring storage, drives and wrappers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import drivegate.models  # noqa: F401  registers tables on SQLModel.metadata
from drivegate.config import GatewayConfig
from drivegate.drive.cache import MemoryCacheManager
from drivegate.drive.chroot import ChrootDrive
from drivegate.drive.dispatcher import DispatcherDrive
from drivegate.drive.path_meta import PathMetaWrapper
from drivegate.drive.permission import PermissionResolver
from drivegate.drive.permission_wrapper import PermissionWrapper
from drivegate.events import ListenerContext, ListenerWrapper
from drivegate.registry import DriveUtils, default_registry
from drivegate.storage.drive_cache import DBCacheManager
from drivegate.storage.drives import DriveDataStore, DriveService, PathMountStore, drive_config
from drivegate.storage.path_meta import PathMetaService
from drivegate.storage.permissions import PathPermissionService
from drivegate.storage.users import UserService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable

    from sqlalchemy.ext.asyncio import AsyncEngine

    from drivegate.drive.cache import DriveCacheManager
    from drivegate.drive.path_meta import MergedPathMeta, PathMeta
    from drivegate.drive.permission import PermissionRule
    from drivegate.drive.protocol import Drive
    from drivegate.drive.session import Session
    from drivegate.events import DriveListener
    from drivegate.registry import DriveRegistry

logger = logging.getLogger(__name__)


class _PathMetaSource:
    """Merged path metadata looked up in a fresh session per call."""

    def __init__(self, gateway: DriveGateway) -> None:
        self._gateway = gateway

    async def merged(self, path: str) -> MergedPathMeta | None:
        async with self._gateway._session() as session:
            return await self._gateway.path_meta.merged(session, path)


class DriveGateway:
    """Unified access to every configured drive.

    Owns the database engine (unless one is passed in), the drive
    registry, the cache manager and the dispatcher.  Per-request drives
    come from :meth:`drive_for`, which stacks permission, path metadata
    and listener wrappers over the shared dispatcher.

    Usage::

        gateway = DriveGateway(config=GatewayConfig(data_dir="./data"))
        await gateway.init()
        drive = gateway.drive_for(Session(user="alice", groups=["staff"]))
        entries = await drive.list_dir("")
        await gateway.close()
    """

    def __init__(
        self,
        engine: AsyncEngine | None = None,
        *,
        config: GatewayConfig | None = None,
        registry: DriveRegistry | None = None,
    ) -> None:
        self.config = config or GatewayConfig()
        self.registry = registry or default_registry()
        self._owns_engine = engine is None
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._cache_manager: DriveCacheManager | None = None
        self._resolver = PermissionResolver(admin_group=self.config.admin_group)
        self._reload_lock = asyncio.Lock()
        self._closed = False

        self.drives = DriveService()
        self.permissions = PathPermissionService()
        self.path_meta = PathMetaService(ttl=self.config.path_meta_cache_ttl)
        self.users = UserService(self.permissions)
        self.dispatcher = DispatcherDrive(PathMountStore(self._session), temp_dir=self.config.temp_dir)

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    def _create_engine(self) -> AsyncEngine:
        data_dir = Path(self.config.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(f"sqlite+aiosqlite:///{data_dir / 'drivegate.db'}", echo=False)

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
            cursor = dbapi_connection.cursor()  # type: ignore[union-attr]
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        return engine

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        """Per-operation session: commit on success, roll back on error."""
        if self._session_factory is None:
            raise RuntimeError("DriveGateway.init() has not been called")
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Create tables, seed a fresh store, and load drives, mounts and rules."""
        if self._engine is None:
            self._engine = await asyncio.to_thread(self._create_engine)
        await asyncio.to_thread(Path(str(self.config.temp_dir)).mkdir, parents=True, exist_ok=True)
        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._session_factory = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)

        if self.config.cache_backend == "db":
            manager = DBCacheManager(self._session, clean_interval=self.config.cache_clean_interval)
            manager.start()
            self._cache_manager = manager
        else:
            self._cache_manager = MemoryCacheManager(self.config.memory_cache_capacity)

        async with self._session() as session:
            await self.users.bootstrap(
                session,
                admin_username=self.config.admin_username,
                admin_password=self.config.admin_password,
                admin_group=self.config.admin_group,
            )
        await self.reload_permissions()
        await self.reload_mounts()
        await self.reload_drives()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.dispatcher.dispose()
        if self._cache_manager is not None:
            await self._cache_manager.close()
        if self._owns_engine and self._engine is not None:
            await self._engine.dispose()

    async def __aenter__(self) -> DriveGateway:
        await self.init()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Reloads
    # ------------------------------------------------------------------

    def _utils_for(self, name: str) -> DriveUtils:
        manager = self._cache_manager
        assert manager is not None
        return DriveUtils(
            name=name,
            data=DriveDataStore(self._session, name),
            create_cache=lambda deserialize: manager.get_cache(name, deserialize),
            config=self.config,
        )

    async def reload_drives(self) -> None:
        """Rebuild every enabled drive from its stored config.

        A drive whose factory fails is logged and left out.
        """
        async with self._reload_lock:
            async with self._session() as session:
                records = await self.drives.list_drives(session)
            built: dict[str, Drive] = {}
            for record in records:
                if not record.enabled:
                    continue
                try:
                    built[record.name] = await self.registry.create(
                        record.type, drive_config(record), self._utils_for(record.name)
                    )
                except Exception:
                    logger.warning("Failed to create drive %s (%s)", record.name, record.type, exc_info=True)
            await self.dispatcher.set_drives(built)
        logger.info("Loaded %d of %d drives", len(built), len(records))

    async def reload_mounts(self) -> None:
        await self.dispatcher.reload_mounts()

    async def reload_permissions(self) -> None:
        async with self._session() as session:
            rules = await self.permissions.list_all(session)
        self._resolver = PermissionResolver(rules, admin_group=self.config.admin_group)
        logger.debug("Loaded %d permission rules", len(rules))

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def save_drive(
        self,
        name: str,
        drive_type: str,
        config: dict[str, Any],
        *,
        enabled: bool = True,
    ) -> None:
        """Store a drive's config and rebuild the drive set."""
        self.registry.get(drive_type)
        async with self._session() as session:
            await self.drives.save_drive(session, name, drive_type, config, enabled=enabled)
        await self.reload_drives()

    async def delete_drive(self, name: str) -> None:
        async with self._session() as session:
            await self.drives.delete_drive(session, name)
        await self.reload_drives()

    async def set_permissions(self, path: str, rules: Iterable[PermissionRule]) -> None:
        """Replace the rules of *path* and reload the resolver."""
        async with self._session() as session:
            await self.permissions.save_for_path(session, path, rules)
        await self.reload_permissions()

    async def set_path_meta(self, meta: PathMeta) -> None:
        async with self._session() as session:
            await self.path_meta.set(session, meta)

    async def delete_path_meta(self, path: str) -> None:
        async with self._session() as session:
            await self.path_meta.delete(session, path)

    async def authenticate(self, username: str, password: str) -> Session | None:
        async with self._session() as session:
            return await self.users.authenticate(session, username, password)

    # ------------------------------------------------------------------
    # Per-request drives
    # ------------------------------------------------------------------

    @property
    def root_drive(self) -> DispatcherDrive:
        """The unwrapped dispatcher; bypasses permissions."""
        return self.dispatcher

    def drive_for(self, session: Session, listeners: Iterable[DriveListener] = ()) -> Drive:
        """The virtual tree as *session* may see it."""
        drive: Drive = PermissionWrapper(self.dispatcher, self._resolver.for_session(session))
        drive = PathMetaWrapper(drive, _PathMetaSource(self), session)
        return ListenerWrapper(drive, listeners, ListenerContext(session=session))

    def chroot(self, session: Session, root: str, listeners: Iterable[DriveListener] = ()) -> Drive:
        """:meth:`drive_for` rebased so that *root* appears as ``""``."""
        return ChrootDrive(self.drive_for(session, listeners), root)
