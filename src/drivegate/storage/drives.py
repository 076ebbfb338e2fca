"""Drive configuration, per-drive data and mount point persistence."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete
from sqlmodel import select

from drivegate.drive.dispatcher import Mount
from drivegate.drive.exceptions import BadRequestError, NotFoundError
from drivegate.drive.utils import clean_path
from drivegate.models.cache import DriveCacheRecord
from drivegate.models.drives import DriveDataRecord, DriveRecord, PathMountRecord

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def drive_config(record: DriveRecord) -> dict[str, Any]:
    """Decode the JSON config object of *record*."""
    try:
        config = json.loads(record.config or "{}")
    except json.JSONDecodeError as e:
        raise BadRequestError(f"Invalid config for drive {record.name}: {e}") from e
    if not isinstance(config, dict):
        raise BadRequestError(f"Config of drive {record.name} is not an object")
    return config


class DriveService:
    """CRUD over ``drives``.  Stateless; flushes but does not commit."""

    async def list_drives(self, session: AsyncSession) -> list[DriveRecord]:
        result = await session.execute(select(DriveRecord).order_by(DriveRecord.name))
        return list(result.scalars().all())

    async def get_drive(self, session: AsyncSession, name: str) -> DriveRecord:
        record = await session.get(DriveRecord, name)
        if record is None:
            raise NotFoundError(f"Drive not found: {name}")
        return record

    async def save_drive(
        self,
        session: AsyncSession,
        name: str,
        drive_type: str,
        config: dict[str, Any],
        *,
        enabled: bool = True,
    ) -> DriveRecord:
        if not name or "/" in name:
            raise BadRequestError(f"Invalid drive name: {name!r}")
        record = await session.merge(
            DriveRecord(name=name, type=drive_type, config=json.dumps(config), enabled=enabled)
        )
        await session.flush()
        return record

    async def delete_drive(self, session: AsyncSession, name: str) -> None:
        """Delete the drive together with its data and cache rows."""
        record = await self.get_drive(session, name)
        await session.delete(record)
        await session.execute(delete(DriveDataRecord).where(DriveDataRecord.drive == name))
        await session.execute(delete(DriveCacheRecord).where(DriveCacheRecord.drive == name))
        await session.flush()


class DriveDataStore:
    """Key/value data of one drive, each call in its own session."""

    def __init__(
        self,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]],
        drive: str,
    ) -> None:
        self._session_factory = session_factory
        self.drive = drive

    async def load(self, *keys: str) -> dict[str, str]:
        """Stored values of *keys*, or of every key when none are given."""
        stmt = select(DriveDataRecord).where(DriveDataRecord.drive == self.drive)
        if keys:
            stmt = stmt.where(DriveDataRecord.data_key.in_(keys))  # type: ignore[attr-defined]
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {r.data_key: r.data_value for r in result.scalars().all()}

    async def save(self, values: dict[str, str]) -> None:
        async with self._session_factory() as session:
            for key, value in values.items():
                await session.merge(DriveDataRecord(drive=self.drive, data_key=key, data_value=value))

    async def clear(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(DriveDataRecord).where(DriveDataRecord.drive == self.drive))


class PathMountStore:
    """Mount points persisted in ``path_mount``; the dispatcher's mount store."""

    def __init__(self, session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]]) -> None:
        self._session_factory = session_factory

    async def list_mounts(self) -> list[Mount]:
        async with self._session_factory() as session:
            result = await session.execute(select(PathMountRecord))
            return [
                Mount(path=r.path, name=r.name, mount_at=r.mount_at) for r in result.scalars().all()
            ]

    async def save_mounts(self, mounts: list[Mount]) -> None:
        async with self._session_factory() as session:
            for m in mounts:
                await session.merge(
                    PathMountRecord(path=clean_path(m.path), name=m.name, mount_at=clean_path(m.mount_at))
                )
        logger.debug("Saved %d mount points", len(mounts))

    async def delete_mounts(self, mounts: list[Mount]) -> None:
        async with self._session_factory() as session:
            for m in mounts:
                await session.execute(
                    delete(PathMountRecord).where(
                        PathMountRecord.path == clean_path(m.path),
                        PathMountRecord.name == m.name,
                    )
                )
