"""End-to-end tests for DriveGateway over fs drives."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from drivegate import DriveGateway, GatewayConfig
from drivegate.drive.cache import CachedDrive
from drivegate.drive.exceptions import NotAllowedError, NotFoundError
from drivegate.drive.path_meta import RECURSIVE_PASSWORD, PathMeta
from drivegate.drive.permission import Permission, PermissionRule, Policy
from drivegate.drive.session import ANY_SUBJECT, Session
from drivegate.drive.streams import BytesReader, read_all
from drivegate.drive.types import content_of
from drivegate.events import ListenerContext

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

ANON = Session()


class RecordingListener:
    def __init__(self) -> None:
        self.events: list[tuple] = []

    def on_access(self, ctx: ListenerContext, path: str) -> None:
        self.events.append(("access", ctx.session.user, path))

    def on_updated(self, ctx: ListenerContext, entry, copy: bool) -> None:
        self.events.append(("updated", ctx.session.user, entry.path))

    def on_deleted(self, ctx: ListenerContext, path: str) -> None:
        self.events.append(("deleted", ctx.session.user, path))


def _config(tmp_path: Path, **kwargs) -> GatewayConfig:
    local = tmp_path / "local" / "files"
    local.mkdir(parents=True, exist_ok=True)
    (local / "hello.txt").write_bytes(b"hello")
    (local / "private").mkdir(exist_ok=True)
    (local / "locked").mkdir(exist_ok=True)
    return GatewayConfig(data_dir=tmp_path, temp_dir=tmp_path / "tmp", **kwargs)


@pytest.fixture
async def gateway(async_engine: AsyncEngine, tmp_path: Path) -> AsyncIterator[DriveGateway]:
    gw = DriveGateway(async_engine, config=_config(tmp_path))
    await gw.init()
    await gw.save_drive("files", "fs", {"path": "files"})
    yield gw
    await gw.close()


@pytest.fixture
async def admin(gateway: DriveGateway) -> Session:
    session = await gateway.authenticate("admin", "123456")
    assert session is not None
    return session


# =========================================================================
# Lifecycle and drive configuration
# =========================================================================


class TestLifecycle:
    async def test_owns_engine(self, tmp_path: Path):
        async with DriveGateway(config=_config(tmp_path)) as gw:
            assert (tmp_path / "drivegate.db").exists()
            assert await gw.authenticate("admin", "123456") is not None

    async def test_session_before_init(self, tmp_path: Path):
        gw = DriveGateway(config=_config(tmp_path))
        with pytest.raises(RuntimeError):
            async with gw._session():
                pass

    async def test_reinit_keeps_existing_users(self, async_engine: AsyncEngine, tmp_path: Path):
        config = _config(tmp_path)
        first = DriveGateway(async_engine, config=config)
        await first.init()
        await first.close()
        second = DriveGateway(async_engine, config=GatewayConfig(data_dir=tmp_path, admin_password="other"))
        await second.init()
        assert await second.authenticate("admin", "123456") is not None
        await second.close()


class TestDriveConfiguration:
    async def test_saved_drive_is_served(self, gateway: DriveGateway):
        assert list(gateway.root_drive.drives) == ["files"]

    async def test_unknown_type_rejected(self, gateway: DriveGateway):
        with pytest.raises(NotFoundError):
            await gateway.save_drive("x", "gopher", {})

    async def test_disabled_drive_not_served(self, gateway: DriveGateway):
        await gateway.save_drive("files", "fs", {"path": "files"}, enabled=False)
        assert gateway.root_drive.drives == {}

    async def test_broken_drive_is_skipped(self, gateway: DriveGateway, caplog: pytest.LogCaptureFixture):
        with caplog.at_level(logging.WARNING, logger="drivegate._gateway"):
            await gateway.save_drive("broken", "fs", {"path": "missing"})
        assert list(gateway.root_drive.drives) == ["files"]
        assert "Failed to create drive broken" in caplog.text

    async def test_delete_drive(self, gateway: DriveGateway):
        await gateway.delete_drive("files")
        assert gateway.root_drive.drives == {}

    async def test_cache_ttl_wraps_drive(self, gateway: DriveGateway):
        await gateway.save_drive("files", "fs", {"path": "files", "cache_ttl": "1m"})
        assert isinstance(gateway.root_drive.drives["files"], CachedDrive)


# =========================================================================
# Per-session drives
# =========================================================================


class TestSessionDrives:
    async def test_anonymous_reads(self, gateway: DriveGateway):
        drive = gateway.drive_for(ANON)
        assert [e.name for e in await drive.list_dir("")] == ["files"]
        entry = await drive.get("files/hello.txt")
        content = content_of(entry)
        assert content is not None
        assert await read_all(await content.get_reader()) == b"hello"
        assert entry.meta.can_write is False

    async def test_anonymous_cannot_write(self, gateway: DriveGateway):
        drive = gateway.drive_for(ANON)
        with pytest.raises(NotFoundError):
            await drive.save("files/new.txt", 1, False, BytesReader(b"x"))

    async def test_admin_writes(self, gateway: DriveGateway, admin: Session, tmp_path: Path):
        drive = gateway.drive_for(admin)
        entry = await drive.save("files/sub/new.txt", 2, False, BytesReader(b"hi"))
        assert entry.path == "files/sub/new.txt"
        assert (tmp_path / "local" / "files" / "sub" / "new.txt").read_bytes() == b"hi"

    async def test_rule_hides_path(self, gateway: DriveGateway):
        await gateway.set_permissions(
            "files/private", [PermissionRule("", ANY_SUBJECT, Permission.READ, Policy.REJECT)]
        )
        drive = gateway.drive_for(ANON)
        with pytest.raises(NotFoundError):
            await drive.get("files/private")
        assert "private" not in [e.name for e in await drive.list_dir("files")]

    async def test_user_rule_grants_write(self, gateway: DriveGateway):
        await gateway.set_permissions(
            "files", [PermissionRule("", "u:alice", Permission.READ_WRITE, Policy.ACCEPT)]
        )
        drive = gateway.drive_for(Session(user="alice"))
        await drive.make_dir("files/alice")
        await drive.delete("files/alice")

    async def test_password_gate(self, gateway: DriveGateway, admin: Session):
        await gateway.set_path_meta(PathMeta("files/locked", password="pw", recursive=RECURSIVE_PASSWORD))
        with pytest.raises(NotAllowedError) as exc_info:
            await gateway.drive_for(ANON).list_dir("files/locked")
        assert exc_info.value.data == {"passwordRequired": True}
        unlocked = Session(props={"password:files/locked": "pw"})
        assert await gateway.drive_for(unlocked).list_dir("files/locked") == []
        assert await gateway.drive_for(admin).list_dir("files/locked") == []

    async def test_path_meta_props(self, gateway: DriveGateway):
        await gateway.set_path_meta(PathMeta("files", default_sort="name"))
        entry = await gateway.drive_for(ANON).get("files")
        assert entry.meta.props["pathMeta"]["defaultSort"] == "name"
        await gateway.delete_path_meta("files")
        entry = await gateway.drive_for(ANON).get("files")
        assert "pathMeta" not in entry.meta.props

    async def test_listeners(self, gateway: DriveGateway, admin: Session):
        listener = RecordingListener()
        drive = gateway.drive_for(admin, [listener])
        await drive.get("files/hello.txt")
        await drive.make_dir("files/d")
        await drive.delete("files/d")
        assert listener.events == [
            ("access", "admin", "files/hello.txt"),
            ("updated", "admin", "files/d"),
            ("deleted", "admin", "files/d"),
        ]

    async def test_copy_and_move(self, gateway: DriveGateway, admin: Session, tmp_path: Path):
        drive = gateway.drive_for(admin)
        src = await drive.get("files/hello.txt")
        await drive.copy(src, "files/private/copy.txt", False)
        moved = await drive.move(await drive.get("files/private/copy.txt"), "files/locked/moved.txt", False)
        assert moved.path == "files/locked/moved.txt"
        root = tmp_path / "local" / "files"
        assert (root / "locked" / "moved.txt").read_bytes() == b"hello"
        assert not (root / "private" / "copy.txt").exists()
        assert list((tmp_path / "tmp").iterdir()) == []

    async def test_chroot(self, gateway: DriveGateway, admin: Session):
        drive = gateway.chroot(admin, "files")
        names = sorted(e.name for e in await drive.list_dir(""))
        assert names == ["hello.txt", "locked", "private"]
        assert (await drive.get("hello.txt")).path == "hello.txt"


class TestDatabaseCache:
    async def test_db_cache_backend(self, async_engine: AsyncEngine, tmp_path: Path):
        gw = DriveGateway(async_engine, config=_config(tmp_path, cache_backend="db"))
        await gw.init()
        await gw.save_drive("files", "fs", {"path": "files", "cache_ttl": "1h"})
        drive = gw.drive_for(Session())
        first = [e.name for e in await drive.list_dir("files")]
        second = [e.name for e in await drive.list_dir("files")]
        assert sorted(first) == sorted(second) == ["hello.txt", "locked", "private"]
        await gw.close()
