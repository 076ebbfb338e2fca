"""Drive factories: how each backend type is built from its stored config.

The registry is an explicit value handed to the gateway;
:func:`default_registry` returns one with the built-in backends.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import boto3
from botocore.config import Config

from drivegate.backends.ftp import FTPDrive
from drivegate.backends.local import LocalDrive
from drivegate.backends.s3 import S3Drive
from drivegate.backends.webdav import WebDAVDrive
from drivegate.drive.cache import CachedDrive
from drivegate.drive.exceptions import BadRequestError, NotFoundError
from drivegate.drive.protocol import SupportsEntryCache
from drivegate.drive.types import FormItem
from drivegate.drive.utils import clean_path

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from drivegate.config import GatewayConfig
    from drivegate.drive.cache import DriveCache, EntryCacheItem
    from drivegate.drive.protocol import Drive, Entry

logger = logging.getLogger(__name__)

DriveConfig = dict[str, Any]


class DriveData(Protocol):
    """Key/value state a drive keeps between restarts (tokens, cursors)."""

    async def load(self, *keys: str) -> dict[str, str]: ...

    async def save(self, values: dict[str, str]) -> None: ...

    async def clear(self) -> None: ...


@dataclass
class DriveUtils:
    """Services a factory may use while building a drive."""

    name: str
    data: DriveData
    create_cache: Callable[[Callable[[EntryCacheItem], Entry]], DriveCache]
    config: GatewayConfig

    @property
    def temp_dir(self) -> Path | str | None:
        return self.config.temp_dir

    @property
    def data_dir(self) -> Path | str:
        return self.config.data_dir


@dataclass
class DriveFactoryConfig:
    """Registration record of one backend type."""

    type: str
    display_name: str
    factory: Callable[[DriveConfig, DriveUtils], Awaitable[Drive]]
    readme: str = ""
    config_form: list[FormItem] = field(default_factory=list)


class DriveRegistry:
    """Backend types by name."""

    def __init__(self) -> None:
        self._factories: dict[str, DriveFactoryConfig] = {}

    def register(self, factory: DriveFactoryConfig) -> None:
        self._factories[factory.type] = factory

    def get(self, drive_type: str) -> DriveFactoryConfig:
        try:
            return self._factories[drive_type]
        except KeyError:
            raise NotFoundError(f"Unknown drive type: {drive_type}") from None

    def list(self) -> list[DriveFactoryConfig]:
        return sorted(self._factories.values(), key=lambda f: f.type)

    async def create(self, drive_type: str, config: DriveConfig, utils: DriveUtils) -> Drive:
        """Build a drive, wrapping it in a cache when ``cache_ttl`` is positive."""
        drive = await self.get(drive_type).factory(config, utils)
        ttl = parse_duration(config.get("cache_ttl"))
        if ttl > 0 and isinstance(drive, SupportsEntryCache):
            drive = CachedDrive(drive, utils.create_cache(drive.restore_entry), ttl)
            logger.debug("Drive %s cached for %ss", utils.name, ttl)
        return drive


# =============================================================================
# Config helpers
# =============================================================================

_DURATION = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """Seconds in *value*: a number, or a string like ``"90s"``/``"1h30m"``.

    Empty or unparsable input yields ``-1`` (disabled).
    """
    if value is None or value == "":
        return -1
    if isinstance(value, bool):
        raise BadRequestError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass
    parts = _DURATION.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        return -1
    return sum(float(n) * _UNITS[u] for n, u in parts)


def _flag(config: DriveConfig, key: str) -> bool:
    value = config.get(key)
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "no")
    return bool(value)


def _required(config: DriveConfig, key: str) -> str:
    value = config.get(key)
    if value is None or str(value).strip() == "":
        raise BadRequestError(f"Missing required config: {key}")
    return str(value).strip()


def _int(config: DriveConfig, key: str, default: int) -> int:
    value = config.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BadRequestError(f"Invalid integer for {key}: {value!r}") from None


_CACHE_TTL_FIELD = FormItem(
    label="Cache TTL",
    type="text",
    field="cache_ttl",
    description="Cache entries for this long, e.g. 5m or 1h. Empty disables caching.",
)


# =============================================================================
# Built-in factories
# =============================================================================


async def create_fs_drive(config: DriveConfig, utils: DriveUtils) -> Drive:
    path = clean_path(str(config.get("path", "")))
    if not path:
        raise BadRequestError("invalid root path")
    root = utils.config.local_fs_dir / path
    exists = await asyncio.to_thread(root.is_dir)
    if not exists:
        raise NotFoundError(f"root path not exists: {path}")
    return LocalDrive(root, chunk_threshold=utils.config.upload_chunk_threshold)


async def create_s3_drive(config: DriveConfig, utils: DriveUtils) -> Drive:
    bucket = _required(config, "bucket")
    addressing = "path" if _flag(config, "path_style") else "auto"

    def _client() -> Any:
        return boto3.client(
            "s3",
            aws_access_key_id=config.get("access_key") or None,
            aws_secret_access_key=config.get("secret_key") or None,
            region_name=config.get("region") or None,
            endpoint_url=config.get("endpoint") or None,
            config=Config(s3={"addressing_style": addressing}),
        )

    client = await asyncio.to_thread(_client)
    drive = S3Drive(
        client,
        bucket,
        proxy_upload=_flag(config, "proxy_upload"),
        proxy_download=_flag(config, "proxy_download"),
        chunk_threshold=utils.config.upload_chunk_threshold,
        temp_dir=str(utils.temp_dir) if utils.temp_dir else None,
    )
    await drive.check()
    return drive


async def create_webdav_drive(config: DriveConfig, utils: DriveUtils) -> Drive:
    url = _required(config, "url")
    if not url.startswith(("http://", "https://")):
        raise BadRequestError(f"Invalid WebDAV url: {url}")
    return WebDAVDrive(
        url,
        username=config.get("username") or None,
        password=config.get("password") or None,
    )


async def create_ftp_drive(config: DriveConfig, utils: DriveUtils) -> Drive:
    return FTPDrive.from_config(
        _required(config, "host"),
        _int(config, "port", 21),
        str(config.get("user") or ""),
        str(config.get("password") or ""),
        temp_dir=str(utils.temp_dir) if utils.temp_dir else None,
    )


def default_registry() -> DriveRegistry:
    """Registry with the ``fs``, ``s3``, ``webdav`` and ``ftp`` backends."""
    registry = DriveRegistry()
    registry.register(
        DriveFactoryConfig(
            type="fs",
            display_name="Local",
            readme="A directory below the gateway's local data directory.",
            factory=create_fs_drive,
            config_form=[
                FormItem(
                    label="Root",
                    type="text",
                    field="path",
                    required=True,
                    description="Path relative to the local data directory",
                ),
            ],
        )
    )
    registry.register(
        DriveFactoryConfig(
            type="s3",
            display_name="S3",
            readme="Any S3-compatible object store.  Directories are emulated with `key/` markers.",
            factory=create_s3_drive,
            config_form=[
                FormItem(label="AccessKey", type="text", field="access_key", required=True),
                FormItem(label="SecretKey", type="password", field="secret_key", required=True),
                FormItem(label="Bucket", type="text", field="bucket", required=True),
                FormItem(
                    label="PathStyle",
                    type="checkbox",
                    field="path_style",
                    description="Force path-style addressing",
                ),
                FormItem(label="Region", type="text", field="region"),
                FormItem(label="Endpoint", type="text", field="endpoint", description="The S3 api endpoint"),
                FormItem(
                    label="ProxyUpload",
                    type="checkbox",
                    field="proxy_upload",
                    description="Upload through the gateway instead of presigned urls",
                ),
                FormItem(
                    label="ProxyDownload",
                    type="checkbox",
                    field="proxy_download",
                    description="Download through the gateway instead of presigned urls",
                ),
                _CACHE_TTL_FIELD,
            ],
        )
    )
    registry.register(
        DriveFactoryConfig(
            type="webdav",
            display_name="WebDAV",
            readme="A WebDAV collection.",
            factory=create_webdav_drive,
            config_form=[
                FormItem(label="URL", type="text", field="url", required=True, description="The base url"),
                FormItem(label="Username", type="text", field="username"),
                FormItem(label="Password", type="password", field="password"),
                _CACHE_TTL_FIELD,
            ],
        )
    )
    registry.register(
        DriveFactoryConfig(
            type="ftp",
            display_name="FTP",
            readme="An FTP server supporting `MLSD`.",
            factory=create_ftp_drive,
            config_form=[
                FormItem(label="Host", type="text", field="host", required=True),
                FormItem(label="Port", type="text", field="port", default_value="21"),
                FormItem(label="User", type="text", field="user"),
                FormItem(label="Password", type="password", field="password"),
                _CACHE_TTL_FIELD,
            ],
        )
    )
    return registry
