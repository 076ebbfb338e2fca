"""GatewayConfig: process-wide settings of a DriveGateway."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path

from drivegate.drive.exceptions import BadRequestError
from drivegate.drive.session import ADMIN_GROUP
from drivegate.drive.types import DEFAULT_CHUNK_THRESHOLD

CACHE_BACKENDS = ("memory", "db")


@dataclass
class GatewayConfig:
    """Configuration for a :class:`~drivegate.DriveGateway`."""

    data_dir: Path | str = "data"
    """Root for gateway-owned files; ``fs`` drives live under ``<data_dir>/local``."""

    temp_dir: Path | str | None = None
    """Where fallback copies stage content.  Defaults to the system temp dir."""

    cache_backend: str = "memory"
    """Backing store for drive caches: ``"memory"`` or ``"db"``."""

    memory_cache_capacity: int = 10_000
    """Maximum number of items held by the in-memory cache."""

    cache_clean_interval: float = 60.0
    """Seconds between purges of expired rows in the database cache."""

    path_meta_cache_ttl: float = 2 * 60 * 60
    """Seconds a looked-up path metadata record stays cached."""

    upload_chunk_threshold: int = DEFAULT_CHUNK_THRESHOLD
    """Uploads larger than this use the chunked provider."""

    admin_username: str = "admin"
    admin_password: str = "123456"
    admin_group: str = ADMIN_GROUP

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        self.temp_dir = Path(self.temp_dir).expanduser() if self.temp_dir else Path(tempfile.gettempdir())
        if self.cache_backend not in CACHE_BACKENDS:
            raise BadRequestError(f"cache_backend must be one of {CACHE_BACKENDS}, got {self.cache_backend!r}")
        if self.memory_cache_capacity <= 0:
            raise BadRequestError("memory_cache_capacity must be positive")
        if self.cache_clean_interval <= 0:
            raise BadRequestError("cache_clean_interval must be positive")

    @property
    def local_fs_dir(self) -> Path:
        """Directory under which ``fs`` drive roots are resolved."""
        return Path(self.data_dir) / "local"
