"""Persistence services over the drivegate tables."""

from drivegate.storage.drive_cache import DBCacheManager, DBDriveCache
from drivegate.storage.drives import DriveDataStore, DriveService, PathMountStore, drive_config
from drivegate.storage.path_meta import PathMetaService
from drivegate.storage.permissions import PathPermissionService
from drivegate.storage.users import UserService, hash_password, verify_password

__all__ = [
    "DBCacheManager",
    "DBDriveCache",
    "DriveDataStore",
    "DriveService",
    "PathMetaService",
    "PathMountStore",
    "PathPermissionService",
    "UserService",
    "drive_config",
    "hash_password",
    "verify_password",
]
