"""SQLModel database models for drivegate."""

from drivegate.models.cache import DriveCacheRecord
from drivegate.models.drives import DriveDataRecord, DriveRecord, PathMountRecord
from drivegate.models.paths import PathMetaRecord, PathPermissionRecord
from drivegate.models.users import Group, User, UserGroup

__all__ = [
    "DriveCacheRecord",
    "DriveDataRecord",
    "DriveRecord",
    "Group",
    "PathMetaRecord",
    "PathMountRecord",
    "PathPermissionRecord",
    "User",
    "UserGroup",
]
