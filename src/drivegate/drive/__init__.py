"""Drive layer: the uniform drive contract and the wrappers stacked on it."""

from drivegate.drive.exceptions import (
    BadRequestError,
    ConsistencyError,
    DriveError,
    NotAllowedError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    RemoteApiError,
    TaskCancelledError,
    UnauthorizedError,
    UnsupportedError,
)
from drivegate.drive.cache import CachedDrive, EntryCacheItem, MemoryCacheManager, MemoryDriveCache
from drivegate.drive.chroot import ChrootDrive
from drivegate.drive.dispatcher import DispatcherDrive, Mount
from drivegate.drive.path_meta import MergedPathMeta, PathMeta, PathMetaWrapper, merge_path_meta
from drivegate.drive.permission import (
    Permission,
    PermissionResolver,
    PermissionRule,
    Policy,
    resolve_rules,
)
from drivegate.drive.permission_wrapper import PermissionWrapper
from drivegate.drive.protocol import (
    ContentReader,
    Drive,
    Entry,
    SupportsCacheData,
    SupportsContent,
    SupportsDispose,
    SupportsEntryCache,
)
from drivegate.drive.session import ANY_SUBJECT, Session
from drivegate.drive.streams import BytesReader, FileReader
from drivegate.drive.task import TaskContext
from drivegate.drive.tree import build_tree, copy_all, flatten_tree
from drivegate.drive.types import (
    BaseEntry,
    ContentURL,
    DriveMeta,
    EntryMeta,
    EntryType,
    EntryWrapper,
    UploadConfig,
    content_of,
)
from drivegate.drive.utils import clean_path

__all__ = [
    "ANY_SUBJECT",
    "BadRequestError",
    "BaseEntry",
    "BytesReader",
    "CachedDrive",
    "ChrootDrive",
    "ConsistencyError",
    "ContentReader",
    "ContentURL",
    "DispatcherDrive",
    "Drive",
    "DriveError",
    "DriveMeta",
    "Entry",
    "EntryCacheItem",
    "EntryMeta",
    "EntryType",
    "EntryWrapper",
    "FileReader",
    "MemoryCacheManager",
    "MemoryDriveCache",
    "MergedPathMeta",
    "Mount",
    "NotAllowedError",
    "NotFoundError",
    "PathMeta",
    "PathMetaWrapper",
    "Permission",
    "PermissionDeniedError",
    "PermissionResolver",
    "PermissionRule",
    "PermissionWrapper",
    "Policy",
    "PreconditionFailedError",
    "RemoteApiError",
    "Session",
    "SupportsCacheData",
    "SupportsContent",
    "SupportsDispose",
    "SupportsEntryCache",
    "TaskCancelledError",
    "TaskContext",
    "UnauthorizedError",
    "UnsupportedError",
    "UploadConfig",
    "build_tree",
    "clean_path",
    "content_of",
    "copy_all",
    "flatten_tree",
    "merge_path_meta",
    "resolve_rules",
]
