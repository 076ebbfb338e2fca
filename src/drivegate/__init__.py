"""drivegate: one virtual filesystem over local, S3, WebDAV and FTP drives.

Paths take the form ``<drive>/<sub-path>``; a permission resolver decides
what each session may see and change.
"""

__version__ = "0.1.0"

from drivegate._gateway import DriveGateway
from drivegate.config import GatewayConfig
from drivegate.drive import (
    BytesReader,
    DispatcherDrive,
    Drive,
    DriveError,
    Entry,
    NotAllowedError,
    NotFoundError,
    Permission,
    PermissionRule,
    Policy,
    Session,
    TaskContext,
)
from drivegate.drive.path_meta import PathMeta
from drivegate.events import DriveListener, ListenerContext
from drivegate.registry import DriveFactoryConfig, DriveRegistry, default_registry

__all__ = [
    "BytesReader",
    "DispatcherDrive",
    "Drive",
    "DriveError",
    "DriveFactoryConfig",
    "DriveGateway",
    "DriveListener",
    "DriveRegistry",
    "Entry",
    "GatewayConfig",
    "ListenerContext",
    "NotAllowedError",
    "NotFoundError",
    "PathMeta",
    "Permission",
    "PermissionRule",
    "Policy",
    "Session",
    "TaskContext",
    "__version__",
    "default_registry",
]
