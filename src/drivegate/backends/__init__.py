"""Concrete drives: local disk, S3, WebDAV and FTP."""

from drivegate.backends.ftp import FTPDrive
from drivegate.backends.local import LocalDrive
from drivegate.backends.s3 import S3Drive
from drivegate.backends.webdav import WebDAVDrive

__all__ = ["FTPDrive", "LocalDrive", "S3Drive", "WebDAVDrive"]
