"""Drive configuration, per-drive data and mount point models."""

from __future__ import annotations

from sqlmodel import Field, SQLModel


class DriveRecord(SQLModel, table=True):
    """A configured drive.  ``config`` is the backend's JSON config object."""

    __tablename__ = "drives"

    name: str = Field(primary_key=True, max_length=255)
    enabled: bool = Field(default=True)
    type: str = Field(max_length=32)
    config: str = Field(default="{}")


class DriveDataRecord(SQLModel, table=True):
    """One key/value pair a drive persists for itself."""

    __tablename__ = "drive_data"

    drive: str = Field(primary_key=True, max_length=255)
    data_key: str = Field(primary_key=True, max_length=255)
    data_value: str = Field(default="")


class PathMountRecord(SQLModel, table=True):
    """``<path>/<name>`` aliases the virtual path ``mount_at``."""

    __tablename__ = "path_mount"

    path: str = Field(primary_key=True, max_length=4096)
    name: str = Field(primary_key=True, max_length=255)
    mount_at: str = Field(max_length=4096)
