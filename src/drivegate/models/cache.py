"""DriveCacheRecord: rows of the persistent drive cache."""

from __future__ import annotations

from sqlmodel import Field, SQLModel


class DriveCacheRecord(SQLModel, table=True):
    """A cached entry (kind ``e``) or children list (kind ``c``).

    ``expires_at`` is in epoch milliseconds; ``0`` never expires.
    """

    __tablename__ = "drive_cache"

    drive: str = Field(primary_key=True, max_length=255)
    path: str = Field(primary_key=True, max_length=4096)
    kind: str = Field(primary_key=True, max_length=1)
    depth: int = Field(default=0, index=True)
    value: str = Field(default="")
    expires_at: int = Field(default=0, index=True)
