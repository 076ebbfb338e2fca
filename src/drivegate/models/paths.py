"""Path-scoped permission and metadata models."""

from __future__ import annotations

from sqlmodel import Field, SQLModel


class PathPermissionRecord(SQLModel, table=True):
    """One permission rule; ``depth`` is the number of segments of ``path``."""

    __tablename__ = "path_permissions"

    path: str = Field(primary_key=True, max_length=4096)
    subject: str = Field(primary_key=True, max_length=64)
    permission: int = Field(default=0)
    policy: int = Field(default=0)
    depth: int = Field(default=0, index=True)


class PathMetaRecord(SQLModel, table=True):
    """Per-path metadata.  Bits of ``recursive``: password, default_sort, default_mode, hidden_pattern."""

    __tablename__ = "path_meta"

    path: str = Field(primary_key=True, max_length=4096)
    password: str = Field(default="", max_length=64)
    default_sort: str = Field(default="", max_length=32)
    default_mode: str = Field(default="", max_length=32)
    hidden_pattern: str = Field(default="", max_length=4096)
    recursive: int = Field(default=0)
