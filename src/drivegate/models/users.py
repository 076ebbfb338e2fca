"""User, Group and UserGroup models."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """A gateway account.  ``password`` holds a PBKDF2 hash, never plain text."""

    __tablename__ = "users"

    username: str = Field(primary_key=True, max_length=32)
    password: str = Field(default="")
    root_path: str = Field(default="")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class Group(SQLModel, table=True):
    __tablename__ = "groups"

    name: str = Field(primary_key=True, max_length=32)


class UserGroup(SQLModel, table=True):
    """Membership of a user in a group."""

    __tablename__ = "user_groups"

    username: str = Field(primary_key=True, max_length=32)
    group_name: str = Field(primary_key=True, max_length=32, index=True)
