"""UserService: accounts, groups and first-run bootstrap."""

from __future__ import annotations

import asyncio
import base64
import logging
import secrets
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import func
from sqlmodel import select

from drivegate.drive.exceptions import BadRequestError, NotFoundError
from drivegate.drive.permission import Permission, PermissionRule, Policy
from drivegate.drive.session import ADMIN_GROUP, ANY_SUBJECT, Session
from drivegate.models.users import Group, User, UserGroup
from drivegate.storage.permissions import PathPermissionService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 260_000


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)


def hash_password(password: str, *, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt>$<hash>``."""
    salt = secrets.token_bytes(16)
    digest = _kdf(salt, iterations).derive(password.encode())
    return "$".join(
        [
            "pbkdf2_sha256",
            str(iterations),
            base64.b64encode(salt).decode(),
            base64.b64encode(digest).decode(),
        ]
    )


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, expected = encoded.split("$")
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    try:
        _kdf(base64.b64decode(salt), int(iterations)).verify(password.encode(), base64.b64decode(expected))
    except InvalidKey:
        return False
    return True


class UserService:
    """Stateless; every method takes the session to run in."""

    def __init__(self, permissions: PathPermissionService | None = None) -> None:
        self._permissions = permissions or PathPermissionService()

    async def create_user(
        self,
        session: AsyncSession,
        username: str,
        password: str,
        groups: list[str] | None = None,
    ) -> User:
        if not username or await session.get(User, username) is not None:
            raise BadRequestError(f"Invalid or existing username: {username!r}")
        user = User(username=username, password=await asyncio.to_thread(hash_password, password))
        session.add(user)
        for name in groups or []:
            if await session.get(Group, name) is None:
                raise NotFoundError(f"Group not found: {name}")
            session.add(UserGroup(username=username, group_name=name))
        await session.flush()
        return user

    async def create_group(self, session: AsyncSession, name: str) -> Group:
        group = await session.get(Group, name)
        if group is None:
            group = Group(name=name)
            session.add(group)
            await session.flush()
        return group

    async def get_groups(self, session: AsyncSession, username: str) -> list[str]:
        result = await session.execute(
            select(UserGroup.group_name).where(UserGroup.username == username)
        )
        return sorted(result.scalars().all())

    async def authenticate(self, session: AsyncSession, username: str, password: str) -> Session | None:
        """Session for valid credentials, else None."""
        user = await session.get(User, username)
        if user is None or not await asyncio.to_thread(verify_password, password, user.password):
            return None
        return Session(user=username, groups=await self.get_groups(session, username))

    async def bootstrap(
        self,
        session: AsyncSession,
        *,
        admin_username: str = "admin",
        admin_password: str = "123456",
        admin_group: str = ADMIN_GROUP,
    ) -> bool:
        """Seed the store on first run; returns False when users already exist.

        Creates the admin user and group, the membership, and a rule
        granting everyone read access at the root.
        """
        count = (await session.execute(select(func.count()).select_from(User))).scalar_one()
        if count:
            return False
        await self.create_group(session, admin_group)
        await self.create_user(session, admin_username, admin_password, [admin_group])
        await self._permissions.save_for_path(
            session,
            "",
            [PermissionRule("", ANY_SUBJECT, Permission.READ, Policy.ACCEPT)],
        )
        logger.info("Bootstrapped admin user %r", admin_username)
        return True
