"""PathPermissionService: CRUD over ``path_permissions`` rows."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete
from sqlmodel import select

from drivegate.drive.permission import PermissionRule
from drivegate.drive.utils import clean_path, path_depth
from drivegate.models.paths import PathPermissionRecord

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession


def _to_rule(record: PathPermissionRecord) -> PermissionRule:
    return PermissionRule(
        path=record.path,
        subject=record.subject,
        permission=record.permission,  # type: ignore[arg-type]
        policy=record.policy,  # type: ignore[arg-type]
    )


class PathPermissionService:
    """Stateless; every method takes the session to run in and flushes only."""

    async def list_all(self, session: AsyncSession) -> list[PermissionRule]:
        result = await session.execute(
            select(PathPermissionRecord).order_by(PathPermissionRecord.depth, PathPermissionRecord.path)
        )
        return [_to_rule(r) for r in result.scalars().all()]

    async def save_for_path(
        self,
        session: AsyncSession,
        path: str,
        rules: Iterable[PermissionRule],
    ) -> list[PermissionRule]:
        """Replace every rule of *path* with *rules* (their own paths are ignored)."""
        path = clean_path(path)
        await session.execute(delete(PathPermissionRecord).where(PathPermissionRecord.path == path))
        saved: list[PermissionRule] = []
        for rule in rules:
            session.add(
                PathPermissionRecord(
                    path=path,
                    subject=rule.subject,
                    permission=int(rule.permission),
                    policy=int(rule.policy),
                    depth=path_depth(path),
                )
            )
            saved.append(PermissionRule(path, rule.subject, rule.permission, rule.policy))
        await session.flush()
        return saved

    async def delete_for_path(self, session: AsyncSession, path: str) -> int:
        result = await session.execute(
            delete(PathPermissionRecord).where(PathPermissionRecord.path == clean_path(path))
        )
        await session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]
