"""Path permission rules and their resolution.

A rule grants (ACCEPT) or withdraws (REJECT) read/write bits for one
subject at one path; it applies to the path and all of its descendants.
Resolution is a pure fold over the rules matching a path's ancestry:

- deeper paths are applied first,
- at equal depth user rules precede group rules, which precede ``ANY``,
- at equal depth and subject class, REJECT precedes ACCEPT.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import TYPE_CHECKING

from .session import ADMIN_GROUP
from .utils import clean_path, is_path_parent, path_depth, path_parent_tree

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .session import Session


class Permission(IntFlag):
    """Read/write bitmask."""

    EMPTY = 0
    READ = 1
    WRITE = 2
    READ_WRITE = 3

    @property
    def readable(self) -> bool:
        return bool(self & Permission.READ)

    @property
    def writable(self) -> bool:
        return bool(self & Permission.WRITE)


class Policy(IntEnum):
    REJECT = 0
    ACCEPT = 1


@dataclass
class PermissionRule:
    """One ``(path, subject, permission, policy)`` row."""

    path: str
    subject: str
    permission: Permission
    policy: Policy
    depth: int = field(init=False)

    def __post_init__(self) -> None:
        self.path = clean_path(self.path)
        self.permission = Permission(self.permission)
        self.policy = Policy(self.policy)
        self.depth = path_depth(self.path)


def _subject_class(subject: str) -> int:
    if subject.startswith("u:"):
        return 0
    if subject.startswith("g:"):
        return 1
    return 2


def _sort_key(rule: PermissionRule) -> tuple[int, int, int]:
    return (-rule.depth, _subject_class(rule.subject), int(rule.policy))


def resolve_rules(rules: Iterable[PermissionRule]) -> Permission:
    """Fold *rules* (any order) into the effective permission."""
    accepted = Permission.EMPTY
    rejected = Permission.EMPTY
    for rule in sorted(rules, key=_sort_key):
        if rule.policy is Policy.ACCEPT:
            accepted |= rule.permission & ~rejected
        else:
            accepted &= ~(rule.permission & ~accepted)
            rejected |= rule.permission
    return Permission(accepted)


class PermissionResolver:
    """Immutable index of permission rules keyed by path."""

    def __init__(self, rules: Iterable[PermissionRule] = (), *, admin_group: str = ADMIN_GROUP) -> None:
        self._by_path: dict[str, list[PermissionRule]] = {}
        for rule in rules:
            self._by_path.setdefault(rule.path, []).append(rule)
        self.admin_group = admin_group

    @property
    def rules(self) -> list[PermissionRule]:
        return [r for rules in self._by_path.values() for r in rules]

    def _matching(self, path: str, subjects: set[str]) -> list[PermissionRule]:
        found: list[PermissionRule] = []
        for ancestor in path_parent_tree(path):
            for rule in self._by_path.get(ancestor, ()):
                if rule.subject in subjects:
                    found.append(rule)
        return found

    def resolve(self, path: str, subjects: Iterable[str]) -> Permission:
        return resolve_rules(self._matching(clean_path(path), set(subjects)))

    def descendant_paths(self, path: str, subjects: Iterable[str]) -> list[str]:
        """Rule-bearing paths strictly below *path* that concern *subjects*."""
        path = clean_path(path)
        wanted = set(subjects)
        return sorted(
            p
            for p, rules in self._by_path.items()
            if is_path_parent(p, path) and any(r.subject in wanted for r in rules)
        )

    def for_session(self, session: Session) -> SessionPermissions:
        privileged = session.in_group(self.admin_group)
        return SessionPermissions(self, session.subjects(), privileged=privileged)


class SessionPermissions:
    """A resolver bound to one session's subjects."""

    def __init__(self, resolver: PermissionResolver, subjects: list[str], *, privileged: bool = False) -> None:
        self._resolver = resolver
        self.subjects = subjects
        self.privileged = privileged

    def resolve(self, path: str) -> Permission:
        if self.privileged:
            return Permission.READ_WRITE
        return self._resolver.resolve(path, self.subjects)

    def resolve_descendants(self, path: str) -> dict[str, Permission]:
        if self.privileged:
            return {}
        return {
            p: self._resolver.resolve(p, self.subjects)
            for p in self._resolver.descendant_paths(path, self.subjects)
        }

