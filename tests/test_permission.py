"""Tests for permission resolution and the PermissionWrapper."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from drivegate.drive.exceptions import NotAllowedError, NotFoundError
from drivegate.drive.permission import (
    Permission,
    PermissionResolver,
    PermissionRule,
    Policy,
    resolve_rules,
)
from drivegate.drive.permission_wrapper import PermissionEntry, PermissionWrapper
from drivegate.drive.session import ANY_SUBJECT, Session, group_subject, user_subject
from drivegate.drive.streams import BytesReader

if TYPE_CHECKING:
    from conftest import MemoryDrive

R = Permission.READ
W = Permission.WRITE
RW = Permission.READ_WRITE
ACCEPT = Policy.ACCEPT
REJECT = Policy.REJECT

ALICE = Session(user="alice", groups=["staff"])
BOB = Session(user="bob")
ANON = Session()
ADMIN = Session(user="root", groups=["admin"])

SECRET_RULES = [
    PermissionRule("", ANY_SUBJECT, R, ACCEPT),
    PermissionRule("secret", ANY_SUBJECT, R, REJECT),
    PermissionRule("secret", user_subject("alice"), RW, ACCEPT),
]


def _wrapper(drive: MemoryDrive, rules: list[PermissionRule], session: Session) -> PermissionWrapper:
    return PermissionWrapper(drive, PermissionResolver(rules).for_session(session))


# =========================================================================
# Rules and the fold
# =========================================================================


class TestPermissionRule:
    def test_path_is_cleaned_and_depth_computed(self):
        rule = PermissionRule("/a/b/", ANY_SUBJECT, 3, 1)
        assert rule.path == "a/b"
        assert rule.depth == 2
        assert rule.permission is RW
        assert rule.policy is ACCEPT

    def test_permission_flags(self):
        assert RW.readable and RW.writable
        assert not W.readable
        assert not Permission.EMPTY.writable


class TestResolveRules:
    def test_no_rules_is_empty(self):
        assert resolve_rules([]) == Permission.EMPTY

    def test_deeper_accept_beats_shallower_reject(self):
        rules = [PermissionRule("", ANY_SUBJECT, RW, REJECT), PermissionRule("a", ANY_SUBJECT, R, ACCEPT)]
        assert resolve_rules(rules) == R

    def test_deeper_reject_beats_shallower_accept(self):
        rules = [PermissionRule("", ANY_SUBJECT, RW, ACCEPT), PermissionRule("a", ANY_SUBJECT, W, REJECT)]
        assert resolve_rules(rules) == R

    def test_reject_wins_at_same_level(self):
        rules = [PermissionRule("a", ANY_SUBJECT, R, ACCEPT), PermissionRule("a", ANY_SUBJECT, R, REJECT)]
        assert resolve_rules(rules) == Permission.EMPTY

    def test_user_beats_group_at_same_level(self):
        rules = [
            PermissionRule("a", group_subject("staff"), RW, REJECT),
            PermissionRule("a", user_subject("alice"), RW, ACCEPT),
        ]
        assert resolve_rules(rules) == RW

    def test_group_beats_any_at_same_level(self):
        rules = [
            PermissionRule("a", ANY_SUBJECT, W, REJECT),
            PermissionRule("a", group_subject("staff"), RW, ACCEPT),
        ]
        assert resolve_rules(rules) == RW

    def test_order_independent(self):
        assert resolve_rules(SECRET_RULES) == resolve_rules(list(reversed(SECRET_RULES)))


class TestPermissionResolver:
    @pytest.mark.parametrize(
        ("session", "path", "expected"),
        [
            pytest.param(ALICE, "secret", RW, id="alice-secret"),
            pytest.param(ALICE, "secret/f", RW, id="alice-secret-child"),
            pytest.param(ALICE, "public", R, id="alice-public"),
            pytest.param(ANON, "secret", Permission.EMPTY, id="anon-secret"),
            pytest.param(ANON, "public", R, id="anon-public"),
            pytest.param(BOB, "secret", Permission.EMPTY, id="bob-secret"),
        ],
    )
    def test_secret_scenario(self, session: Session, path: str, expected: Permission):
        assert PermissionResolver(SECRET_RULES).for_session(session).resolve(path) == expected

    def test_anonymous_ignores_group_rules(self):
        resolver = PermissionResolver([PermissionRule("", group_subject("staff"), RW, ACCEPT)])
        assert resolver.for_session(Session(groups=["staff"])).resolve("x") == Permission.EMPTY

    def test_admin_group_is_privileged(self):
        perms = PermissionResolver(SECRET_RULES).for_session(ADMIN)
        assert perms.privileged
        assert perms.resolve("secret") == RW
        assert perms.resolve_descendants("") == {}

    def test_custom_admin_group(self):
        resolver = PermissionResolver(admin_group="ops")
        assert resolver.for_session(Session(user="x", groups=["ops"])).resolve("a") == RW
        assert resolver.for_session(ADMIN).resolve("a") == Permission.EMPTY

    def test_descendant_paths(self):
        resolver = PermissionResolver(SECRET_RULES)
        assert resolver.descendant_paths("", [ANY_SUBJECT]) == ["secret"]
        assert resolver.descendant_paths("secret", [ANY_SUBJECT]) == []
        assert resolver.for_session(ANON).resolve_descendants("") == {"secret": Permission.EMPTY}


# =========================================================================
# PermissionWrapper
# =========================================================================


class TestPermissionWrapperReads:
    async def test_root_is_always_visible(self, memory_drive: MemoryDrive):
        drive = _wrapper(memory_drive, [], ANON)
        root = await drive.get("")
        assert root.meta.can_read is False
        assert await drive.list_dir("") == []

    async def test_unreadable_is_not_found(self, memory_drive: MemoryDrive):
        drive = _wrapper(memory_drive, [PermissionRule("docs", ANY_SUBJECT, R, REJECT)], ANON)
        with pytest.raises(NotFoundError):
            await drive.get("docs/readme.txt")
        with pytest.raises(NotFoundError):
            await drive.list_dir("docs")
        assert ("get", "docs/readme.txt") not in memory_drive.calls

    async def test_entry_flags_narrowed(self, memory_drive: MemoryDrive):
        drive = _wrapper(memory_drive, [PermissionRule("", ANY_SUBJECT, R, ACCEPT)], ANON)
        entry = await drive.get("docs/readme.txt")
        assert isinstance(entry, PermissionEntry)
        assert entry.meta.can_read is True
        assert entry.meta.can_write is False

    async def test_listing_hides_rejected_child(self, make_drive: type[MemoryDrive]):
        backend = make_drive()
        for name in ("a", "b", "c"):
            backend.add_dir(f"dir/{name}")
        rules = [
            PermissionRule("", ANY_SUBJECT, R, ACCEPT),
            PermissionRule("dir/b", user_subject("bob"), R, REJECT),
        ]
        drive = _wrapper(backend, rules, BOB)
        assert sorted(e.name for e in await drive.list_dir("dir")) == ["a", "c"]
        other = _wrapper(backend, rules, ALICE)
        assert sorted(e.name for e in await other.list_dir("dir")) == ["a", "b", "c"]


class TestPermissionWrapperWrites:
    async def test_save_needs_write(self, memory_drive: MemoryDrive):
        drive = _wrapper(memory_drive, [PermissionRule("", ANY_SUBJECT, R, ACCEPT)], ANON)
        with pytest.raises(NotFoundError):
            await drive.save("docs/x.txt", 1, False, BytesReader(b"x"))
        assert "docs/x.txt" not in memory_drive.files

    async def test_save_allowed(self, memory_drive: MemoryDrive):
        drive = _wrapper(memory_drive, SECRET_RULES, ALICE)
        memory_drive.add_dir("secret")
        entry = await drive.save("secret/x.txt", 1, False, BytesReader(b"x"))
        assert entry.meta.can_write is True

    async def test_delete_needs_parent_write(self, memory_drive: MemoryDrive):
        rules = [
            PermissionRule("", ANY_SUBJECT, R, ACCEPT),
            PermissionRule("docs/readme.txt", user_subject("alice"), RW, ACCEPT),
        ]
        with pytest.raises(NotFoundError):
            await _wrapper(memory_drive, rules, ALICE).delete("docs/readme.txt")

    async def test_delete_blocked_by_descendant_rule(self, memory_drive: MemoryDrive):
        rules = [
            PermissionRule("", user_subject("alice"), RW, ACCEPT),
            PermissionRule("docs/notes", user_subject("alice"), W, REJECT),
        ]
        with pytest.raises(NotAllowedError):
            await _wrapper(memory_drive, rules, ALICE).delete("docs")
        assert "docs/notes/a.txt" in memory_drive.files

    async def test_delete_allowed(self, memory_drive: MemoryDrive):
        rules = [PermissionRule("", user_subject("alice"), RW, ACCEPT)]
        await _wrapper(memory_drive, rules, ALICE).delete("docs")
        assert "docs/readme.txt" not in memory_drive.files

    async def test_move_unwraps_own_entry(self, memory_drive: MemoryDrive):
        drive = _wrapper(memory_drive, [PermissionRule("", user_subject("alice"), RW, ACCEPT)], ALICE)
        src = await drive.get("docs/readme.txt")
        moved = await drive.move(src, "empty/readme.txt", False)
        assert moved.path == "empty/readme.txt"
        assert memory_drive.files["empty/readme.txt"] == b"hello"

    async def test_copy_needs_destination_write(self, make_drive: type[MemoryDrive]):
        backend = make_drive(native_copy=True)
        backend.add_file("src/f.txt", b"f")
        backend.add_dir("dst")
        rules = [PermissionRule("", ANY_SUBJECT, R, ACCEPT), PermissionRule("dst", ANY_SUBJECT, RW, ACCEPT)]
        drive = _wrapper(backend, rules, ANON)
        src = await drive.get("src/f.txt")
        await drive.copy(src, "dst/f.txt", False)
        assert backend.files["dst/f.txt"] == b"f"
        with pytest.raises(NotFoundError):
            await drive.copy(src, "src/g.txt", False)

    async def test_admin_bypasses_rules(self, memory_drive: MemoryDrive):
        drive = _wrapper(memory_drive, [PermissionRule("", ANY_SUBJECT, RW, REJECT)], ADMIN)
        await drive.make_dir("docs/new")
        assert "docs/new" in memory_drive.dirs
