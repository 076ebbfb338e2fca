"""Session: the acting principal of a drive request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ANY_SUBJECT = "ANY"
ADMIN_GROUP = "admin"


def user_subject(username: str) -> str:
    return f"u:{username}"


def group_subject(name: str) -> str:
    return f"g:{name}"


@dataclass
class Session:
    """Who is calling, and what they presented.

    ``props`` carries request-bound secrets such as ``password:<path>``.
    """

    user: str | None = None
    groups: list[str] = field(default_factory=list)
    props: dict[str, Any] = field(default_factory=dict)

    @property
    def is_anonymous(self) -> bool:
        return self.user is None

    def subjects(self) -> list[str]:
        """Subjects whose rules apply: always ``ANY``, plus user and groups."""
        subjects = [ANY_SUBJECT]
        if self.user is not None:
            subjects.append(user_subject(self.user))
            subjects.extend(group_subject(g) for g in self.groups)
        return subjects

    def in_group(self, name: str) -> bool:
        return self.user is not None and name in self.groups
