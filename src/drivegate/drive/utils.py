"""Path utilities for canonical drive paths.

Canonical paths use forward slashes, carry no leading or trailing slash
and no ``.``/``..`` segments.  The root is the empty string.
"""

from __future__ import annotations

import posixpath

MAX_PATH_LENGTH = 4096
MAX_NAME_LENGTH = 255


def clean_path(path: str) -> str:
    """Canonicalise *path*.

    Examples:
        clean_path("/a//b/") -> "a/b"
        clean_path("../../a") -> "a"
        clean_path("/") -> ""
        clean_path(".") -> ""
    """
    if not path:
        return ""
    path = posixpath.normpath("/" + path.replace("\\", "/"))
    # normpath keeps a leading "//" as-is
    path = path.lstrip("/")
    return "" if path == "." else path


def is_root_path(path: str) -> bool:
    return clean_path(path) == ""


def path_parent(path: str) -> str:
    """Return the parent of *path*; the parent of a top-level name is root."""
    path = clean_path(path)
    idx = path.rfind("/")
    return path[:idx] if idx >= 0 else ""


def path_base(path: str) -> str:
    path = clean_path(path)
    return path[path.rfind("/") + 1:]


def path_depth(path: str) -> int:
    """Number of segments of *path*; the root has depth 0."""
    path = clean_path(path)
    return path.count("/") + 1 if path else 0


def path_join(*parts: str) -> str:
    return clean_path("/".join(p for p in parts if p))


def path_parent_tree(path: str) -> list[str]:
    """Return every ancestor of *path* including root and *path* itself.

    Examples:
        path_parent_tree("a/b/c") -> ["", "a", "a/b", "a/b/c"]
        path_parent_tree("") -> [""]
    """
    path = clean_path(path)
    tree = [""]
    if not path:
        return tree
    segments = path.split("/")
    for i in range(1, len(segments) + 1):
        tree.append("/".join(segments[:i]))
    return tree


def is_path_parent(path: str, parent: str) -> bool:
    """True when *parent* is a strict ancestor of *path*."""
    path = clean_path(path)
    parent = clean_path(parent)
    if path == parent:
        return False
    if not parent:
        return True
    return path.startswith(parent + "/")


def validate_path(path: str) -> tuple[bool, str]:
    """Validate a path for security and compatibility issues.

    Returns:
        (is_valid, error_message) - error_message is empty if valid
    """
    if "\x00" in path:
        return False, "Path contains null bytes"

    for ch in path:
        code = ord(ch)
        if 0x01 <= code <= 0x1F:
            return False, f"Path contains control character: 0x{code:02x}"

    if len(path) > MAX_PATH_LENGTH:
        return False, f"Path too long (max {MAX_PATH_LENGTH} characters)"

    name = path_base(path)
    if name and len(name) > MAX_NAME_LENGTH:
        return False, f"Filename too long (max {MAX_NAME_LENGTH} characters)"

    return True, ""
