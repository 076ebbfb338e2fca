"""Custom exception hierarchy for the drivegate drive layer.

Errors are discriminated by class, never by message.  Each class carries
a ``kind`` tag and the HTTP-style ``code`` surfaced to callers.
"""

from __future__ import annotations

from typing import Any


class DriveError(Exception):
    """Base exception for all drive errors."""

    kind = "error"
    code = 500

    def __init__(self, message: str = "", *, data: dict[str, Any] | None = None) -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.data = data


class BadRequestError(DriveError):
    """Raised when a request or a drive configuration is malformed."""

    kind = "bad-request"
    code = 400


class UnauthorizedError(DriveError):
    """Raised when a remote store rejects the configured credentials."""

    kind = "unauthorised"
    code = 401


class PermissionDeniedError(DriveError):
    """Raised when the caller is known but lacks access."""

    kind = "permission-denied"
    code = 403


class NotAllowedError(DriveError):
    """Raised when an operation is not allowed on the target."""

    kind = "not-allowed"
    code = 403


class NotFoundError(DriveError):
    """Raised when a path does not exist (or may not be seen)."""

    kind = "not-found"
    code = 404


class UnsupportedError(DriveError):
    """Raised when a drive does not support an operation."""

    kind = "unsupported"
    code = 405


class RemoteApiError(DriveError):
    """Raised when a remote store answers with an error status."""

    kind = "remote-api"

    def __init__(self, code: int, message: str = "", *, data: dict[str, Any] | None = None) -> None:
        super().__init__(message or f"remote error {code}", data=data)
        self.code = code


class PreconditionFailedError(RemoteApiError):
    """Raised when a remote store refuses a conditional request (HTTP 412)."""

    def __init__(self, message: str = "", *, data: dict[str, Any] | None = None) -> None:
        super().__init__(412, message or "precondition failed", data=data)


class TaskCancelledError(DriveError):
    """Raised when a task context is cancelled during a long operation."""

    kind = "cancelled"
    code = 499


class ConsistencyError(DriveError):
    """Raised when a wrapper observes a path outside its own root."""

    kind = "consistency"
