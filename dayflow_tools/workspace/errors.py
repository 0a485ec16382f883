"""Caller-facing error taxonomy for the workspace core.

Every error carries a stable ``code`` and the HTTP status the API answers
with. None of them are retried server-side.
"""

from __future__ import annotations

from typing import Optional

from .schema.enums import LockFailure

__all__ = [
    "WorkspaceError",
    "UnauthenticatedError",
    "ForbiddenError",
    "LockNotHeldError",
    "NotFoundError",
    "BadRequestError",
    "InvalidTargetError",
    "LockConflictError",
    "RateLimitExceededError",
]


class WorkspaceError(Exception):
    """Base class for deterministic, caller-facing failures."""

    code = "INTERNAL"
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthenticatedError(WorkspaceError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Not authenticated"


class ForbiddenError(WorkspaceError, PermissionError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Not authorized"


class LockNotHeldError(ForbiddenError):
    """The caller does not hold a live editing lease on the workspace."""

    _messages = {
        LockFailure.NO_LEASE: "Acquire the editing lock before changing this workspace",
        LockFailure.EXPIRED: "Your editing lock has expired",
        LockFailure.HELD_BY_OTHER: "Someone else is editing this workspace",
    }

    def __init__(self, reason: LockFailure, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or self._messages[reason])


class NotFoundError(WorkspaceError, LookupError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class BadRequestError(WorkspaceError, ValueError):
    code = "BAD_REQUEST"
    status_code = 400
    default_message = "Bad request"


class InvalidTargetError(BadRequestError):
    """Target container is missing or belongs to another workspace."""

    code = "INVALID_TARGET"
    default_message = "Invalid target"


class LockConflictError(BadRequestError):
    code = "LOCK_CONFLICT"
    status_code = 409
    default_message = "Someone else is editing this workspace"


class RateLimitExceededError(WorkspaceError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    default_message = "Too many requests, slow down a little"

    def __init__(self, retry_after: float, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message)
