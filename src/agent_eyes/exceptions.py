"""Agent Eyes exception hierarchy.

Every failure that reaches a caller is an ``EyesError`` carrying a stable
machine-readable ``code``, a human ``message`` and an optional ``hint``.
Anything that is not already typed gets wrapped as ``InternalError`` by
:func:`to_eyes_error`, with the original kept as ``__cause__``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes exposed to external callers."""

    ELEMENT_NOT_FOUND = "ELEMENT_NOT_FOUND"
    NAVIGATION_TIMEOUT = "NAVIGATION_TIMEOUT"
    SCRIPT_ERROR = "SCRIPT_ERROR"
    SECURITY_BLOCKED = "SECURITY_BLOCKED"
    RATE_LIMIT = "RATE_LIMIT"
    BAD_INPUT = "BAD_INPUT"
    INTERNAL = "INTERNAL"


class EyesError(Exception):
    """Base exception for all Agent Eyes errors.

    Attributes:
        code: Stable error code for this error kind.
        message: Human-readable description.
        hint: Optional remediation hint (e.g. selector suggestions).
        data: Optional structured context for diagnostics.
    """

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, *, hint: str = "", data: dict[str, Any] | None = None) -> None:
        self.message = message
        self.hint = hint
        self.data = data or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        """Return the ``{code, message, hint}`` triple."""
        return {"code": self.code.value, "message": self.message, "hint": self.hint}


class ElementNotFoundError(EyesError):
    """Raised when a target element cannot be resolved, shown, or interacted with."""

    code = ErrorCode.ELEMENT_NOT_FOUND


class NavigationTimeoutError(EyesError):
    """Raised when a navigation does not satisfy its wait condition in time."""

    code = ErrorCode.NAVIGATION_TIMEOUT


class ScriptError(EyesError):
    """Raised when script evaluation fails in the remote page."""

    code = ErrorCode.SCRIPT_ERROR


class SecurityBlockedError(EyesError):
    """Raised when the navigation guard rejects a target URL."""

    code = ErrorCode.SECURITY_BLOCKED


class RateLimitError(EyesError):
    """Reserved for rate limiting; part of the taxonomy but not raised internally."""

    code = ErrorCode.RATE_LIMIT


class BadInputError(EyesError):
    """Raised when arguments fail validation. Never retried."""

    code = ErrorCode.BAD_INPUT


class InternalError(EyesError):
    """Raised for unexpected failures."""

    code = ErrorCode.INTERNAL


class SessionClosedError(InternalError):
    """Raised when an action is invoked on a session that is not open."""


def to_eyes_error(exc: BaseException, fallback_message: str = "Unexpected error") -> EyesError:
    """Normalize *exc* into an ``EyesError``.

    Typed errors are returned unchanged. Anything else becomes an
    ``InternalError`` with the original message and the source exception
    attached as ``__cause__``.
    """
    if isinstance(exc, EyesError):
        return exc
    err = InternalError(str(exc) or fallback_message)
    err.__cause__ = exc
    return err
