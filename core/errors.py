"""
core/errors.py -- Rejection reasons, result types, and infrastructure errors.

Two kinds of failure, handled differently:

  Rejections (Reason + Rejected) are ordinary outcomes -- a wrong code, an
  expired session. They are returned as values so a login flow never has to
  wrap credential checks in try/except. The precise reason is kept for
  internal logs; callers show users public_message, which collapses the
  reasons into one generic string so responses cannot be used as an
  enumeration oracle.

  Exceptions (LoginGuardError subclasses) mean the operation could not be
  completed at all. StorageUnavailable tells the caller "try again", never
  "credentials wrong". InvariantViolation means storage returned a state
  that should be impossible; it fails the one call, not the process.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

_CODE_MESSAGE = "Invalid or expired verification code."
_SESSION_MESSAGE = "Session expired or revoked. Please log in again."


class Reason(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    INVALID_OR_REVOKED = "invalid_or_revoked"


@dataclass(frozen=True)
class Rejected:
    """A closed-set rejection. Truthiness is False so `if result:` reads naturally."""

    reason: Reason

    def __bool__(self) -> bool:
        return False

    @property
    def public_message(self) -> str:
        """User-facing text that does not reveal which reason occurred."""
        if self.reason is Reason.INVALID_OR_REVOKED:
            return _SESSION_MESSAGE
        return _CODE_MESSAGE


class LoginGuardError(Exception):
    """Base class for errors that abort a single LoginGuard operation."""


class StorageUnavailable(LoginGuardError):
    """The backing store failed or timed out. Retry policy belongs to the caller."""


class InvariantViolation(LoginGuardError):
    """Storage returned a state that the session invariants rule out."""
