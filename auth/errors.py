"""
auth/errors.py -- Exception taxonomy for the authentication core.

Four families, never converted into one another:

  ValidationError      -- the caller supplied something the policy rejects
                          (weak password, malformed email). Message is safe
                          and actionable; show it to the user.
  AuthenticationError  -- wrong password, unknown user. Safe to display, but
                          the HTTP layer collapses the subclasses into one
                          generic answer so they cannot be used to enumerate
                          accounts.
  InternalError        -- storage unreachable, zero rows affected. Log the
                          detail server-side; callers only see an opaque 500.
  FatalError           -- the secure random source failed. The operation is
                          aborted; nothing may degrade to a weaker token.

FatalError deliberately does not share a base with the other three so that an
`except AuthError` block can never swallow it.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for recoverable authentication-core errors."""


class ValidationError(AuthError):
    """Input rejected by policy. `field` names the offending form field, if any."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class AuthenticationError(AuthError):
    """Identity could not be established."""


class WrongPasswordError(AuthenticationError):
    def __init__(self, message: str = "wrong password") -> None:
        super().__init__(message)


class UserNotFoundError(AuthenticationError):
    def __init__(self, message: str = "user not found") -> None:
        super().__init__(message)


class EmptyPasswordError(AuthenticationError):
    """No password was supplied."""


class PasswordTooLongError(AuthenticationError):
    """Password longer than any stored password could be; rejected before hashing."""


class InternalError(AuthError):
    """Server-side failure; detail is for logs only."""


class StoreError(InternalError):
    """The backing store failed or did not apply a write."""


class FatalError(Exception):
    """Unrecoverable condition; the current operation must not continue."""


class RandomnessError(FatalError):
    """The operating system's secure random source is unavailable."""
