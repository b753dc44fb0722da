"""Business error taxonomy raised by the authentication engine.

Every business failure is an :class:`AuthError` carrying an
:class:`AuthErrorKind`, so callers can dispatch on ``exc.kind`` rather than on
the class hierarchy. The subclasses exist for readability at raise sites and
pin their kind.
"""

from __future__ import annotations

from enum import Enum


class AuthErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    INVALID_TOKEN = "invalid_token"
    EXPIRED_TOKEN = "expired_token"
    ACCOUNT_NOT_ACTIVATED = "account_not_activated"
    INVALID_CREDENTIALS = "invalid_credentials"


class AuthError(Exception):
    """User-displayable outcome of a failed authentication operation."""

    kind: AuthErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AuthError):
    kind = AuthErrorKind.VALIDATION

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"{field} is required")
        self.field = field


class ConflictError(AuthError):
    kind = AuthErrorKind.CONFLICT


class InvalidTokenError(AuthError):
    kind = AuthErrorKind.INVALID_TOKEN

    def __init__(
        self,
        message: str = "Invalid or expired verification token. Please request a new verification email.",
    ) -> None:
        super().__init__(message)


class ExpiredTokenError(AuthError):
    kind = AuthErrorKind.EXPIRED_TOKEN

    def __init__(
        self,
        message: str = "Verification token has expired. Please request a new verification email.",
    ) -> None:
        super().__init__(message)


class AccountNotActivatedError(AuthError):
    kind = AuthErrorKind.ACCOUNT_NOT_ACTIVATED

    def __init__(
        self, message: str = "Account not activated. Please verify your email first."
    ) -> None:
        super().__init__(message)


class InvalidCredentialsError(AuthError):
    # Same message whether the identifier or the password was wrong.
    kind = AuthErrorKind.INVALID_CREDENTIALS

    def __init__(self) -> None:
        super().__init__("Invalid username/email or password")


class TransactionConflict(Exception):
    """Raised by a store when a concurrent writer forced its transaction to abort."""
