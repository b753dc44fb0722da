from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timezone


def fold_identifier(value: str) -> str:
    """Return the case-insensitive comparison key for a username or email."""
    return unicodedata.normalize("NFKC", value).casefold()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered identity and its activation flag."""

    username: str
    display_name: str
    email: str
    phone: str
    password_hash: str
    enabled: bool = False
    account_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def username_key(self) -> str:
        return fold_identifier(self.username)

    @property
    def email_key(self) -> str:
        return fold_identifier(self.email)


@dataclass(slots=True)
class VerificationToken:
    """Single-use, time-bounded secret proving ownership of an account email."""

    account: Account
    secret: str
    expires_at: datetime
    used: bool = False
    token_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def is_expired(self, now: datetime) -> bool:
        """A token expiring exactly at ``now`` is still valid."""
        return self.expires_at < now
