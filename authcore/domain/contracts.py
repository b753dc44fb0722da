"""Domain-level request contracts and collaborator interfaces."""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Protocol

from .account import Account, VerificationToken


@dataclass(slots=True)
class SignupInput:
    """Raw signup fields as received from the caller, before trimming."""

    username: str | None
    display_name: str | None
    email: str | None
    phone: str | None
    password: str | None


@dataclass(slots=True)
class LoginInput:
    """Raw login fields; ``username_or_email`` may hold either identifier."""

    username_or_email: str | None
    password: str | None


class AccountStore(Protocol):
    def find_by_username_ci(self, username: str) -> Account | None: ...

    def find_by_email_ci(self, email: str) -> Account | None: ...

    def exists_by_username_ci(self, username: str) -> bool: ...

    def exists_by_email_ci(self, email: str) -> bool: ...

    def save(self, account: Account) -> Account:
        """Upsert ``account`` and return the persisted form with its id assigned.

        Raises ``ConflictError`` when the username or email key is already taken.
        """
        ...


class VerificationTokenStore(Protocol):
    def find_unused_by_secret(self, secret: str) -> VerificationToken | None:
        """Return the unused token for ``secret``, locked for the current unit of work."""
        ...

    def save(self, token: VerificationToken) -> VerificationToken: ...


class UnitOfWork(Protocol):
    accounts: AccountStore
    tokens: VerificationTokenStore


class Storage(Protocol):
    """Durable state behind the engine.

    ``unit_of_work`` commits on a clean exit and rolls back when the block raises.
    """

    @property
    def accounts(self) -> AccountStore: ...

    def unit_of_work(self) -> AbstractContextManager[UnitOfWork]: ...


class CredentialHasher(Protocol):
    def hash(self, raw_password: str) -> str: ...

    def verify(self, raw_password: str, password_hash: str) -> bool: ...


class TokenSigner(Protocol):
    def issue(self, account_id: str, username: str) -> str: ...


class Notifier(Protocol):
    def notify_verification(self, email: str, username: str, token_secret: str) -> None: ...
