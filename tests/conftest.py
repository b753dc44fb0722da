from __future__ import annotations

import copy
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

from authcore.domain.account import Account, VerificationToken, fold_identifier
from authcore.domain.errors import ConflictError
from authcore.domain.service import AuthEngine
from authcore.security.passwords import BcryptCredentialHasher
from authcore.security.tokens import JwtTokenSigner


@dataclass
class _State:
    accounts: dict[str, Account] = field(default_factory=dict)
    tokens: dict[str, VerificationToken] = field(default_factory=dict)


class InMemoryAccountStore:
    """Account store enforcing the same folded-key uniqueness as Postgres."""

    def __init__(self, storage: "InMemoryStorage") -> None:
        self._storage = storage

    def find_by_username_ci(self, username: str):
        return self._find(lambda account: account.username_key == fold_identifier(username))

    def find_by_email_ci(self, email: str):
        return self._find(lambda account: account.email_key == fold_identifier(email))

    def exists_by_username_ci(self, username: str) -> bool:
        if self._storage.skip_existence_checks:
            return False
        return self.find_by_username_ci(username) is not None

    def exists_by_email_ci(self, email: str) -> bool:
        if self._storage.skip_existence_checks:
            return False
        return self.find_by_email_ci(email) is not None

    def save(self, account: Account) -> Account:
        state = self._storage.state
        stored = copy.deepcopy(account)
        if stored.account_id is None:
            stored.account_id = str(uuid.uuid4())
        for other in state.accounts.values():
            if other.account_id == stored.account_id:
                continue
            if other.username_key == stored.username_key:
                raise ConflictError("username exists")
            if other.email_key == stored.email_key:
                raise ConflictError("email exists")
        previous = state.accounts.get(stored.account_id)
        if previous is not None and previous.enabled:
            stored.enabled = True
        state.accounts[stored.account_id] = stored
        self._storage.account_saves += 1
        return copy.deepcopy(stored)

    def _find(self, predicate):
        for account in self._storage.state.accounts.values():
            if predicate(account):
                return copy.deepcopy(account)
        return None


class InMemoryTokenStore:
    def __init__(self, storage: "InMemoryStorage") -> None:
        self._storage = storage

    def find_unused_by_secret(self, secret: str):
        state = self._storage.state
        for token in state.tokens.values():
            if token.secret == secret and not token.used:
                found = copy.deepcopy(token)
                found.account = copy.deepcopy(state.accounts[token.account.account_id])
                return found
        return None

    def save(self, token: VerificationToken) -> VerificationToken:
        state = self._storage.state
        stored = copy.deepcopy(token)
        if stored.token_id is None:
            stored.token_id = str(uuid.uuid4())
        previous = state.tokens.get(stored.token_id)
        if previous is not None and previous.used:
            stored.used = True
        state.tokens[stored.token_id] = stored
        return copy.deepcopy(stored)


class _InMemoryUnitOfWork:
    def __init__(self, storage: "InMemoryStorage") -> None:
        self.accounts = InMemoryAccountStore(storage)
        self.tokens = InMemoryTokenStore(storage)


class InMemoryStorage:
    """Storage fake whose units of work run one at a time and roll back on error."""

    def __init__(self) -> None:
        self.state = _State()
        self.skip_existence_checks = False
        self.account_saves = 0
        self.commits = 0
        self._lock = threading.Lock()
        self._accounts = InMemoryAccountStore(self)
        self._uow = _InMemoryUnitOfWork(self)

    @property
    def accounts(self) -> InMemoryAccountStore:
        return self._accounts

    @contextmanager
    def unit_of_work(self):
        with self._lock:
            snapshot = copy.deepcopy(self.state)
            try:
                yield self._uow
            except BaseException:
                self.state = snapshot
                raise
            self.commits += 1

    def account(self, username: str) -> Account:
        account = self._accounts.find_by_username_ci(username)
        assert account is not None, f"no account for {username}"
        return account

    def tokens_for(self, username: str) -> list[VerificationToken]:
        account = self.account(username)
        return [
            copy.deepcopy(token)
            for token in self.state.tokens.values()
            if token.account.account_id == account.account_id
        ]


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def notify_verification(self, email: str, username: str, token_secret: str) -> None:
        self.sent.append((email, username, token_secret))

    def secret_for(self, username: str) -> str:
        for _, sent_username, secret in reversed(self.sent):
            if sent_username == username:
                return secret
        raise AssertionError(f"no verification sent to {username}")


class FailingNotifier:
    def notify_verification(self, email: str, username: str, token_secret: str) -> None:
        raise RuntimeError("smtp relay unreachable")


class FakeClock:
    """Callable clock returning a fixed, manually advanced UTC instant."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="session")
def hasher() -> BcryptCredentialHasher:
    # Minimum bcrypt cost keeps the suite fast.
    return BcryptCredentialHasher(rounds=4)


@pytest.fixture
def signer() -> JwtTokenSigner:
    return JwtTokenSigner(secret="test-signing-secret-0123456789abcdef", issuer="authcore-tests", ttl_seconds=3600)


@pytest.fixture
def engine(storage, hasher, signer, notifier, clock) -> AuthEngine:
    return AuthEngine(storage, hasher, signer, notifier, clock=clock)


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()
