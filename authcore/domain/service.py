"""Authentication engine orchestrating signup, email verification, and login."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, TypeVar

from email_validator import EmailNotValidError, validate_email

from .account import Account, VerificationToken
from .contracts import (
    CredentialHasher,
    LoginInput,
    Notifier,
    SignupInput,
    Storage,
    TokenSigner,
    UnitOfWork,
)
from .errors import (
    AccountNotActivatedError,
    ConflictError,
    ExpiredTokenError,
    InvalidCredentialsError,
    InvalidTokenError,
    TransactionConflict,
    ValidationError,
)
from ..security.tokens import generate_verification_secret

logger = logging.getLogger(__name__)

T = TypeVar("T")

SIGNUP_MESSAGE = "Signup successful. Please check your email to verify your account."
VERIFIED_MESSAGE = "Email verified successfully. Your account is now activated."
ALREADY_VERIFIED_MESSAGE = "Your account is already verified and activated."
LOGIN_MESSAGE = "Login successful"

# Verified against when the identifier resolves to no account, so that a
# missing account costs the same bcrypt work as a wrong password.
_TIMING_DUMMY_PASSWORD = "authcore-timing-dummy"


@dataclass(slots=True)
class SignupResult:
    username: str
    email: str
    message: str


@dataclass(slots=True)
class VerificationResult:
    username: str
    email: str
    message: str
    already_verified: bool


@dataclass(slots=True)
class LoginResult:
    """Successful login payload carrying the issued session credential."""

    session_token: str
    username: str
    email: str
    message: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require(field: str, value: str | None) -> str:
    """Return ``value`` trimmed, raising ``ValidationError`` when null or blank."""
    if value is None or not value.strip():
        raise ValidationError(field)
    return value.strip()


def _require_email(value: str | None) -> str:
    """Return the trimmed, lowercased email, rejecting blank or malformed addresses."""
    email = _require("email", value).lower()
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("email", f"email is not a valid address: {exc}") from exc
    return email


class AuthEngine:
    """Account workflows: registration, email verification, and login."""

    def __init__(
        self,
        storage: Storage,
        hasher: CredentialHasher,
        signer: TokenSigner,
        notifier: Notifier,
        *,
        verification_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utcnow,
        max_attempts: int = 3,
    ) -> None:
        """Store collaborators used to orchestrate persistence, hashing, and notification."""
        self._storage = storage
        self._hasher = hasher
        self._signer = signer
        self._notifier = notifier
        self._verification_ttl = verification_ttl
        self._clock = clock
        self._max_attempts = max(1, max_attempts)
        self._dummy_hash: str | None = None

    def signup(self, payload: SignupInput) -> SignupResult:
        """Register a disabled account and issue its email verification token.

        The account and token are committed together. The verification notice
        is sent only after the commit and its failure never changes the result.
        """
        username = _require("username", payload.username)
        display_name = _require("display_name", payload.display_name)
        email = _require_email(payload.email)
        phone = _require("phone", payload.phone)
        _require("password", payload.password)
        password = payload.password
        logger.info("processing signup for username=%s email=%s", username, email)
        password_hash = self._hasher.hash(password)

        def register(uow: UnitOfWork) -> tuple[Account, VerificationToken]:
            if uow.accounts.exists_by_username_ci(username):
                logger.warning("signup rejected: username already exists (%s)", username)
                raise ConflictError("username exists")
            if uow.accounts.exists_by_email_ci(email):
                logger.warning("signup rejected: email already exists (%s)", email)
                raise ConflictError("email exists")

            account = uow.accounts.save(
                Account(
                    username=username,
                    display_name=display_name,
                    email=email,
                    phone=phone,
                    password_hash=password_hash,
                    enabled=False,
                    created_at=self._clock(),
                )
            )
            now = self._clock()
            token = uow.tokens.save(
                VerificationToken(
                    account=account,
                    secret=generate_verification_secret(),
                    expires_at=now + self._verification_ttl,
                    used=False,
                    created_at=now,
                )
            )
            return account, token

        account, token = self._in_transaction(register)
        logger.info(
            "account created id=%s username=%s, verification token expires at %s",
            account.account_id,
            account.username,
            token.expires_at.isoformat(),
        )

        self._after_signup_commit(account, token)
        return SignupResult(username=account.username, email=account.email, message=SIGNUP_MESSAGE)

    def verify_email(self, token: str | None) -> VerificationResult:
        """Consume a verification token and activate its account.

        Lookup, expiry check, account activation, and marking the token used run
        in one unit of work. Used tokens are indistinguishable from unknown ones.
        """
        secret = _require("token", token)

        def consume(uow: UnitOfWork) -> VerificationResult:
            record = uow.tokens.find_unused_by_secret(secret)
            if record is None:
                logger.warning("verification failed: token not found or already used")
                raise InvalidTokenError()

            account = record.account
            if record.is_expired(self._clock()):
                logger.warning(
                    "verification failed: token expired for account id=%s at %s",
                    account.account_id,
                    record.expires_at.isoformat(),
                )
                raise ExpiredTokenError()

            if account.enabled:
                logger.info("account id=%s already enabled, consuming token", account.account_id)
                record.used = True
                uow.tokens.save(record)
                return VerificationResult(
                    username=account.username,
                    email=account.email,
                    message=ALREADY_VERIFIED_MESSAGE,
                    already_verified=True,
                )

            account.enabled = True
            record.account = uow.accounts.save(account)
            record.used = True
            uow.tokens.save(record)
            logger.info("account id=%s username=%s activated", account.account_id, account.username)
            return VerificationResult(
                username=account.username,
                email=account.email,
                message=VERIFIED_MESSAGE,
                already_verified=False,
            )

        return self._in_transaction(consume)

    def login(self, payload: LoginInput) -> LoginResult:
        """Authenticate by username or email and issue a session token."""
        identifier = _require("username_or_email", payload.username_or_email)
        _require("password", payload.password)
        password = payload.password
        logger.info("processing login for %s", identifier)

        accounts = self._storage.accounts
        account = accounts.find_by_username_ci(identifier)
        if account is None:
            account = accounts.find_by_email_ci(identifier)

        if account is None:
            self._hasher.verify(password, self._timing_dummy_hash())
            logger.warning("login failed: no account for %s", identifier)
            raise InvalidCredentialsError()

        if not account.enabled:
            logger.warning(
                "login failed: account id=%s username=%s not activated",
                account.account_id,
                account.username,
            )
            raise AccountNotActivatedError()

        if not self._hasher.verify(password, account.password_hash):
            logger.warning(
                "login failed: wrong password for account id=%s username=%s",
                account.account_id,
                account.username,
            )
            raise InvalidCredentialsError()

        session_token = self._signer.issue(account.account_id, account.username)
        logger.info("login succeeded for account id=%s username=%s", account.account_id, account.username)
        return LoginResult(
            session_token=session_token,
            username=account.username,
            email=account.email,
            message=LOGIN_MESSAGE,
        )

    def _in_transaction(self, work: Callable[[UnitOfWork], T]) -> T:
        """Run ``work`` in a unit of work, retrying when a concurrent writer aborted it."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                with self._storage.unit_of_work() as uow:
                    return work(uow)
            except TransactionConflict:
                if attempt == self._max_attempts:
                    raise
                logger.info("transaction conflict, retrying (attempt %d of %d)", attempt, self._max_attempts)
        raise AssertionError("unreachable")

    def _after_signup_commit(self, account: Account, token: VerificationToken) -> None:
        try:
            self._notifier.notify_verification(account.email, account.username, token.secret)
        except Exception:
            logger.exception(
                "verification notice failed for account id=%s, signup continues",
                account.account_id,
            )

    def _timing_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash(_TIMING_DUMMY_PASSWORD)
        return self._dummy_hash
