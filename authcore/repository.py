"""Postgres repository for accounts and email verification tokens."""

from __future__ import annotations

import uuid
from contextlib import AbstractContextManager, contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from psycopg import Connection, errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, VerificationToken, fold_identifier
from .domain.errors import ConflictError, TransactionConflict
from .security.tokens import hash_verification_secret

Connect = Callable[[], AbstractContextManager[Connection]]

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        account_id TEXT PRIMARY KEY,
        username TEXT NOT NULL,
        username_key TEXT NOT NULL CONSTRAINT accounts_username_key_uq UNIQUE,
        display_name TEXT NOT NULL,
        email TEXT NOT NULL,
        email_key TEXT NOT NULL CONSTRAINT accounts_email_key_uq UNIQUE,
        phone TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        enabled BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS verification_tokens (
        token_id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL REFERENCES accounts (account_id),
        secret_hash TEXT NOT NULL CONSTRAINT verification_tokens_secret_uq UNIQUE,
        expires_at TIMESTAMPTZ NOT NULL,
        used BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS verification_tokens_account_idx ON verification_tokens (account_id)",
)

_ACCOUNT_COLUMNS = "account_id, username, display_name, email, phone, password_hash, enabled, created_at"

_CONFLICT_MESSAGES = {
    "accounts_username_key_uq": "username exists",
    "accounts_email_key_uq": "email exists",
}


def conflict_from_violation(exc: errors.UniqueViolation) -> ConflictError | None:
    """Map a unique-constraint violation onto the business conflict it represents."""
    message = _CONFLICT_MESSAGES.get(exc.diag.constraint_name or "")
    if message is None:
        return None
    return ConflictError(message)


def _map_account(row: tuple) -> Account:
    """Convert a raw database tuple into the domain ``Account`` dataclass."""
    return Account(
        account_id=row[0],
        username=row[1],
        display_name=row[2],
        email=row[3],
        phone=row[4],
        password_hash=row[5],
        enabled=row[6],
        created_at=row[7],
    )


class PostgresAccountStore:
    """Account persistence keyed on case-folded usernames and emails."""

    def __init__(self, connect: Connect) -> None:
        self._connect = connect

    def find_by_username_ci(self, username: str) -> Account | None:
        return self._find_one("username_key", fold_identifier(username))

    def find_by_email_ci(self, email: str) -> Account | None:
        return self._find_one("email_key", fold_identifier(email))

    def exists_by_username_ci(self, username: str) -> bool:
        return self._exists("username_key", fold_identifier(username))

    def exists_by_email_ci(self, email: str) -> bool:
        return self._exists("email_key", fold_identifier(email))

    def save(self, account: Account) -> Account:
        """Insert or update ``account``; ``enabled`` never flips back to false."""
        account_id = account.account_id or str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        try:
            with self._connect() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (
                            account_id, username, username_key, display_name, email, email_key,
                            phone, password_hash, enabled, created_at, updated_at
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (account_id) DO UPDATE SET
                            display_name = EXCLUDED.display_name,
                            phone = EXCLUDED.phone,
                            password_hash = EXCLUDED.password_hash,
                            enabled = accounts.enabled OR EXCLUDED.enabled,
                            updated_at = EXCLUDED.updated_at
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            account_id,
                            account.username,
                            account.username_key,
                            account.display_name,
                            account.email,
                            account.email_key,
                            account.phone,
                            account.password_hash,
                            account.enabled,
                            account.created_at,
                            now,
                        ),
                    )
                    row = cur.fetchone()
        except errors.UniqueViolation as exc:
            conflict = conflict_from_violation(exc)
            if conflict is None:
                raise
            raise conflict from exc
        return _map_account(row)

    def _find_one(self, column: str, key: str) -> Account | None:
        with self._connect() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE {column} = %s",
                    (key,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return _map_account(row)

    def _exists(self, column: str, key: str) -> bool:
        with self._connect() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT EXISTS (SELECT 1 FROM accounts WHERE {column} = %s)", (key,))
                row = cur.fetchone()
        return bool(row and row[0])


class PostgresVerificationTokenStore:
    """Verification tokens stored by the SHA-256 digest of their secret."""

    def __init__(self, connect: Connect) -> None:
        self._connect = connect

    def find_unused_by_secret(self, secret: str) -> VerificationToken | None:
        """Return the unused token and its account, both row-locked until commit."""
        with self._connect() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    SELECT t.token_id, t.expires_at, t.used, t.created_at,
                           a.account_id, a.username, a.display_name, a.email, a.phone,
                           a.password_hash, a.enabled, a.created_at
                    FROM verification_tokens t
                    JOIN accounts a ON a.account_id = t.account_id
                    WHERE t.secret_hash = %s AND NOT t.used
                    FOR UPDATE
                    """,
                    (hash_verification_secret(secret),),
                )
                row = cur.fetchone()
        if not row:
            return None
        return VerificationToken(
            token_id=row[0],
            expires_at=row[1],
            used=row[2],
            created_at=row[3],
            account=_map_account(row[4:]),
            secret=secret,
        )

    def save(self, token: VerificationToken) -> VerificationToken:
        """Insert or update ``token``; ``used`` never flips back to false."""
        token_id = token.token_id or str(uuid.uuid4())
        with self._connect() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    INSERT INTO verification_tokens (token_id, account_id, secret_hash, expires_at, used, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (token_id) DO UPDATE SET
                        used = verification_tokens.used OR EXCLUDED.used
                    RETURNING token_id, expires_at, used, created_at
                    """,
                    (
                        token_id,
                        token.account.account_id,
                        hash_verification_secret(token.secret),
                        token.expires_at,
                        token.used,
                        token.created_at,
                    ),
                )
                row = cur.fetchone()
        return VerificationToken(
            token_id=row[0],
            expires_at=row[1],
            used=row[2],
            created_at=row[3],
            account=token.account,
            secret=token.secret,
        )


class PostgresUnitOfWork:
    """Stores bound to a single connection whose transaction is already open."""

    def __init__(self, conn: Connection[Any]) -> None:
        connect: Connect = lambda: nullcontext(conn)  # noqa: E731
        self.accounts = PostgresAccountStore(connect)
        self.tokens = PostgresVerificationTokenStore(connect)


class PostgresStorage:
    """Pool-backed storage; writes go through serializable units of work."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool
        self._accounts = PostgresAccountStore(self._pool.connection)

    @property
    def accounts(self) -> PostgresAccountStore:
        """Account store running each call in its own pooled connection."""
        return self._accounts

    def ensure_schema(self) -> None:
        """Create the account and token tables when they do not exist yet."""
        with self._pool.connection() as conn:
            with conn.transaction():
                for statement in SCHEMA_STATEMENTS:
                    conn.execute(statement)

    @contextmanager
    def unit_of_work(self) -> Iterator[PostgresUnitOfWork]:
        """Yield stores sharing one SERIALIZABLE transaction.

        Commits when the block exits cleanly and rolls back otherwise. Aborts
        caused by concurrent writers surface as ``TransactionConflict``.
        """
        try:
            with self._pool.connection() as conn:
                with conn.transaction():
                    conn.execute("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE")
                    yield PostgresUnitOfWork(conn)
        except (errors.SerializationFailure, errors.DeadlockDetected) as exc:
            raise TransactionConflict(str(exc)) from exc
