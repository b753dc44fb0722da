"""Utilities for issuing session JWTs and email verification secrets."""

from __future__ import annotations

import hashlib
import secrets
import time
from typing import Any

import jwt

_ALGORITHM = "HS256"


class JwtTokenSigner:
    """Issues HS256 session tokens bound to an account identity."""

    def __init__(self, *, secret: str, issuer: str, ttl_seconds: int) -> None:
        self._secret = secret
        self._issuer = issuer
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, account_id: str, username: str) -> str:
        """Create a signed JWT representing an authenticated account.

        Parameters
        ----------
        account_id:
            Account identifier to embed in the token `sub` claim.
        username:
            Username carried alongside the subject for downstream display.

        Returns
        -------
        str
            The encoded JWT string.
        """

        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": account_id,
            "username": username,
            "iat": now,
            "exp": now + self._ttl_seconds,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def decode(self, token: str) -> dict[str, Any]:
        """Decode and verify a session JWT returning its payload.

        Raises
        ------
        jwt.PyJWTError
            Propagated when the token is invalid, expired, or signed by another issuer.
        """

        return jwt.decode(
            token,
            self._secret,
            algorithms=[_ALGORITHM],
            issuer=self._issuer,
        )


def generate_verification_secret() -> str:
    """Return a URL-safe verification secret carrying 256 bits of entropy."""
    return secrets.token_urlsafe(32)


def hash_verification_secret(secret: str) -> str:
    """Return the SHA-256 hex digest stored in place of a verification secret."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()
