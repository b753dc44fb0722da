"""bcrypt-backed password hashing."""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger(__name__)


class BcryptCredentialHasher:
    """One-way password hashing with a configurable bcrypt cost factor.

    bcrypt only considers the first 72 bytes of a password; longer inputs are
    truncated before hashing so that ``hash`` and ``verify`` agree.
    """

    _MAX_BYTES = 72

    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds

    def hash(self, raw_password: str) -> str:
        """Return a bcrypt hash of the given plaintext password."""
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(self._encode(raw_password), salt).decode("utf-8")

    def verify(self, raw_password: str, password_hash: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        try:
            return bcrypt.checkpw(self._encode(raw_password), password_hash.encode("utf-8"))
        except ValueError:
            logger.warning("stored password hash is not a valid bcrypt hash")
            return False

    def _encode(self, raw_password: str) -> bytes:
        return raw_password.encode("utf-8")[: self._MAX_BYTES]
