from __future__ import annotations

import jwt
import pytest

from authcore.security.passwords import BcryptCredentialHasher
from authcore.security.tokens import (
    JwtTokenSigner,
    generate_verification_secret,
    hash_verification_secret,
)


def test_hasher_verifies_matching_password(hasher):
    hashed = hasher.hash("correct horse")

    assert hashed.startswith("$2")
    assert hasher.verify("correct horse", hashed)
    assert not hasher.verify("Correct horse", hashed)


def test_hasher_salts_each_hash(hasher):
    assert hasher.hash("same") != hasher.hash("same")


def test_hasher_rejects_malformed_hash_without_raising(hasher):
    assert hasher.verify("anything", "not-a-bcrypt-hash") is False


def test_hasher_accepts_passwords_longer_than_bcrypt_limit():
    hasher = BcryptCredentialHasher(rounds=4)
    long_password = "p" * 100

    assert hasher.verify(long_password, hasher.hash(long_password))


def test_signer_issues_token_bound_to_account(signer):
    token = signer.issue("acct-1", "alice")
    claims = signer.decode(token)

    assert claims["sub"] == "acct-1"
    assert claims["username"] == "alice"
    assert claims["iss"] == "authcore-tests"
    assert claims["exp"] - claims["iat"] == signer.ttl_seconds


def test_signer_rejects_token_from_other_issuer(signer):
    other = JwtTokenSigner(secret="test-signing-secret-0123456789abcdef", issuer="someone-else", ttl_seconds=60)

    with pytest.raises(jwt.InvalidIssuerError):
        signer.decode(other.issue("acct-1", "alice"))


def test_signer_rejects_token_signed_with_other_secret(signer):
    other = JwtTokenSigner(secret="another-signing-secret-0123456789abcdef", issuer="authcore-tests", ttl_seconds=60)

    with pytest.raises(jwt.InvalidSignatureError):
        signer.decode(other.issue("acct-1", "alice"))


def test_verification_secrets_are_unique_and_url_safe():
    secrets_ = {generate_verification_secret() for _ in range(50)}

    assert len(secrets_) == 50
    for secret in secrets_:
        assert len(secret) >= 43
        assert all(ch.isalnum() or ch in "-_" for ch in secret)


def test_verification_secret_digest_is_stable_sha256():
    digest = hash_verification_secret("abc")

    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert hash_verification_secret("abc") == digest
