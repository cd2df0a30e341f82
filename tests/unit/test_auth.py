"""
Unit tests for bearer token verification.

Tokens are signed with a throwaway RSA key whose public half is served as the
JWKS.
"""

import base64
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from sentra.api import auth


def _b64url(number: int) -> str:
    raw = number.to_bytes((number.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@pytest.fixture(scope="module")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks(private_key, monkeypatch):
    numbers = private_key.public_key().public_numbers()
    keys = {"keys": [{"kty": "RSA", "kid": "key-1", "alg": "RS256", "n": _b64url(numbers.n), "e": _b64url(numbers.e)}]}
    calls = []

    async def fake_get_jwks():
        calls.append(1)
        return keys

    monkeypatch.setattr(auth, "_get_jwks", fake_get_jwks)
    return calls


def make_token(private_key, kid="key-1", expires_in=3600, **claims):
    payload = {"exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in), **claims}
    headers = {"kid": kid} if kid else {}
    return jwt.encode(payload, private_key, algorithm="RS256", headers=headers)


async def test_valid_token(private_key, jwks):
    token = make_token(private_key, sub="user123", email="a@example.com")

    payload = await auth.decode_token(token)

    assert payload is not None
    assert payload.sub == "user123"
    assert payload.email == "a@example.com"


async def test_user_id_claim_becomes_subject(private_key, jwks):
    token = make_token(private_key, user_id="uid_42")

    payload = await auth.decode_token(token)

    assert payload.sub == "uid_42"


async def test_expired_token(private_key, jwks):
    token = make_token(private_key, sub="user123", expires_in=-60)

    assert await auth.decode_token(token) is None


async def test_unknown_kid_refreshes_once(private_key, jwks):
    token = make_token(private_key, kid="rotated", sub="user123")

    assert await auth.decode_token(token) is None
    assert len(jwks) == 2


async def test_token_without_kid(private_key, jwks):
    assert await auth.decode_token(make_token(private_key, kid=None, sub="user123")) is None


async def test_wrong_signature(jwks):
    other = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    assert await auth.decode_token(make_token(other, sub="user123")) is None


async def test_garbage_token(jwks):
    assert await auth.decode_token("not-a-jwt") is None


def test_rsa_key_from_jwk(private_key):
    numbers = private_key.public_key().public_numbers()
    key = auth._rsa_public_key_from_jwk({"kty": "RSA", "n": _b64url(numbers.n), "e": _b64url(numbers.e)})

    assert key.public_numbers() == numbers
    with pytest.raises(ValueError):
        auth._rsa_public_key_from_jwk({"kty": "EC"})
