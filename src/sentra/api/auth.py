"""Authentication utilities.

This service never issues tokens. Bearer tokens are RS256 JWTs issued by the
external identity provider and verified against its published JWKS.
"""

import base64
import time
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger
from pydantic import BaseModel

from ..config import settings

security = HTTPBearer(auto_error=False)

JWKS_URL = settings.JWKS_URL
JWT_ISSUER = settings.JWT_ISSUER.rstrip("/")
JWT_AUDIENCE = settings.JWT_AUDIENCE

_JWKS_CACHE: dict[str, Any] = {"fetched_at": 0.0, "jwks": None}
_JWKS_TTL_SECONDS = settings.JWKS_CACHE_TTL_SECONDS


class TokenPayload(BaseModel):
    sub: str
    email: Optional[str] = None
    exp: datetime
    iss: Optional[str] = None
    aud: Optional[str] = None


def _b64url_to_int(val: str) -> int:
    padded = val + "=" * (-len(val) % 4)
    raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    return int.from_bytes(raw, byteorder="big")


def _rsa_public_key_from_jwk(jwk: Dict[str, Any]) -> rsa.RSAPublicKey:
    if jwk.get("kty") != "RSA":
        raise ValueError("Unsupported JWK kty")
    n = _b64url_to_int(jwk["n"])
    e = _b64url_to_int(jwk["e"])
    numbers = rsa.RSAPublicNumbers(e, n)
    return numbers.public_key()


async def _get_jwks() -> Dict[str, Any]:
    now = time.time()
    cached = _JWKS_CACHE.get("jwks")
    fetched_at = float(_JWKS_CACHE.get("fetched_at", 0.0))
    if cached is not None and (now - fetched_at) < _JWKS_TTL_SECONDS:
        return cached

    async with httpx.AsyncClient(timeout=5.0) as client:
        resp = await client.get(JWKS_URL)
        resp.raise_for_status()
        jwks = resp.json()

    _JWKS_CACHE["jwks"] = jwks
    _JWKS_CACHE["fetched_at"] = now
    return jwks


async def decode_token(token: str) -> Optional[TokenPayload]:
    """Decode and validate a JWT using JWKS (RS256)."""
    try:
        header = jwt.get_unverified_header(token)
        kid = header.get("kid")
        if not kid:
            return None

        jwks = await _get_jwks()
        keys = jwks.get("keys", [])
        jwk = next((k for k in keys if k.get("kid") == kid), None)
        if jwk is None:
            # Force refresh once in case of rotation
            _JWKS_CACHE["jwks"] = None
            jwks = await _get_jwks()
            keys = jwks.get("keys", [])
            jwk = next((k for k in keys if k.get("kid") == kid), None)
            if jwk is None:
                return None

        public_key = _rsa_public_key_from_jwk(jwk)
        payload = jwt.decode(
            token,
            public_key,
            algorithms=["RS256"],
            audience=JWT_AUDIENCE or None,
            issuer=JWT_ISSUER or None,
            options={"verify_aud": bool(JWT_AUDIENCE)},
        )
        if "sub" not in payload and "user_id" in payload:
            payload["sub"] = payload["user_id"]
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        return None
    except Exception as e:
        logger.debug(f"Token rejected: {e}")
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> TokenPayload:
    """Dependency to get the authenticated caller from the bearer token."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = await decode_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


async def get_user_id(payload: TokenPayload = Depends(get_current_user)) -> str:
    """Dependency to get the current user's id."""
    return payload.sub


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Like get_user_id, but None instead of a 401 for endpoints that report
    authentication failures in their own error format."""
    if credentials is None or not credentials.credentials:
        return None
    payload = await decode_token(credentials.credentials)
    return payload.sub if payload is not None else None
