"""Operator access tokens.

Operators authenticate with short-lived HS256 JWTs carrying their tenant and
roles. The signing secret is read from the environment on every call so a
rotated ``JWT_SECRET`` takes effect without a restart.
"""

import os
from datetime import UTC, datetime, timedelta

from fastapi import HTTPException
from jose import JWTError, jwt

OPERATOR_ROLES = ("admin", "operator", "super_admin")
TOKEN_TYPE = "access"
DEFAULT_TTL_MINUTES = 15


def _signing_params() -> tuple[str, str]:
    secret = os.getenv("JWT_SECRET") or ""
    if not secret:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    return secret, os.getenv("JWT_ALGORITHM") or "HS256"


def _ttl() -> timedelta:
    try:
        minutes = int(os.getenv("JWT_ACCESS_TTL_MINUTES") or DEFAULT_TTL_MINUTES)
    except ValueError:
        minutes = DEFAULT_TTL_MINUTES
    return timedelta(minutes=minutes)


def issue_access_token(user_id: str, tenant_id, roles: list[str] | None = None) -> str:
    secret, algorithm = _signing_params()
    issued = datetime.now(UTC)
    claims = {
        "sub": str(user_id),
        "tenant_id": str(tenant_id) if tenant_id else None,
        "roles": list(roles or []),
        "typ": TOKEN_TYPE,
        "iat": int(issued.timestamp()),
        "exp": int((issued + _ttl()).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_access_token(token: str) -> dict:
    """Verify ``token`` and return its claims; any failure is a 401."""
    secret, algorithm = _signing_params()
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    if claims.get("typ") != TOKEN_TYPE:
        raise HTTPException(status_code=401, detail="Invalid token type")
    return claims
