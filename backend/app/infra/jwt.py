"""HS256 access tokens shared with the HR auth service.

The auth service issues the tokens; ``encode_access`` exists for tooling and
tests. Verification pins the algorithm and checks issuer, audience and expiry.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Mapping

import jwt

from app.settings import settings

ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 3600
CLOCK_SKEW_SECONDS = 5
REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sub"]


def encode_access(claims: Mapping[str, Any], *, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> str:
    issued_at = int(time.time())
    body: Dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
        **claims,
    }
    return jwt.encode(body, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> Dict[str, Any]:
    """Return verified claims; raises a jwt.InvalidTokenError subclass otherwise."""
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[ALGORITHM],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        leeway=CLOCK_SKEW_SECONDS,
        options={"require": REQUIRED_CLAIMS},
    )
