"""Caller identity for HTTP routes and socket handshakes.

A bearer JWT names the caller through ``sub`` (an auth id or profile id) and
may hint a role. The hint only narrows the profile lookup; the profile record
decides the effective role. In development the ``X-User-Id`` and
``X-User-Role`` headers stand in for a token.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from app.infra import jwt as jwt_helper
from app.settings import settings

_ROLE_CLAIMS = ("role", "userType", "user_type")

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	role: Optional[str] = None


def _role_hint(claims: Mapping[str, Any]) -> Optional[str]:
	for claim in _ROLE_CLAIMS:
		value = claims.get(claim)
		if isinstance(value, (list, tuple)):
			value = value[0] if value else None
		if value:
			return str(value).strip()
	return None


def decode_user(token: str) -> AuthenticatedUser:
	"""Raises jwt.InvalidTokenError for malformed, expired or subject-less tokens."""
	claims = jwt_helper.decode_access(token)
	subject = str(claims.get("sub") or "").strip()
	if not subject:
		raise InvalidTokenError("missing_claim:sub")
	return AuthenticatedUser(id=subject, role=_role_hint(claims))


def _unauthorized() -> HTTPException:
	return HTTPException(
		status_code=status.HTTP_401_UNAUTHORIZED,
		detail="invalid_token",
		headers={"WWW-Authenticate": "Bearer"},
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	if credentials is not None and credentials.scheme.lower() == "bearer":
		try:
			return decode_user(credentials.credentials)
		except InvalidTokenError as exc:
			raise _unauthorized() from exc
	if x_user_id and settings.is_dev():
		return AuthenticatedUser(id=x_user_id.strip(), role=x_user_role)
	raise _unauthorized()
