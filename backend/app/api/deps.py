"""Shared FastAPI dependencies for messaging routes."""

from __future__ import annotations

from fastapi import Depends, HTTPException, status

from app.domain.profiles import IdentityResolver, InvalidRole, ProfileRef, ResolvedProfile, parse_role
from app.infra.auth import AuthenticatedUser, get_current_user

_resolver = IdentityResolver()


async def get_current_profile(user: AuthenticatedUser = Depends(get_current_user)) -> ResolvedProfile:
	"""Resolve the caller to a profile; a caller without one gets ProfileNotFound."""
	return await _resolver.require(user.id, user.role)


def path_ref(role: str, profile_id: str) -> ProfileRef:
	"""Role-tagged profile from ``/{role}/{profile_id}`` path segments."""
	try:
		return ProfileRef(parse_role(role), profile_id)
	except InvalidRole as exc:
		raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid_role") from exc
