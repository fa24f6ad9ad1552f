"""Presence introspection routes."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.api.deps import get_current_profile
from app.domain.presence import get_engine
from app.domain.profiles import ResolvedProfile

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("/stats")
async def presence_stats_endpoint(
	profile: ResolvedProfile = Depends(get_current_profile),
) -> Dict[str, Any]:
	return get_engine().connection_stats()


@router.get("/online/{profile_id}")
async def presence_online_endpoint(
	profile_id: str,
	profile: ResolvedProfile = Depends(get_current_profile),
) -> Dict[str, Any]:
	return {"profile_id": profile_id, "online": get_engine().is_online(profile_id)}
