"""Resolve authentication identities to role-scoped profiles.

The same opaque id is sometimes an auth-account id and sometimes a profile id
depending on the caller, and role claims can be stale. Lookups therefore try
the claimed role first, then every other collection in a fixed order, and
finally settle on an "Unknown User" sentinel instead of failing.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from app.domain.messaging.exceptions import ProfileNotFound
from app.domain.profiles.directory import ProfileDirectory
from app.domain.profiles.models import ProfileRecord, ProfileRef, ResolvedProfile, Role, parse_role_or_none

log = logging.getLogger(__name__)

FALLBACK_ORDER: tuple[Role, ...] = (Role.EMPLOYEE, Role.HR, Role.ADMIN)


class IdentityResolver:
	def __init__(self, directory: ProfileDirectory | None = None) -> None:
		self._directory = directory or ProfileDirectory()

	async def resolve(self, auth_id: str, claimed_role: object = None) -> ResolvedProfile:
		"""Return the profile for ``auth_id``; never raises for a missing profile."""
		record = await self._find(str(auth_id), parse_role_or_none(claimed_role))
		if record is None:
			log.info("identity_unresolved", extra={"identifier": str(auth_id), "claimed_role": str(claimed_role)})
			return ResolvedProfile.unknown(str(auth_id))
		return ResolvedProfile.from_record(record)

	async def require(self, auth_id: str, claimed_role: object = None) -> ResolvedProfile:
		profile = await self.resolve(auth_id, claimed_role)
		if profile.is_unknown:
			raise ProfileNotFound(message=f"no profile for {auth_id}")
		return profile

	async def resolve_ref(self, ref: ProfileRef) -> ResolvedProfile:
		"""Enrich a known role-tagged profile id with display data."""
		record = await self._directory.find_by_profile_id(ref.role, ref.profile_id)
		if record is None:
			record = await self._directory.find_by_auth_id(ref.role, ref.profile_id)
		if record is None:
			return ResolvedProfile.unknown(ref.profile_id)
		return ResolvedProfile.from_record(record)

	async def require_ref(self, ref: ProfileRef) -> ResolvedProfile:
		profile = await self.resolve_ref(ref)
		if profile.is_unknown:
			raise ProfileNotFound(message=f"no {ref.role.value} profile {ref.profile_id}")
		return profile

	async def aliases_for_email(self, email: Optional[str]) -> List[ProfileRef]:
		"""All role-tagged profiles that share ``email`` (one human, many profiles)."""
		if not email:
			return []
		records = await self._directory.find_by_email(email)
		return [record.ref for record in records]

	async def _find(self, identifier: str, claimed: Optional[Role]) -> Optional[ProfileRecord]:
		order: list[Role] = [claimed] if claimed else []
		order.extend(role for role in FALLBACK_ORDER if role is not claimed)
		for role in order:
			record = await self._lookup(role, identifier)
			if record is not None:
				if claimed and role is not claimed:
					log.info(
						"identity_role_overridden",
						extra={"claimed_role": claimed.value, "resolved_role": role.value},
					)
				return record
		return None

	async def _lookup(self, role: Role, identifier: str) -> Optional[ProfileRecord]:
		record = await self._directory.find_by_auth_id(role, identifier)
		if record is None:
			record = await self._directory.find_by_profile_id(role, identifier)
		return record
