"""Read-only access to the Admin, HR and Employee profile collections."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from app.domain.messaging.exceptions import storage_errors
from app.domain.profiles.models import ProfileRecord, Role
from app.infra.postgres import get_pool

log = logging.getLogger(__name__)

# Each role owns its own table; the display-name column differs between them.
_TABLES: Dict[Role, tuple[str, str, str]] = {
	Role.ADMIN: ("admins", "full_name", "NULL"),
	Role.HR: ("hrs", "name", "NULL"),
	Role.EMPLOYEE: ("employees", "name", "department"),
}


class _InMemoryDirectory:
	"""Fallback store used in tests when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._records: Dict[Role, Dict[str, ProfileRecord]] = {role: {} for role in Role}

	async def add(self, record: ProfileRecord) -> None:
		async with self._lock:
			self._records[record.role][record.profile_id] = record

	async def reset(self) -> None:
		async with self._lock:
			for bucket in self._records.values():
				bucket.clear()

	async def find_by_auth_id(self, role: Role, auth_id: str) -> Optional[ProfileRecord]:
		async with self._lock:
			for record in self._records[role].values():
				if record.auth_id == auth_id:
					return record
			return None

	async def find_by_profile_id(self, role: Role, profile_id: str) -> Optional[ProfileRecord]:
		async with self._lock:
			return self._records[role].get(profile_id)

	async def find_by_email(self, email: str) -> List[ProfileRecord]:
		target = email.strip().lower()
		async with self._lock:
			return [
				record
				for role in Role
				for record in self._records[role].values()
				if record.email and record.email.strip().lower() == target
			]


_MEMORY_DIRECTORY = _InMemoryDirectory()


async def seed_profiles(records: Iterable[ProfileRecord]) -> None:
	"""Load profiles into the in-memory directory (tests and local tooling)."""
	for record in records:
		await _MEMORY_DIRECTORY.add(record)


async def reset_memory_directory() -> None:
	await _MEMORY_DIRECTORY.reset()


class ProfileDirectory:
	"""Repository backed by asyncpg with an in-memory fallback."""

	def __init__(self) -> None:
		self._pool_checked = False
		self._pool = None

	async def _pool_or_none(self):
		if self._pool_checked:
			return self._pool
		self._pool_checked = True
		try:
			pool = await get_pool()
		except AssertionError:
			pool = None
		except (OSError, ConnectionError) as exc:
			log.warning("profile_directory_pool_unavailable", extra={"error": str(exc)})
			pool = None
		self._pool = pool
		return pool

	async def find_by_auth_id(self, role: Role, auth_id: str) -> Optional[ProfileRecord]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_DIRECTORY.find_by_auth_id(role, auth_id)
		table, name_col, dept_col = _TABLES[role]
		with storage_errors("profile_lookup"):
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					f"""
					SELECT id, user_id, {name_col} AS display_name, email, {dept_col} AS department
					FROM {table}
					WHERE user_id::text = $1
					LIMIT 1
					""",
					auth_id,
				)
		return self._row_to_record(role, row) if row else None

	async def find_by_profile_id(self, role: Role, profile_id: str) -> Optional[ProfileRecord]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_DIRECTORY.find_by_profile_id(role, profile_id)
		table, name_col, dept_col = _TABLES[role]
		with storage_errors("profile_lookup"):
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					f"""
					SELECT id, user_id, {name_col} AS display_name, email, {dept_col} AS department
					FROM {table}
					WHERE id::text = $1
					LIMIT 1
					""",
					profile_id,
				)
		return self._row_to_record(role, row) if row else None

	async def find_by_email(self, email: str) -> List[ProfileRecord]:
		if not email:
			return []
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_DIRECTORY.find_by_email(email)
		records: List[ProfileRecord] = []
		with storage_errors("profile_lookup"):
			async with pool.acquire() as conn:
				for role, (table, name_col, dept_col) in _TABLES.items():
					rows = await conn.fetch(
						f"""
						SELECT id, user_id, {name_col} AS display_name, email, {dept_col} AS department
						FROM {table}
						WHERE lower(email) = lower($1)
						""",
						email,
					)
					records.extend(self._row_to_record(role, row) for row in rows)
		return records

	def _row_to_record(self, role: Role, row) -> ProfileRecord:
		auth_id = row["user_id"]
		return ProfileRecord(
			profile_id=str(row["id"]),
			role=role,
			auth_id=str(auth_id) if auth_id is not None else None,
			display_name=row["display_name"] or "",
			email=row["email"],
			department=row["department"],
		)
