"""Process-wide asyncpg pool.

``get_pool`` raises ``AssertionError`` when no pool could be established;
the messaging and profile repositories treat that as "run from memory".
"""

from __future__ import annotations

from typing import Optional

import asyncpg

from app.obs.logging import get_logger
from app.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None
_logger = get_logger("hrm.postgres")


def _dsn() -> str:
	# asyncpg may try ::1 first for "localhost"; pin IPv4 for local stacks.
	return settings.postgres_url.replace("@localhost", "@127.0.0.1")


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is not None:
		return _pool
	_pool = await asyncpg.create_pool(
		dsn=_dsn(),
		min_size=settings.postgres_min_pool_size,
		max_size=settings.postgres_max_pool_size,
		command_timeout=settings.postgres_command_timeout,
		server_settings={"application_name": settings.service_name},
	)
	_logger.info(
		"postgres_pool_ready",
		extra={"min_size": settings.postgres_min_pool_size, "max_size": settings.postgres_max_pool_size},
	)
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None, "postgres pool unavailable"
	return _pool


async def close_pool() -> None:
	global _pool
	pool, _pool = _pool, None
	if pool is None:
		return
	await pool.close()
	_logger.info("postgres_pool_closed")
