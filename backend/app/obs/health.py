"""Liveness and readiness probes.

Readiness needs Redis (rate limits, notification stream) and Postgres
(conversation store). Presence counts are reported for operators but never
gate readiness.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Tuple

import asyncpg
from redis.exceptions import RedisError

from app.domain.presence import get_engine
from app.infra import postgres
from app.infra.redis import redis_client

LOGGER = logging.getLogger(__name__)

REDIS_TIMEOUT_SECONDS = 0.2
POSTGRES_TIMEOUT_SECONDS = 0.3


async def _timed(name: str, probe: Callable[[], Awaitable[Any]], timeout: float) -> Dict[str, Any]:
	started = perf_counter()
	try:
		await asyncio.wait_for(probe(), timeout=timeout)
	except (RedisError, asyncpg.PostgresError, OSError, asyncio.TimeoutError) as exc:
		LOGGER.warning("readiness_probe_failed", extra={"component": name}, exc_info=True)
		return {"ok": False, "error": type(exc).__name__}
	return {"ok": True, "latency_ms": round((perf_counter() - started) * 1000, 2)}


async def _select_one() -> None:
	pool = await postgres.get_pool()
	async with pool.acquire() as conn:
		await conn.execute("SELECT 1")


async def _postgres_status() -> Dict[str, Any]:
	try:
		return await _timed("postgres", _select_one, POSTGRES_TIMEOUT_SECONDS)
	except AssertionError:
		return {"ok": False, "error": "pool_unavailable"}


def _presence_status() -> Dict[str, Any]:
	stats = get_engine().connection_stats()
	return {
		"ok": True,
		"connections": stats["totalConnections"],
		"online_profiles": stats["onlineProfiles"],
	}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	checks = {
		"redis": await _timed("redis", redis_client.ping, REDIS_TIMEOUT_SECONDS),
		"postgres": await _postgres_status(),
		"presence": _presence_status(),
	}
	ok = checks["redis"]["ok"] and checks["postgres"]["ok"]
	return (200 if ok else 503), {"status": "ok" if ok else "degraded", "checks": checks}
