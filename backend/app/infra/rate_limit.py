"""Fixed-window counters in Redis, keyed per actor and action."""

from __future__ import annotations

import time
from typing import Optional

from app.infra.redis import redis_client

_KEY_PREFIX = "rl"


def _window_key(kind: str, actor_id: str, window: int, now: float) -> str:
	bucket = int(now // window)
	return f"{_KEY_PREFIX}:{kind}:{actor_id}:{window}:{bucket}"


async def allow(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> bool:
	"""Count one hit for ``actor_id`` and report whether it fits in ``limit``.

	A non-positive limit disables the action entirely. Counters expire with
	their window so stale buckets never accumulate.
	"""
	if limit <= 0:
		return False
	window = max(1, int(window_seconds))
	key = _window_key(kind, actor_id, window, time.time() if now is None else now)
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window)
		hits, _ = await pipe.execute()
	return int(hits) <= limit
