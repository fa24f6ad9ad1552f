"""Shared Redis handle.

Modules import ``redis_client`` once; the object behind it can be replaced at
runtime (fakeredis in tests) without those imports going stale.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import redis.asyncio as redis

from app.settings import settings

_SCALAR_TYPES = (str, bytes, int, float)


def _stream_value(value: Any) -> Any:
	# Stream fields only take scalars; bools would otherwise be rejected.
	if isinstance(value, bool) or not isinstance(value, _SCALAR_TYPES):
		return str(value)
	return value


class RedisProxy:
	def __init__(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	async def xadd(
		self,
		name: str,
		fields: Mapping[str, Any],
		*,
		maxlen: Optional[int] = None,
		approximate: bool = True,
	) -> Any:
		encoded = {key: _stream_value(value) for key, value in fields.items()}
		return await self._client.xadd(name, encoded, maxlen=maxlen, approximate=approximate)

	def __getattr__(self, item: str) -> Any:
		return getattr(self._client, item)


redis_client = RedisProxy(redis.from_url(settings.redis_url, decode_responses=True))


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
