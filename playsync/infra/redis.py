"""Redis connection management for the shared cache backend.

Provides a stable proxy object so imports like `from playsync.infra.redis import redis_client`
always reference the same proxy instance. The underlying client can be swapped at
runtime (e.g., to fakeredis in tests) without breaking previously imported references.
"""

from __future__ import annotations

import redis.asyncio as redis

from playsync.settings import settings


class RedisProxy:
	"""Lightweight proxy that forwards attribute access to an underlying Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	async def set_json(self, name: str, value: str, ttl_seconds: float) -> None:
		"""SET with a millisecond expiry so sub-second TTLs survive rounding."""
		await self._client.set(name, value, px=max(1, int(ttl_seconds * 1000)))

	async def delete_prefix(self, prefix: str) -> int:
		"""Delete every key under `prefix`; SCAN based so large keyspaces don't block."""
		removed = 0
		async for key in self._client.scan_iter(match=f"{prefix}*"):
			removed += await self._client.delete(key)
		return removed

	# Fallback: delegate everything else to the underlying client
	def __getattr__(self, item):
		return getattr(self._client, item)


# Create proxy with the real client by default; no connection is opened until first use.
_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
