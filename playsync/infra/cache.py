"""Time-boxed fetch cache with pluggable memory / Redis backends."""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Set, Tuple

from playsync.infra.redis import RedisProxy, redis_client
from playsync.obs import metrics as obs_metrics
from playsync.settings import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
	key: str
	data: Any
	timestamp: float

	def is_fresh(self, ttl_seconds: float, now: float) -> bool:
		return now - self.timestamp < ttl_seconds


def cache_domain(key: str) -> str:
	"""`friend-state:abc` -> `friend-state`."""
	return key.split(":", 1)[0]


class CacheBackend(Protocol):
	shared: bool

	async def read(self, key: str) -> Optional[CacheEntry]:
		...

	async def write(self, entry: CacheEntry, ttl_seconds: float) -> None:
		...

	async def delete(self, key: str) -> None:
		...

	async def clear(self) -> None:
		...


class MemoryCacheBackend:
	"""Bounded in-process backend; oldest entries are evicted first."""

	shared = False

	def __init__(self, max_entries: int | None = None) -> None:
		self._max_entries = max(1, max_entries or settings.cache_max_entries)
		self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

	def __len__(self) -> int:
		return len(self._entries)

	def __contains__(self, key: object) -> bool:
		return key in self._entries

	async def read(self, key: str) -> Optional[CacheEntry]:
		return self._entries.get(key)

	async def write(self, entry: CacheEntry, ttl_seconds: float) -> None:
		self._entries.pop(entry.key, None)
		self._entries[entry.key] = entry
		self.sweep(ttl_seconds, entry.timestamp)
		while len(self._entries) > self._max_entries:
			evicted, _ = self._entries.popitem(last=False)
			logger.debug("Evicted cache entry %s (capacity %d)", evicted, self._max_entries)

	async def delete(self, key: str) -> None:
		self._entries.pop(key, None)

	async def clear(self) -> None:
		self._entries.clear()

	def sweep(self, ttl_seconds: float, now: float) -> int:
		"""Drop every entry older than the TTL. Returns the number removed."""
		expired = [key for key, entry in self._entries.items() if not entry.is_fresh(ttl_seconds, now)]
		for key in expired:
			del self._entries[key]
		return len(expired)


class RedisCacheBackend:
	"""Shares cache entries between processes; Redis expiry mirrors the TTL."""

	shared = True

	def __init__(self, client: RedisProxy | None = None, *, prefix: str | None = None) -> None:
		self._client = client or redis_client
		self._prefix = prefix if prefix is not None else settings.cache_key_prefix

	def _name(self, key: str) -> str:
		return f"{self._prefix}{key}"

	async def read(self, key: str) -> Optional[CacheEntry]:
		raw = await self._client.get(self._name(key))
		if raw is None:
			return None
		try:
			decoded = json.loads(raw)
			return CacheEntry(key=key, data=decoded["data"], timestamp=float(decoded["timestamp"]))
		except (json.JSONDecodeError, KeyError, TypeError, ValueError):
			logger.warning("Dropping undecodable cache entry %s", key)
			await self._client.delete(self._name(key))
			return None

	async def write(self, entry: CacheEntry, ttl_seconds: float) -> None:
		encoded = json.dumps({"data": entry.data, "timestamp": entry.timestamp})
		await self._client.set_json(self._name(entry.key), encoded, ttl_seconds)

	async def delete(self, key: str) -> None:
		await self._client.delete(self._name(key))

	async def clear(self) -> None:
		await self._client.delete_prefix(self._prefix)


def build_backend(kind: str | None = None) -> CacheBackend:
	kind = (kind or settings.cache_backend).lower()
	if kind == "redis":
		return RedisCacheBackend()
	return MemoryCacheBackend()


class FetchCache:
	"""Memoizes read results per key for `ttl_seconds`.

	Every invalidation bumps the key's epoch. Loaders capture the epoch before a
	remote read and only write back when it is unchanged, so a read that started
	before an invalidation can never overwrite fresher state.
	"""

	def __init__(
		self,
		backend: CacheBackend | None = None,
		*,
		ttl_seconds: float | None = None,
		clock: Callable[[], float] = time.time,
	) -> None:
		self._backend = backend or build_backend()
		self._ttl = float(ttl_seconds if ttl_seconds is not None else settings.relationship_cache_ttl_seconds)
		self._clock = clock
		self._epochs: Dict[str, int] = {}
		self._generation = 0
		self._written: Set[str] = set()

	@property
	def ttl_seconds(self) -> float:
		return self._ttl

	@property
	def backend(self) -> CacheBackend:
		return self._backend

	def epoch(self, key: str) -> Tuple[int, int]:
		return (self._generation, self._epochs.get(key, 0))

	async def get(self, key: str) -> Optional[CacheEntry]:
		entry = await self._backend.read(key)
		if entry is None:
			obs_metrics.cache_miss(cache_domain(key))
			return None
		if not entry.is_fresh(self._ttl, self._clock()):
			await self._backend.delete(key)
			obs_metrics.cache_miss(cache_domain(key))
			return None
		obs_metrics.cache_hit(cache_domain(key))
		return entry

	async def put(self, key: str, data: Any) -> CacheEntry:
		entry = CacheEntry(key=key, data=data, timestamp=self._clock())
		await self._backend.write(entry, self._ttl)
		self._written.add(key)
		return entry

	async def invalidate(self, key: str) -> None:
		self._epochs[key] = self._epochs.get(key, 0) + 1
		await self._backend.delete(key)
		self._written.discard(key)
		obs_metrics.cache_invalidated(cache_domain(key))

	async def clear(self) -> None:
		"""Drop this cache's entries. On a shared backend only the keys it wrote are deleted."""
		self._generation += 1
		self._epochs.clear()
		written, self._written = self._written, set()
		if getattr(self._backend, "shared", False):
			for key in written:
				await self._backend.delete(key)
			return
		await self._backend.clear()

	async def sweep(self) -> int:
		if isinstance(self._backend, MemoryCacheBackend):
			return self._backend.sweep(self._ttl, self._clock())
		return 0


__all__ = [
	"CacheBackend",
	"CacheEntry",
	"FetchCache",
	"MemoryCacheBackend",
	"RedisCacheBackend",
	"build_backend",
	"cache_domain",
]
