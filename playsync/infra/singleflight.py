"""Per-key single-flight execution for remote reads."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, TypeVar

from playsync.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
	"""Collapse concurrent calls for the same key into one execution.

	The first caller for a key starts `fn()` as a task; later callers await the
	same task until it settles. Failures propagate to every waiter and release
	the key, so the next call starts over.
	"""

	def __init__(self) -> None:
		self._tasks: Dict[str, asyncio.Task] = {}

	def in_flight(self, key: str) -> bool:
		task = self._tasks.get(key)
		return task is not None and not task.done()

	def __len__(self) -> int:
		return len(self._tasks)

	async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
		task = self._tasks.get(key)
		if task is not None and not task.done():
			obs_metrics.singleflight_joined()
			return await asyncio.shield(task)
		obs_metrics.singleflight_started()
		task = asyncio.ensure_future(fn())
		self._tasks[key] = task
		task.add_done_callback(lambda done, key=key: self._release(key, done))
		return await asyncio.shield(task)

	def forget(self, key: str) -> None:
		"""Detach the in-flight call for `key`; waiters keep their result."""
		if self._tasks.pop(key, None) is not None:
			logger.debug("Detached in-flight call for %s", key)

	def clear(self) -> None:
		self._tasks.clear()

	def _release(self, key: str, task: asyncio.Task) -> None:
		if self._tasks.get(key) is task:
			del self._tasks[key]
		if not task.cancelled() and task.exception() is not None:
			# retrieved by the waiters; mark it seen so asyncio does not warn
			logger.debug("In-flight call for %s failed: %s", key, task.exception())


async def gather_mapping(calls: Dict[str, Awaitable[Any]]) -> Dict[str, Any]:
	"""`asyncio.gather` over a mapping, preserving keys."""
	keys = list(calls)
	values = await asyncio.gather(*(calls[key] for key in keys))
	return dict(zip(keys, values))


__all__ = ["SingleFlight", "gather_mapping"]
