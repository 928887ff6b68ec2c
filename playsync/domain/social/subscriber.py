"""Per-user push subscription that keeps the relationship cache honest."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Iterable, Optional, Set

from playsync.domain.social.models import RELATIONSHIP_EVENTS, is_valid_user_id, normalize_id, user_topic
from playsync.domain.social.sync import RelationshipLoader
from playsync.infra.push import PushChannel, PushHandle
from playsync.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class PushEventSubscriber:
	"""Listens on `user-{id}` and force-refetches the user's relationships on any event.

	Only one topic is bound at a time. Rebinding to another user drops the
	previous topic first; `close()` also cancels refetches still in flight.
	"""

	def __init__(
		self,
		channel: PushChannel,
		loader: RelationshipLoader,
		events: Iterable[str] = RELATIONSHIP_EVENTS,
	) -> None:
		self._channel = channel
		self._loader = loader
		self._events = tuple(events)
		self._user_id: Optional[str] = None
		self._handle: Optional[PushHandle] = None
		self._tasks: Set[asyncio.Task] = set()

	@property
	def user_id(self) -> Optional[str]:
		return self._user_id

	@property
	def topic(self) -> Optional[str]:
		return self._handle.topic if self._handle else None

	@property
	def pending(self) -> int:
		return len(self._tasks)

	def bind(self, user_id: Any) -> bool:
		user_id = normalize_id(user_id)
		if not is_valid_user_id(user_id):
			self.unbind()
			return False
		if user_id == self._user_id:
			return True
		self.unbind()
		handle = self._channel.subscribe(user_topic(user_id))
		for event in self._events:
			handle.on(event, partial(self._on_event, user_id, event))
		self._user_id = user_id
		self._handle = handle
		obs_metrics.push_subscribed()
		logger.info("Subscribed to %s", handle.topic)
		return True

	rebind = bind

	def unbind(self) -> None:
		if self._handle is None:
			return
		topic = self._handle.topic
		self._channel.unsubscribe(topic)
		self._handle = None
		self._user_id = None
		obs_metrics.push_unsubscribed()
		logger.info("Unsubscribed from %s", topic)

	async def drain(self) -> None:
		"""Wait for every scheduled refetch to settle."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	async def close(self) -> None:
		self.unbind()
		tasks = list(self._tasks)
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		self._tasks.clear()

	def _on_event(self, user_id: str, event: str, payload: Any) -> None:
		if user_id != self._user_id:
			return
		obs_metrics.push_event(event)
		logger.debug("Push event %s for %s", event, user_id)
		task = asyncio.get_running_loop().create_task(self._refetch(user_id))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def _refetch(self, user_id: str) -> None:
		await self._loader.invalidate(user_id)
		await self._loader.load(user_id, force=True)


__all__ = ["PushEventSubscriber"]
