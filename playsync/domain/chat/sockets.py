"""Push binding for an open conversation (`chat-{a}-{b}` topic)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from pydantic import ValidationError

from playsync.infra.push import PushChannel, PushHandle
from playsync.obs import metrics as obs_metrics

from .models import ChatEvent
from .schemas import parse_message
from .stream import MessageStream

logger = logging.getLogger(__name__)


class ConversationBinding:
	"""Routes conversation events from the push channel into a `MessageStream`.

	With `poll_interval` set the binding also fetches the newest page on that
	interval, for deployments where the push channel never delivers.
	"""

	def __init__(
		self,
		channel: PushChannel,
		stream: MessageStream,
		*,
		poll_interval: float | None = None,
	) -> None:
		self._channel = channel
		self._stream = stream
		self._poll_interval = poll_interval
		self._handle: Optional[PushHandle] = None
		self._poller: Optional[asyncio.Task] = None

	@property
	def topic(self) -> str:
		return self._stream.key.topic

	@property
	def bound(self) -> bool:
		return self._handle is not None

	@property
	def polling(self) -> bool:
		return self._poller is not None and not self._poller.done()

	def bind(self) -> PushHandle:
		if self._handle is not None:
			return self._handle
		handle = self._channel.subscribe(self.topic)
		handle.on(ChatEvent.NEW_MESSAGE.value, self._on_new_message)
		handle.on(ChatEvent.MESSAGE_EDITED.value, self._on_edited)
		handle.on(ChatEvent.MESSAGE_DELETED.value, self._on_deleted)
		handle.on(ChatEvent.MESSAGE_DELIVERED.value, self._on_delivered)
		self._handle = handle
		obs_metrics.push_subscribed()
		logger.info("Subscribed to %s", self.topic)
		if self._poll_interval:
			self._poller = asyncio.get_running_loop().create_task(self._poll(self._poll_interval))
			logger.info("Polling %s every %.1fs", self.topic, self._poll_interval)
		return handle

	def unbind(self) -> None:
		if self._poller is not None:
			self._poller.cancel()
			self._poller = None
		if self._handle is None:
			return
		self._channel.unsubscribe(self.topic)
		self._handle = None
		obs_metrics.push_unsubscribed()

	async def _poll(self, interval: float) -> None:
		while True:
			await asyncio.sleep(interval)
			await self._stream.poll_latest()

	def _on_new_message(self, payload: Any) -> None:
		obs_metrics.push_event(ChatEvent.NEW_MESSAGE.value)
		try:
			message = parse_message(payload)
		except ValidationError:
			logger.warning("Dropping malformed %s payload on %s", ChatEvent.NEW_MESSAGE.value, self.topic)
			return
		if message.sender_id == self._stream.user_id:
			# own echo only matters while the matching send is still pending
			pending = {entry.client_msg_id for entry in self._stream.unconfirmed()}
			if not message.client_msg_id or message.client_msg_id not in pending:
				return
		self._stream.receive(message)

	def _on_edited(self, payload: Any) -> None:
		obs_metrics.push_event(ChatEvent.MESSAGE_EDITED.value)
		self._stream.apply_edit(payload)

	def _on_deleted(self, payload: Any) -> None:
		obs_metrics.push_event(ChatEvent.MESSAGE_DELETED.value)
		self._stream.remove(payload)

	def _on_delivered(self, payload: Any) -> None:
		obs_metrics.push_event(ChatEvent.MESSAGE_DELIVERED.value)
		self._stream.apply_status(payload)


__all__ = ["ConversationBinding"]
