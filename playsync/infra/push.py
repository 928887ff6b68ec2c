"""Push channel: per-topic event delivery used to invalidate cached state."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

import socketio

from playsync.settings import settings

logger = logging.getLogger(__name__)

PushCallback = Callable[[Any], None]

_LIFECYCLE_EVENTS = frozenset({"connect", "disconnect", "connect_error"})


class PushHandle:
	"""Callbacks registered for one topic subscription."""

	def __init__(self, topic: str) -> None:
		self.topic = topic
		self._callbacks: Dict[str, List[PushCallback]] = {}
		self.closed = False

	def on(self, event: str, callback: PushCallback) -> "PushHandle":
		self._callbacks.setdefault(event, []).append(callback)
		return self

	def off(self, event: str, callback: PushCallback | None = None) -> None:
		if callback is None:
			self._callbacks.pop(event, None)
			return
		callbacks = self._callbacks.get(event, [])
		if callback in callbacks:
			callbacks.remove(callback)

	@property
	def events(self) -> Set[str]:
		return {event for event, callbacks in self._callbacks.items() if callbacks}

	def dispatch(self, event: str, payload: Any) -> int:
		"""Invoke every callback for `event`; returns how many ran."""
		if self.closed:
			return 0
		delivered = 0
		for callback in list(self._callbacks.get(event, ())):
			try:
				callback(payload)
			except Exception:
				logger.exception("Push callback for %s/%s failed", self.topic, event)
			delivered += 1
		return delivered

	def close(self) -> None:
		self.closed = True
		self._callbacks.clear()


class PushChannel(Protocol):
	def subscribe(self, topic: str) -> PushHandle:
		...

	def unsubscribe(self, topic: str) -> None:
		...


class InMemoryPushHub:
	"""In-process broker that fans published events out to attached channels."""

	def __init__(self) -> None:
		self._channels: List["InMemoryPushChannel"] = []

	def attach(self, channel: "InMemoryPushChannel") -> None:
		if channel not in self._channels:
			self._channels.append(channel)

	def detach(self, channel: "InMemoryPushChannel") -> None:
		if channel in self._channels:
			self._channels.remove(channel)

	def channel(self) -> "InMemoryPushChannel":
		return InMemoryPushChannel(self)

	def publish(self, topic: str, event: str, payload: Any = None) -> int:
		return sum(channel.deliver(topic, event, payload) for channel in list(self._channels))


class InMemoryPushChannel:
	"""One client of an `InMemoryPushHub`. One handle per topic; re-subscribing replaces it."""

	def __init__(self, hub: InMemoryPushHub | None = None) -> None:
		self.hub = hub or InMemoryPushHub()
		self.hub.attach(self)
		self._handles: Dict[str, PushHandle] = {}

	def subscribe(self, topic: str) -> PushHandle:
		previous = self._handles.pop(topic, None)
		if previous is not None:
			previous.close()
		handle = PushHandle(topic)
		self._handles[topic] = handle
		return handle

	def unsubscribe(self, topic: str) -> None:
		handle = self._handles.pop(topic, None)
		if handle is not None:
			handle.close()

	def is_subscribed(self, topic: str) -> bool:
		return topic in self._handles

	@property
	def topics(self) -> Set[str]:
		return set(self._handles)

	def deliver(self, topic: str, event: str, payload: Any = None) -> int:
		handle = self._handles.get(topic)
		if handle is None:
			return 0
		return handle.dispatch(event, payload)

	def publish(self, topic: str, event: str, payload: Any = None) -> int:
		return self.hub.publish(topic, event, payload)

	def close(self) -> None:
		for topic in list(self._handles):
			self.unsubscribe(topic)
		self.hub.detach(self)


class _PushNamespace(socketio.AsyncClientNamespace):
	"""Routes every server event to the channel; re-subscribes after reconnects."""

	def __init__(self, channel: "SocketIOPushChannel", namespace: str) -> None:
		super().__init__(namespace)
		self._channel = channel

	async def trigger_event(self, event, *args):
		if event in _LIFECYCLE_EVENTS:
			return await super().trigger_event(event, *args)
		self._channel.deliver(event, args[0] if args else None)
		return None

	async def on_connect(self) -> None:
		logger.info("Push channel connected on %s", self.namespace)
		await self._channel.resubscribe()

	async def on_disconnect(self, *args) -> None:
		logger.info("Push channel disconnected from %s", self.namespace)


class SocketIOPushChannel:
	"""Push channel over a python-socketio `AsyncClient`.

	Topics are joined by emitting `subscribe` / `unsubscribe` with `{"topic": ...}`.
	Incoming payloads that carry a `topic` are routed to that handle only; the
	rest go to every handle listening for the event.
	"""

	def __init__(
		self,
		url: str | None = None,
		*,
		namespace: str | None = None,
		client: socketio.AsyncClient | None = None,
	) -> None:
		self._url = url or settings.push_url
		self._namespace = namespace or settings.push_namespace
		self._client = client or socketio.AsyncClient(reconnection=True)
		self._client.register_namespace(_PushNamespace(self, self._namespace))
		self._handles: Dict[str, PushHandle] = {}
		self._pending: Set[asyncio.Task] = set()

	@property
	def connected(self) -> bool:
		return bool(self._client.connected)

	async def connect(self, *, auth: Optional[dict] = None) -> None:
		if not self._url:
			raise ValueError("SocketIOPushChannel requires a push URL")
		await self._client.connect(self._url, namespaces=[self._namespace], auth=auth)

	async def disconnect(self) -> None:
		for task in list(self._pending):
			task.cancel()
		self._pending.clear()
		await self._client.disconnect()

	def subscribe(self, topic: str) -> PushHandle:
		previous = self._handles.pop(topic, None)
		if previous is not None:
			previous.close()
		handle = PushHandle(topic)
		self._handles[topic] = handle
		self._emit("subscribe", topic)
		return handle

	def unsubscribe(self, topic: str) -> None:
		handle = self._handles.pop(topic, None)
		if handle is None:
			return
		handle.close()
		self._emit("unsubscribe", topic)

	async def resubscribe(self) -> None:
		for topic in list(self._handles):
			await self._client.emit("subscribe", {"topic": topic}, namespace=self._namespace)

	def deliver(self, event: str, payload: Any) -> int:
		topic = payload.get("topic") if isinstance(payload, dict) else None
		if topic:
			handle = self._handles.get(topic)
			return handle.dispatch(event, payload) if handle is not None else 0
		return sum(handle.dispatch(event, payload) for handle in list(self._handles.values()))

	def _emit(self, event: str, topic: str) -> None:
		if not self.connected:
			return
		task = asyncio.get_running_loop().create_task(
			self._client.emit(event, {"topic": topic}, namespace=self._namespace)
		)
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)


__all__ = [
	"InMemoryPushChannel",
	"InMemoryPushHub",
	"PushCallback",
	"PushChannel",
	"PushHandle",
	"SocketIOPushChannel",
]
