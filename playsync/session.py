"""Lifecycle owner for the sync layer of one signed-in user."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from playsync.domain.chat.sockets import ConversationBinding
from playsync.domain.chat.stream import MessageStream
from playsync.domain.social.models import RelationshipStatus, is_valid_user_id, normalize_id
from playsync.domain.social.schemas import RelationshipSnapshot
from playsync.domain.social.service import InvitationManager
from playsync.domain.social.subscriber import PushEventSubscriber
from playsync.domain.social.sync import RelationshipLoader
from playsync.infra.cache import FetchCache
from playsync.infra.memory import InMemoryRemoteStore
from playsync.infra.push import InMemoryPushChannel, InMemoryPushHub, PushChannel, SocketIOPushChannel
from playsync.infra.remote import HttpRemoteStore, RemoteStore
from playsync.infra.singleflight import SingleFlight
from playsync.obs import logging as obs_logging
from playsync.settings import settings

logger = logging.getLogger(__name__)


def build_transports() -> Tuple[RemoteStore, PushChannel]:
	"""Remote store and push channel from settings; in-process pair when no API is configured."""
	if not settings.remote_base_url:
		logger.warning("PLAYSYNC_REMOTE_BASE_URL not set; using the in-memory store")
		hub = InMemoryPushHub()
		return InMemoryRemoteStore(hub), hub.channel()
	store = HttpRemoteStore()
	if settings.push_url:
		return store, SocketIOPushChannel()
	logger.warning("PLAYSYNC_PUSH_URL not set; relationships refresh by TTL and conversations poll")
	return store, InMemoryPushChannel()


class SyncSession:
	"""Wires cache, loader, invitation manager, subscriber and conversations together.

	`start()` binds a user; `switch_user()` tears down everything belonging to
	the previous user (subscriptions, conversations, cached state) before
	binding the next one; `close()` is sign-out.
	"""

	def __init__(
		self,
		store: RemoteStore | None = None,
		channel: PushChannel | None = None,
		*,
		cache: FetchCache | None = None,
		poll_interval: float | None = None,
	) -> None:
		if store is None or channel is None:
			if poll_interval is None and settings.remote_base_url and not settings.push_url:
				poll_interval = settings.chat_poll_interval_seconds
			default_store, default_channel = build_transports()
			store = store or default_store
			channel = channel or default_channel
		self.store = store
		self.channel = channel
		self.cache = cache or FetchCache()
		self.flight = SingleFlight()
		self.loader = RelationshipLoader(store, self.cache, self.flight)
		self.invitations = InvitationManager(store, self.loader)
		self.subscriber = PushEventSubscriber(channel, self.loader)
		self.poll_interval = poll_interval
		self._user_id: Optional[str] = None
		self._conversations: Dict[str, Tuple[MessageStream, ConversationBinding]] = {}

	@property
	def user_id(self) -> Optional[str]:
		return self._user_id

	async def __aenter__(self) -> "SyncSession":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	async def start(self, user_id: Any) -> Optional[RelationshipSnapshot]:
		return await self.switch_user(user_id)

	async def switch_user(self, user_id: Any) -> Optional[RelationshipSnapshot]:
		user_id = normalize_id(user_id)
		if user_id == self._user_id and user_id is not None:
			return await self.loader.load(user_id)
		await self._teardown()
		if not is_valid_user_id(user_id):
			return None
		if isinstance(self.channel, SocketIOPushChannel) and not self.channel.connected:
			await self.channel.connect(auth={"userId": user_id})
		self._user_id = user_id
		obs_logging.bind_context(user_id=user_id)
		self.subscriber.bind(user_id)
		logger.info("Sync session started")
		return await self.loader.load(user_id)

	async def snapshot(self, *, force: bool = False) -> Optional[RelationshipSnapshot]:
		if self._user_id is None:
			return None
		return await self.loader.load(self._user_id, force=force)

	async def status(self, target_id: Any) -> RelationshipStatus:
		if self._user_id is None:
			return RelationshipStatus.NONE
		return await self.loader.status(self._user_id, target_id)

	def open_conversation(self, peer_id: Any) -> MessageStream:
		if self._user_id is None:
			raise RuntimeError("open_conversation requires a started session")
		peer_id = normalize_id(peer_id)
		if peer_id in self._conversations:
			return self._conversations[peer_id][0]
		stream = MessageStream(self.store, self._user_id, peer_id)
		binding = ConversationBinding(self.channel, stream, poll_interval=self.poll_interval)
		binding.bind()
		self._conversations[peer_id] = (stream, binding)
		return stream

	def close_conversation(self, peer_id: Any) -> None:
		entry = self._conversations.pop(normalize_id(peer_id), None)
		if entry is None:
			return
		stream, binding = entry
		binding.unbind()
		stream.reset()

	async def close(self) -> None:
		await self._teardown()
		if isinstance(self.channel, SocketIOPushChannel) and self.channel.connected:
			await self.channel.disconnect()
		if isinstance(self.store, HttpRemoteStore):
			await self.store.aclose()

	async def _teardown(self) -> None:
		for peer_id in list(self._conversations):
			self.close_conversation(peer_id)
		await self.subscriber.close()
		await self.loader.clear()
		if self._user_id is not None:
			logger.info("Sync session for %s closed", self._user_id)
		obs_logging.clear_context()
		self._user_id = None


__all__ = ["SyncSession", "build_transports"]
