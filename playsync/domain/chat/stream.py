"""Newest-first message stream with optimistic sends and push reconciliation."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Set

from pydantic import ValidationError

from playsync.domain.social.models import normalize_id
from playsync.infra.remote import RemoteStore, RemoteStoreError
from playsync.obs import metrics as obs_metrics
from playsync.settings import settings

from .models import LOAD_FAILED, OPTIMISTIC_PREFIX, SEND_FAILED, ConversationKey, DeliveryStatus, Message
from .schemas import MessageEdit, MessageRef, MessageStatus, parse_message

logger = logging.getLogger(__name__)

_REMOTE_ERRORS = (RemoteStoreError, ValidationError)


def _is_placeholder(message: Message) -> bool:
	return message.id.startswith(OPTIMISTIC_PREFIX)


class MessageStream:
	"""Local view of one two-party conversation.

	`messages` is newest first. Sends are shown immediately as optimistic
	placeholders and swapped for the confirmed message once the store answers;
	a failed send stays in the list with `error` set so it can be retried.
	Placeholders are matched to confirmed messages by `client_msg_id`.
	"""

	def __init__(
		self,
		store: RemoteStore,
		user_id: Any,
		peer_id: Any,
		*,
		page_size: int | None = None,
	) -> None:
		self._store = store
		self.user_id = normalize_id(user_id)
		self.peer_id = normalize_id(peer_id)
		self.key = ConversationKey.from_participants(self.user_id, self.peer_id)
		self.page_size = page_size or settings.message_page_size
		self.messages: List[Message] = []
		self.page = 1
		self.has_more = False
		self.loading = False
		self.loading_older = False
		self.error: Optional[str] = None
		self._sending = 0
		self._generation = 0

	@property
	def sending(self) -> bool:
		return self._sending > 0

	@property
	def _log_extra(self) -> dict:
		return {"conversation": self.key.conversation_id}

	def find(self, message_id: str) -> Optional[Message]:
		for message in self.messages:
			if message.id == message_id:
				return message
		return None

	def unconfirmed(self) -> List[Message]:
		return [message for message in self.messages if _is_placeholder(message)]

	async def load_page(self, page: int = 1, append: bool = False) -> bool:
		generation = self._generation
		known = {message.id for message in self.messages}
		if append:
			self.loading_older = True
		else:
			self.loading = True
		try:
			records = await self._store.list_messages(
				self.user_id,
				self.peer_id,
				page=page,
				limit=self.page_size,
			)
			batch = [parse_message(record) for record in records]
		except _REMOTE_ERRORS as exc:
			if generation == self._generation:
				self.error = LOAD_FAILED
			obs_metrics.inc_message_page("error")
			logger.warning("Loading page %d failed: %s", page, exc, extra=self._log_extra)
			return False
		finally:
			if generation == self._generation:
				if append:
					self.loading_older = False
				else:
					self.loading = False
		if generation != self._generation:
			return False
		obs_metrics.inc_message_page("ok")
		if append:
			seen = {message.id for message in self.messages}
			self.messages.extend(message for message in batch if message.id not in seen)
		else:
			self.messages = self._local_entries(batch, known) + batch
		self.page = page
		self.has_more = len(batch) >= self.page_size
		self.error = None
		if page == 1:
			await self._mark_read()
		return True

	async def load_older(self) -> bool:
		if not self.has_more or self.loading_older or self.loading:
			return False
		return await self.load_page(self.page + 1, append=True)

	async def send(self, content: str) -> Optional[Message]:
		text = (content or "").strip()
		if not text:
			return None
		message = Message.optimistic(self.user_id, self.peer_id, text)
		self.messages.insert(0, message)
		return await self._deliver(message)

	async def retry(self, message_id: str) -> Optional[Message]:
		message = self.find(message_id)
		if message is None or message.error is None:
			return None
		message.error = None
		message.is_optimistic = True
		obs_metrics.inc_message_retry()
		logger.info("Retrying message %s (attempt %d)", message.id, message.retry_count + 1, extra=self._log_extra)
		return await self._deliver(message)

	def receive(self, payload: Any) -> Optional[Message]:
		"""Merge a push-delivered confirmed message into the list."""
		try:
			confirmed = parse_message(payload)
		except ValidationError:
			logger.warning("Ignoring malformed message payload", extra=self._log_extra)
			return None
		if not (self.key.includes(confirmed.sender_id) and self.key.includes(confirmed.receiver_id)):
			return None
		placeholder_id = None
		if not confirmed.client_msg_id:
			placeholder = self._content_match(confirmed)
			placeholder_id = placeholder.id if placeholder else None
		self._apply_confirmed(confirmed, placeholder_id)
		return confirmed

	def apply_edit(self, payload: Any) -> bool:
		try:
			edit = MessageEdit.model_validate(payload)
		except ValidationError:
			logger.warning("Ignoring malformed edit payload", extra=self._log_extra)
			return False
		message = self.find(edit.id)
		if message is None:
			return False
		message.content = edit.content
		message.is_edited = True
		return True

	def apply_status(self, payload: Any) -> bool:
		try:
			update = MessageStatus.model_validate(payload)
		except ValidationError:
			logger.warning("Ignoring malformed status payload", extra=self._log_extra)
			return False
		message = self.find(update.id)
		if message is None:
			return False
		message.is_delivered = True
		if update.status is DeliveryStatus.READ:
			message.is_read = True
		return True

	def remove(self, message: Any) -> bool:
		if isinstance(message, str):
			message_id = message
		else:
			try:
				message_id = MessageRef.model_validate(message).id
			except ValidationError:
				return False
		before = len(self.messages)
		self.messages = [entry for entry in self.messages if entry.id != message_id]
		return len(self.messages) != before

	async def poll_latest(self) -> int:
		"""Fetch the newest page and merge it as if pushed. Returns how many entries were new."""
		generation = self._generation
		try:
			records = await self._store.list_messages(self.user_id, self.peer_id, page=1, limit=self.page_size)
			batch = [parse_message(record) for record in records]
		except _REMOTE_ERRORS as exc:
			logger.warning("Polling for messages failed: %s", exc, extra=self._log_extra)
			return 0
		if generation != self._generation:
			return 0
		known = {message.id for message in self.messages}
		# oldest first so the newest ends up on top
		for message in reversed(batch):
			self.receive(message)
		return sum(1 for message in batch if message.id not in known)

	def reset(self) -> None:
		self._generation += 1
		self.messages = []
		self.page = 1
		self.has_more = False
		self.loading = False
		self.loading_older = False
		self.error = None

	async def _mark_read(self) -> None:
		try:
			await self._store.mark_read(self.user_id, self.peer_id)
		except RemoteStoreError as exc:
			logger.warning("Marking conversation read failed: %s", exc, extra=self._log_extra)

	async def _deliver(self, message: Message) -> Optional[Message]:
		generation = self._generation
		self._sending += 1
		try:
			record = await self._store.send_message(
				self.user_id,
				self.peer_id,
				message.content,
				message.client_msg_id,
			)
			confirmed = parse_message(record)
		except _REMOTE_ERRORS as exc:
			obs_metrics.inc_message_send("error")
			logger.warning("Sending %s failed: %s", message.id, exc, extra=self._log_extra)
			if generation == self._generation:
				entry = self.find(message.id)
				if entry is not None:
					entry.error = SEND_FAILED
					entry.is_optimistic = False
					entry.retry_count += 1
			return None
		finally:
			self._sending -= 1
		obs_metrics.inc_message_send("ok")
		if not confirmed.client_msg_id:
			confirmed.client_msg_id = message.client_msg_id
		if generation == self._generation:
			self._apply_confirmed(confirmed, message.id)
		return confirmed

	def _apply_confirmed(self, confirmed: Message, placeholder_id: Optional[str] = None) -> None:
		def _same_attempt(entry: Message) -> bool:
			if not _is_placeholder(entry):
				return False
			if entry.id == placeholder_id:
				return True
			return bool(confirmed.client_msg_id) and entry.client_msg_id == confirmed.client_msg_id

		self.messages = [entry for entry in self.messages if not _same_attempt(entry)]
		for index, entry in enumerate(self.messages):
			if entry.id == confirmed.id:
				self.messages[index] = confirmed
				return
		self.messages.insert(0, confirmed)

	def _local_entries(self, batch: List[Message], known: Set[str]) -> List[Message]:
		"""Entries a first-page reload must keep: unsent ones, and any confirmed while it ran."""
		batch_ids = {message.id for message in batch}
		correlated = {message.client_msg_id for message in batch if message.client_msg_id}
		kept = []
		for entry in self.messages:
			if _is_placeholder(entry):
				if entry.client_msg_id not in correlated:
					kept.append(entry)
			elif entry.id not in known and entry.id not in batch_ids:
				kept.append(entry)
		return kept

	def _content_match(self, confirmed: Message) -> Optional[Message]:
		# payloads without a correlation id: the oldest pending send with the same text
		for entry in reversed(self.messages):
			if (
				entry.is_optimistic
				and _is_placeholder(entry)
				and entry.sender_id == confirmed.sender_id
				and entry.content == confirmed.content
			):
				return entry
		return None


__all__ = ["MessageStream"]
