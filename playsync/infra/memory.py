"""In-process authoritative store used for tests and local runs without an API."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import ulid

from playsync.domain.chat.models import ChatEvent, ConversationKey
from playsync.domain.social.exceptions import (
	InviteAlreadyFriends,
	InviteAlreadySent,
	InviteForbidden,
	InviteGone,
	InviteNotFound,
	InviteSelfError,
	NotFriends,
	SocialError,
)
from playsync.domain.social.models import InvitationAction, InvitationStatus, PushEvent, user_topic
from playsync.infra.push import InMemoryPushHub
from playsync.infra.remote import RemoteStoreError

logger = logging.getLogger(__name__)

_STATUS_CODES = (
	(InviteForbidden, 403),
	(NotFriends, 403),
	(InviteNotFound, 404),
	(InviteGone, 410),
)


def _status_for(exc: SocialError) -> int:
	for kind, status in _STATUS_CODES:
		if isinstance(exc, kind):
			return status
	return 404 if exc.reason == "not_found" else 400


def _now() -> str:
	return datetime.now(timezone.utc).isoformat()


class InMemoryRemoteStore:
	"""Mirrors the platform API's rules and emits the same push events.

	Records are returned in the API's camelCase wire shape. Rule violations
	surface as `RemoteStoreError` with the API's status code and message.
	Set `offline` to make every call fail as a transport error.
	"""

	def __init__(self, hub: InMemoryPushHub | None = None, *, delay: float = 0.0) -> None:
		self.hub = hub or InMemoryPushHub()
		self.delay = delay
		self.offline = False
		self.calls: Counter = Counter()
		self._lock = asyncio.Lock()
		self._names: Dict[str, str] = {}
		self._friends: Dict[str, Set[str]] = defaultdict(set)
		self._blocked: Dict[str, Set[str]] = defaultdict(set)
		self._invitations: Dict[str, Dict[str, Any]] = {}
		self._messages: Dict[str, List[Dict[str, Any]]] = {}

	# seeding helpers

	def add_user(self, user_id: str, name: str | None = None) -> None:
		self._names[user_id] = name or user_id

	def add_friendship(self, user_a: str, user_b: str) -> None:
		self._friends[user_a].add(user_b)
		self._friends[user_b].add(user_a)

	def friends_of(self, user_id: str) -> Set[str]:
		return set(self._friends.get(user_id, ()))

	def invitation(self, invitation_id: str) -> Optional[Dict[str, Any]]:
		record = self._invitations.get(invitation_id)
		return dict(record) if record else None

	@asynccontextmanager
	async def _call(self, name: str):
		self.calls[name] += 1
		await asyncio.sleep(self.delay)
		if self.offline:
			raise RemoteStoreError("Network error")
		try:
			async with self._lock:
				yield
		except SocialError as exc:
			raise RemoteStoreError(exc.message, _status_for(exc)) from exc

	def _friend_record(self, user_id: str) -> Dict[str, Any]:
		return {"_id": user_id, "name": self._names.get(user_id, user_id)}

	def _pending_between(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
		for record in self._invitations.values():
			if record["status"] != InvitationStatus.PENDING.value:
				continue
			if {record["fromUserId"], record["toUserId"]} == {user_a, user_b}:
				return record
		return None

	def _touch(self, record: Dict[str, Any], status: InvitationStatus) -> None:
		record["status"] = status.value
		record["updatedAt"] = _now()

	# relationship reads

	async def list_friends(self, user_id: str) -> List[Dict[str, Any]]:
		async with self._call("list_friends"):
			return [self._friend_record(friend) for friend in sorted(self._friends.get(user_id, ()))]

	async def list_invitations(self, user_id: str, direction: Optional[str] = None) -> List[Dict[str, Any]]:
		async with self._call("list_invitations"):
			rows = []
			for record in self._invitations.values():
				if record["status"] != InvitationStatus.PENDING.value:
					continue
				if direction == "sent" and record["fromUserId"] != user_id:
					continue
				if direction == "received" and record["toUserId"] != user_id:
					continue
				if user_id not in (record["fromUserId"], record["toUserId"]):
					continue
				rows.append(dict(record))
			rows.sort(key=lambda row: row["createdAt"], reverse=True)
			return rows

	# relationship mutations

	async def send_invitation(self, from_user_id: str, to_user_id: str) -> Dict[str, Any]:
		async with self._call("send_invitation"):
			if from_user_id == to_user_id:
				raise InviteSelfError()
			if to_user_id in self._blocked[from_user_id] or from_user_id in self._blocked[to_user_id]:
				raise InviteForbidden("blocked", "Cannot send invitation")
			if to_user_id in self._friends[from_user_id]:
				raise InviteAlreadyFriends()
			if self._pending_between(from_user_id, to_user_id):
				raise InviteAlreadySent()
			created = _now()
			record = {
				"_id": str(ulid.new()),
				"fromUserId": from_user_id,
				"toUserId": to_user_id,
				"status": InvitationStatus.PENDING.value,
				"createdAt": created,
				"updatedAt": created,
			}
			self._invitations[record["_id"]] = record
			result = dict(record)
		self.hub.publish(user_topic(to_user_id), PushEvent.INVITATION_CREATED.value, result)
		return result

	async def respond_invitation(self, invitation_id: str, action: str, user_id: str) -> Dict[str, Any]:
		async with self._call("respond_invitation"):
			try:
				verb = InvitationAction(action)
			except ValueError:
				raise SocialError("invalid_action", "Action must be accept or decline") from None
			record = self._invitations.get(invitation_id)
			if record is None:
				raise InviteNotFound()
			if record["toUserId"] != user_id:
				raise InviteForbidden("not_recipient")
			if record["status"] != InvitationStatus.PENDING.value:
				raise InviteGone("not_pending")
			sender, recipient = record["fromUserId"], record["toUserId"]
			if verb is InvitationAction.ACCEPT:
				self._touch(record, InvitationStatus.ACCEPTED)
				self.add_friendship(sender, recipient)
			else:
				self._touch(record, InvitationStatus.DECLINED)
			result = dict(record)
		self.hub.publish(user_topic(sender), PushEvent.INVITATION_RESPONDED.value, result)
		if verb is InvitationAction.ACCEPT:
			self.hub.publish(user_topic(sender), PushEvent.FRIEND_ADDED.value, {"id": recipient})
			self.hub.publish(user_topic(recipient), PushEvent.FRIEND_ADDED.value, {"id": sender})
		return result

	async def cancel_invitation(self, invitation_id: str, user_id: str) -> Dict[str, Any]:
		async with self._call("cancel_invitation"):
			record = self._invitations.get(invitation_id)
			if record is None:
				raise InviteNotFound()
			if record["fromUserId"] != user_id:
				raise InviteForbidden("not_sender")
			if record["status"] != InvitationStatus.PENDING.value:
				raise InviteGone("not_pending")
			self._touch(record, InvitationStatus.CANCELLED)
			recipient = record["toUserId"]
		self.hub.publish(user_topic(recipient), PushEvent.INVITATION_CANCELLED.value, {"id": invitation_id})
		return {"success": True, "message": "Invitation deleted successfully"}

	async def remove_friend(self, user_id: str, friend_id: str) -> Dict[str, Any]:
		async with self._call("remove_friend"):
			if friend_id not in self._friends[user_id]:
				raise NotFriends()
			self._friends[user_id].discard(friend_id)
			self._friends[friend_id].discard(user_id)
		self._announce_removal(user_id, friend_id)
		return {"success": True, "message": "Friend removed"}

	async def block_user(self, user_id: str, target_id: str) -> Dict[str, Any]:
		async with self._call("block_user"):
			self._blocked[user_id].add(target_id)
			were_friends = target_id in self._friends[user_id]
			self._friends[user_id].discard(target_id)
			self._friends[target_id].discard(user_id)
			cancelled = []
			pending = self._pending_between(user_id, target_id)
			while pending is not None:
				self._touch(pending, InvitationStatus.CANCELLED)
				cancelled.append(pending)
				pending = self._pending_between(user_id, target_id)
		if were_friends:
			self._announce_removal(user_id, target_id)
		for record in cancelled:
			self.hub.publish(
				user_topic(record["toUserId"]),
				PushEvent.INVITATION_CANCELLED.value,
				{"id": record["_id"]},
			)
		return {"success": True, "message": "User blocked"}

	def _announce_removal(self, user_a: str, user_b: str) -> None:
		self.hub.publish(user_topic(user_a), PushEvent.FRIEND_REMOVED.value, {"id": user_b})
		self.hub.publish(user_topic(user_b), PushEvent.FRIEND_REMOVED.value, {"id": user_a})

	# messages

	def _conversation(self, user_id: str, peer_id: str) -> List[Dict[str, Any]]:
		key = ConversationKey.from_participants(user_id, peer_id)
		return self._messages.setdefault(key.conversation_id, [])

	async def list_messages(
		self,
		user_id: str,
		peer_id: str,
		*,
		page: int = 1,
		limit: int = 50,
	) -> List[Dict[str, Any]]:
		async with self._call("list_messages"):
			if peer_id not in self._friends[user_id]:
				raise NotFriends()
			# stored newest first
			messages = self._conversation(user_id, peer_id)
			start = (max(page, 1) - 1) * limit
			return [dict(message) for message in messages[start:start + limit]]

	async def send_message(
		self,
		user_id: str,
		peer_id: str,
		content: str,
		client_msg_id: str,
	) -> Dict[str, Any]:
		async with self._call("send_message"):
			if peer_id not in self._friends[user_id]:
				raise NotFriends()
			if not (content or "").strip():
				raise SocialError("invalid", "Invalid data")
			record = {
				"_id": str(ulid.new()),
				"senderId": user_id,
				"receiverId": peer_id,
				"content": content,
				"createdAt": _now(),
				"isRead": False,
				"clientMsgId": client_msg_id,
			}
			self._conversation(user_id, peer_id).insert(0, record)
			result = dict(record)
		topic = ConversationKey.from_participants(user_id, peer_id).topic
		self.hub.publish(topic, ChatEvent.NEW_MESSAGE.value, result)
		return result

	async def mark_read(self, user_id: str, peer_id: str) -> None:
		async with self._call("mark_read"):
			read = []
			for message in self._conversation(user_id, peer_id):
				if message["receiverId"] == user_id and not message["isRead"]:
					message["isRead"] = True
					read.append(message["_id"])
		topic = ConversationKey.from_participants(user_id, peer_id).topic
		for message_id in read:
			self.hub.publish(topic, ChatEvent.MESSAGE_DELIVERED.value, {"messageId": message_id, "status": "read"})

	async def edit_message(self, message_id: str, user_id: str, content: str) -> Dict[str, Any]:
		async with self._call("edit_message"):
			record, key = self._locate(message_id)
			if record["senderId"] != user_id:
				raise SocialError("forbidden", "Not allowed to edit this message")
			record["content"] = content
			record["isEdited"] = True
			result = dict(record)
		self.hub.publish(key.topic, ChatEvent.MESSAGE_EDITED.value, result)
		return result

	async def delete_message(self, message_id: str, user_id: str) -> None:
		async with self._call("delete_message"):
			record, key = self._locate(message_id)
			if record["senderId"] != user_id:
				raise SocialError("forbidden", "Not allowed to delete this message")
			self._messages[key.conversation_id].remove(record)
		self.hub.publish(key.topic, ChatEvent.MESSAGE_DELETED.value, {"id": message_id})

	def _locate(self, message_id: str):
		for messages in self._messages.values():
			for record in messages:
				if record["_id"] == message_id:
					return record, ConversationKey.from_participants(record["senderId"], record["receiverId"])
		raise SocialError("not_found", "Message not found")


__all__ = ["InMemoryRemoteStore"]
