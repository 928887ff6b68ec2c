"""Domain models for direct-message conversations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

import ulid

DEFAULT_PAGE_SIZE = 50
OPTIMISTIC_PREFIX = "optimistic-"
SEND_FAILED = "Failed to send message"
LOAD_FAILED = "Failed to load messages"


class ChatEvent(str, Enum):
	NEW_MESSAGE = "new-message"
	MESSAGE_EDITED = "message-edited"
	MESSAGE_DELETED = "message-deleted"
	MESSAGE_DELIVERED = "message-delivered"


class DeliveryStatus(str, Enum):
	DELIVERED = "delivered"
	READ = "read"


@dataclass(slots=True)
class ConversationKey:
	"""Canonical representation of a 1:1 chat conversation."""

	user_a: str
	user_b: str

	@classmethod
	def from_participants(cls, user_one: str, user_two: str) -> "ConversationKey":
		ordered = tuple(sorted((str(user_one), str(user_two))))
		return cls(user_a=ordered[0], user_b=ordered[1])

	@property
	def conversation_id(self) -> str:
		return f"chat:{self.user_a}:{self.user_b}"

	@property
	def topic(self) -> str:
		return f"chat-{self.user_a}-{self.user_b}"

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)

	def includes(self, user_id: str) -> bool:
		return user_id in (self.user_a, self.user_b)


def new_client_msg_id() -> str:
	return str(ulid.new())


def optimistic_id(client_msg_id: str) -> str:
	return f"{OPTIMISTIC_PREFIX}{client_msg_id}"


def _now() -> datetime:
	return datetime.now(timezone.utc)


@dataclass(slots=True)
class Message:
	id: str
	sender_id: str
	receiver_id: str
	content: str
	created_at: datetime = field(default_factory=_now)
	client_msg_id: Optional[str] = None
	is_optimistic: bool = False
	error: Optional[str] = None
	retry_count: int = 0
	is_read: bool = False
	is_edited: bool = False
	is_delivered: bool = False

	@classmethod
	def optimistic(cls, sender_id: str, receiver_id: str, content: str) -> "Message":
		client_msg_id = new_client_msg_id()
		return cls(
			id=optimistic_id(client_msg_id),
			sender_id=sender_id,
			receiver_id=receiver_id,
			content=content,
			client_msg_id=client_msg_id,
			is_optimistic=True,
		)

	@property
	def failed(self) -> bool:
		return self.error is not None

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"sender_id": self.sender_id,
			"receiver_id": self.receiver_id,
			"content": self.content,
			"created_at": self.created_at.isoformat(),
			"client_msg_id": self.client_msg_id,
			"is_optimistic": self.is_optimistic,
			"error": self.error,
			"retry_count": self.retry_count,
			"is_read": self.is_read,
			"is_edited": self.is_edited,
			"is_delivered": self.is_delivered,
		}
