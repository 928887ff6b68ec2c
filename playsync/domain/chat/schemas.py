"""Pydantic schemas for messages arriving from the store or the push channel."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from playsync.domain.social.models import normalize_id

from .models import DeliveryStatus, Message


class MessagePayload(BaseModel):
	"""A confirmed message; accepts the store's camelCase keys and populated senders."""

	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	id: str = Field(validation_alias=AliasChoices("id", "_id", "message_id"))
	sender_id: str = Field(validation_alias=AliasChoices("sender_id", "senderId"))
	receiver_id: str = Field(validation_alias=AliasChoices("receiver_id", "receiverId", "recipient_id"))
	content: str = Field(validation_alias=AliasChoices("content", "body"))
	created_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("created_at", "createdAt"))
	client_msg_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("client_msg_id", "clientMsgId"))
	is_read: bool = Field(default=False, validation_alias=AliasChoices("is_read", "isRead"))
	is_edited: bool = Field(default=False, validation_alias=AliasChoices("is_edited", "isEdited"))

	@field_validator("id", "sender_id", "receiver_id", mode="before")
	def _normalise_id(cls, value: Any) -> str:  # type: ignore[override]
		return normalize_id(value)

	def to_message(self) -> Message:
		return Message(
			id=self.id,
			sender_id=self.sender_id,
			receiver_id=self.receiver_id,
			content=self.content,
			created_at=self.created_at or datetime.now(timezone.utc),
			client_msg_id=self.client_msg_id or None,
			is_read=self.is_read,
			is_edited=self.is_edited,
		)


class MessageRef(BaseModel):
	"""Minimal `{id}` payload used by removal events."""

	model_config = ConfigDict(extra="ignore")

	id: str = Field(validation_alias=AliasChoices("id", "_id", "message_id", "messageId"))

	@field_validator("id", mode="before")
	def _normalise_id(cls, value: Any) -> str:  # type: ignore[override]
		return normalize_id(value)


class MessageEdit(MessageRef):
	content: str = Field(validation_alias=AliasChoices("content", "body"))


class MessageStatus(MessageRef):
	"""`{messageId, status}` payload of `message-delivered`."""

	status: DeliveryStatus


def parse_message(record: Any) -> Message:
	if isinstance(record, Message):
		return record
	return MessagePayload.model_validate(record).to_message()


__all__ = ["MessageEdit", "MessagePayload", "MessageRef", "MessageStatus", "parse_message"]
