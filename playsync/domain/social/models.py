"""Domain models for relationships and invitations."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class RelationshipStatus(str, Enum):
	"""How a viewer relates to a target user."""

	SELF = "self"
	FRIEND = "friend"
	PENDING_SENT = "pending-sent"
	PENDING_RECEIVED = "pending-received"
	NONE = "none"


class InvitationStatus(str, Enum):
	"""Supported invitation statuses."""

	PENDING = "pending"
	ACCEPTED = "accepted"
	DECLINED = "declined"
	CANCELLED = "cancelled"

	@property
	def is_terminal(self) -> bool:
		return self is not InvitationStatus.PENDING


class InvitationAction(str, Enum):
	ACCEPT = "accept"
	DECLINE = "decline"


class InvitationDirection(str, Enum):
	SENT = "sent"
	RECEIVED = "received"


class PushEvent(str, Enum):
	"""Relationship events delivered on a user's topic."""

	INVITATION_CREATED = "friend-invitation"
	INVITATION_RESPONDED = "friend-response"
	INVITATION_CANCELLED = "friend-invitation-cancelled"
	FRIEND_REMOVED = "friend-removed"
	FRIEND_ADDED = "friend-added"


RELATIONSHIP_EVENTS = tuple(event.value for event in PushEvent)

RELATIONSHIP_CACHE_DOMAIN = "friend-state"

# Placeholder values that reach the layer when a caller has no signed-in user yet
INVALID_USER_IDS = frozenset({"", "undefined", "null"})


def normalize_id(value: Any) -> str:
	"""Reduce an id to its string form.

	Ids arrive either raw or wrapped in a populated record (`{"_id": ...}`,
	`{"id": ...}`, or an object with an `id` attribute).
	"""
	if value is None:
		return ""
	if isinstance(value, str):
		return value
	if isinstance(value, Mapping):
		for field in ("_id", "id"):
			if value.get(field) is not None:
				return normalize_id(value[field])
		return ""
	nested = getattr(value, "id", None)
	if nested is not None and nested is not value:
		return normalize_id(nested)
	return str(value)


def is_valid_user_id(value: Any) -> bool:
	return normalize_id(value).strip() not in INVALID_USER_IDS


def relationship_cache_key(user_id: str) -> str:
	return f"{RELATIONSHIP_CACHE_DOMAIN}:{user_id}"


def user_topic(user_id: str) -> str:
	return f"user-{user_id}"
