"""Pydantic schemas for relationship state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Set

from pydantic import BaseModel, Field

from playsync.domain.social.models import InvitationStatus, normalize_id


def _first(record: Mapping[str, Any], *names: str) -> Any:
	for name in names:
		if record.get(name) is not None:
			return record[name]
	return None


def _display_name(value: Any) -> Optional[str]:
	if isinstance(value, Mapping):
		name = value.get("name")
		return str(name) if name else None
	return None


class FriendSummary(BaseModel):
	id: str
	name: Optional[str] = None
	avatar: Optional[str] = None

	@classmethod
	def from_record(cls, record: Any) -> "FriendSummary":
		if isinstance(record, FriendSummary):
			return record
		if isinstance(record, Mapping):
			return cls(id=normalize_id(record), name=record.get("name"), avatar=record.get("avatar"))
		return cls(id=normalize_id(record))


class FriendInvitation(BaseModel):
	id: str
	from_user_id: str
	to_user_id: str
	status: InvitationStatus = InvitationStatus.PENDING
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None
	from_name: Optional[str] = None
	to_name: Optional[str] = None

	@classmethod
	def from_record(cls, record: Any) -> "FriendInvitation":
		"""Build from a store record; accepts camelCase and populated user refs."""
		if isinstance(record, FriendInvitation):
			return record
		sender = _first(record, "from_user_id", "fromUserId")
		recipient = _first(record, "to_user_id", "toUserId")
		return cls(
			id=normalize_id(_first(record, "id", "_id")),
			from_user_id=normalize_id(sender),
			to_user_id=normalize_id(recipient),
			status=InvitationStatus(record.get("status") or InvitationStatus.PENDING.value),
			created_at=_first(record, "created_at", "createdAt"),
			updated_at=_first(record, "updated_at", "updatedAt"),
			from_name=record.get("from_name") or _display_name(sender),
			to_name=record.get("to_name") or _display_name(recipient),
		)

	@property
	def is_pending(self) -> bool:
		return self.status is InvitationStatus.PENDING

	def involves(self, user_id: str) -> bool:
		return user_id in (self.from_user_id, self.to_user_id)

	def other_party(self, user_id: str) -> str:
		return self.to_user_id if self.from_user_id == user_id else self.from_user_id


class RelationshipSnapshot(BaseModel):
	"""The three collections status resolution works from, plus all pending invitations."""

	user_id: str
	friends: List[FriendSummary] = Field(default_factory=list)
	invitations: List[FriendInvitation] = Field(default_factory=list)
	sent_invitations: List[FriendInvitation] = Field(default_factory=list)
	received_invitations: List[FriendInvitation] = Field(default_factory=list)
	fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

	@property
	def friend_ids(self) -> Set[str]:
		return {friend.id for friend in self.friends}

	def find_invitation(self, invitation_id: str) -> Optional[FriendInvitation]:
		for invitation in (*self.sent_invitations, *self.received_invitations, *self.invitations):
			if invitation.id == invitation_id:
				return invitation
		return None


class MutationResult(BaseModel):
	success: bool
	data: Any = None
	error: Optional[str] = None

	@classmethod
	def ok(cls, data: Any = None) -> "MutationResult":
		return cls(success=True, data=data)

	@classmethod
	def failed(cls, error: str) -> "MutationResult":
		return cls(success=False, error=error)


__all__ = [
	"FriendInvitation",
	"FriendSummary",
	"MutationResult",
	"RelationshipSnapshot",
]
