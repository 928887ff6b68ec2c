"""Relationship status resolution over friends / sent / received collections."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Optional

from playsync.domain.social.models import RelationshipStatus, is_valid_user_id, normalize_id
from playsync.domain.social.schemas import FriendInvitation, RelationshipSnapshot


def _pending(invitations: Iterable[Any]) -> Iterator[FriendInvitation]:
	for record in invitations or ():
		invitation = FriendInvitation.from_record(record)
		if invitation.is_pending:
			yield invitation


def resolve_status(
	viewer_id: Any,
	target_id: Any,
	friends: Iterable[Any],
	sent: Iterable[Any],
	received: Iterable[Any],
) -> RelationshipStatus:
	"""First match wins: self, friend, pending-sent, pending-received, none."""
	viewer = normalize_id(viewer_id)
	target = normalize_id(target_id)
	if not is_valid_user_id(target):
		return RelationshipStatus.NONE
	if target == viewer:
		return RelationshipStatus.SELF
	if any(normalize_id(friend) == target for friend in friends or ()):
		return RelationshipStatus.FRIEND
	if any(invitation.to_user_id == target for invitation in _pending(sent)):
		return RelationshipStatus.PENDING_SENT
	if any(invitation.from_user_id == target for invitation in _pending(received)):
		return RelationshipStatus.PENDING_RECEIVED
	return RelationshipStatus.NONE


def invitation_id_for(other_user_id: Any, sent: Iterable[Any], received: Iterable[Any]) -> Optional[str]:
	other = normalize_id(other_user_id)
	if not is_valid_user_id(other):
		return None
	for invitation in _pending(sent):
		if invitation.to_user_id == other:
			return invitation.id
	for invitation in _pending(received):
		if invitation.from_user_id == other:
			return invitation.id
	return None


def status_from_snapshot(snapshot: Optional[RelationshipSnapshot], target_id: Any, viewer_id: Any = None) -> RelationshipStatus:
	if snapshot is None:
		viewer = normalize_id(viewer_id)
		target = normalize_id(target_id)
		if is_valid_user_id(target) and target == viewer:
			return RelationshipStatus.SELF
		return RelationshipStatus.NONE
	return resolve_status(
		snapshot.user_id,
		target_id,
		snapshot.friends,
		snapshot.sent_invitations,
		snapshot.received_invitations,
	)


def invitation_id_from_snapshot(snapshot: Optional[RelationshipSnapshot], other_user_id: Any) -> Optional[str]:
	if snapshot is None:
		return None
	return invitation_id_for(other_user_id, snapshot.sent_invitations, snapshot.received_invitations)


__all__ = [
	"invitation_id_for",
	"invitation_id_from_snapshot",
	"resolve_status",
	"status_from_snapshot",
]
