"""Invitation lifecycle: remote mutation first, then cache reconciliation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from playsync.domain.social.exceptions import (
	InvalidUserId,
	InviteAlreadyFriends,
	InviteAlreadySent,
	InviteSelfError,
	SocialError,
)
from playsync.domain.social.models import (
	InvitationAction,
	RelationshipStatus,
	is_valid_user_id,
	normalize_id,
)
from playsync.domain.social.resolver import invitation_id_from_snapshot, status_from_snapshot
from playsync.domain.social.schemas import FriendInvitation, MutationResult
from playsync.domain.social.sync import RelationshipLoader
from playsync.infra.remote import RemoteStore, RemoteStoreError
from playsync.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def _invitation_or_raw(record: Any) -> Any:
	if isinstance(record, dict) and (record.get("id") or record.get("_id")):
		try:
			return FriendInvitation.from_record(record)
		except ValueError:
			return record
	return record


class InvitationManager:
	"""Runs invitation and friendship mutations against the remote store.

	Nothing is applied locally ahead of the server; after a confirmed mutation
	the relationship entries of both parties are invalidated and refetched.
	"""

	def __init__(self, store: RemoteStore, loader: RelationshipLoader) -> None:
		self._store = store
		self._loader = loader

	async def send(self, from_user_id: Any, to_user_id: Any) -> MutationResult:
		sender = normalize_id(from_user_id)
		target = normalize_id(to_user_id)
		try:
			await self._guard_send(sender, target)
			record = await self._store.send_invitation(sender, target)
		except (SocialError, RemoteStoreError) as exc:
			return self._failed("send", exc)
		invitation = _invitation_or_raw(record)
		logger.info("Friend invitation sent from %s to %s", sender, target)
		obs_metrics.inc_invitation_mutation("send", "ok")
		await self._reconcile(sender)
		return MutationResult.ok(invitation)

	async def respond(self, invitation_id: str, action: Any, acting_user_id: Any) -> MutationResult:
		actor = normalize_id(acting_user_id)
		try:
			if not is_valid_user_id(actor) or not invitation_id:
				raise InvalidUserId()
			try:
				verb = InvitationAction(action)
			except ValueError:
				raise SocialError("invalid_action", "Action must be accept or decline") from None
			other = await self._other_party(actor, invitation_id)
			record = await self._store.respond_invitation(invitation_id, verb.value, actor)
		except (SocialError, RemoteStoreError) as exc:
			return self._failed("respond", exc)
		invitation = _invitation_or_raw(record)
		if isinstance(invitation, FriendInvitation):
			other = invitation.other_party(actor)
		logger.info("Invitation %s %sed by %s", invitation_id, verb.value, actor)
		obs_metrics.inc_invitation_mutation(verb.value, "ok")
		await self._reconcile(actor, other)
		return MutationResult.ok(invitation)

	async def accept(self, invitation_id: str, acting_user_id: Any) -> MutationResult:
		return await self.respond(invitation_id, InvitationAction.ACCEPT, acting_user_id)

	async def decline(self, invitation_id: str, acting_user_id: Any) -> MutationResult:
		return await self.respond(invitation_id, InvitationAction.DECLINE, acting_user_id)

	async def cancel(self, invitation_id: str, acting_user_id: Any) -> MutationResult:
		actor = normalize_id(acting_user_id)
		try:
			if not is_valid_user_id(actor) or not invitation_id:
				raise InvalidUserId()
			# the store may delete the record, so find the recipient first
			other = await self._other_party(actor, invitation_id)
			record = await self._store.cancel_invitation(invitation_id, actor)
		except (SocialError, RemoteStoreError) as exc:
			return self._failed("cancel", exc)
		logger.info("Invitation %s cancelled by %s", invitation_id, actor)
		obs_metrics.inc_invitation_mutation("cancel", "ok")
		await self._reconcile(actor, other)
		return MutationResult.ok(_invitation_or_raw(record))

	async def remove_friend(self, user_id: Any, friend_id: Any) -> MutationResult:
		return await self._pair_mutation("remove", user_id, friend_id)

	async def block(self, user_id: Any, target_id: Any) -> MutationResult:
		return await self._pair_mutation("block", user_id, target_id)

	async def _pair_mutation(self, action: str, user_id: Any, other_id: Any) -> MutationResult:
		actor = normalize_id(user_id)
		other = normalize_id(other_id)
		try:
			if not is_valid_user_id(actor) or not is_valid_user_id(other):
				raise InvalidUserId()
			if actor == other:
				raise SocialError("self_target", "Cannot target yourself")
			if action == "block":
				data = await self._store.block_user(actor, other)
			else:
				data = await self._store.remove_friend(actor, other)
		except (SocialError, RemoteStoreError) as exc:
			return self._failed(action, exc)
		logger.info("Friend %s: %s -> %s", action, actor, other)
		obs_metrics.inc_invitation_mutation(action, "ok")
		await self._reconcile(actor, other)
		return MutationResult.ok(data)

	async def _guard_send(self, sender: str, target: str) -> None:
		if not is_valid_user_id(sender) or not is_valid_user_id(target):
			raise InvalidUserId()
		if sender == target:
			raise InviteSelfError()
		snapshot = await self._loader.load(sender)
		status = status_from_snapshot(snapshot, target, sender)
		if status is RelationshipStatus.FRIEND:
			raise InviteAlreadyFriends()
		if status in (RelationshipStatus.PENDING_SENT, RelationshipStatus.PENDING_RECEIVED):
			raise InviteAlreadySent()

	async def _other_party(self, actor: str, invitation_id: str) -> Optional[str]:
		snapshot = self._loader.snapshot(actor) or await self._loader.load(actor)
		if snapshot is None:
			return None
		invitation = snapshot.find_invitation(invitation_id)
		return invitation.other_party(actor) if invitation else None

	async def _reconcile(self, *user_ids: Optional[str]) -> None:
		targets = list(dict.fromkeys(uid for uid in user_ids if uid and is_valid_user_id(uid)))
		await asyncio.gather(*(self._loader.refresh(uid) for uid in targets))

	def _failed(self, action: str, exc: Exception) -> MutationResult:
		message = getattr(exc, "message", None) or str(exc) or "Something went wrong"
		result = "rejected" if isinstance(exc, SocialError) else "error"
		logger.warning("Invitation %s failed: %s", action, message)
		obs_metrics.inc_invitation_mutation(action, result)
		return MutationResult.failed(message)

	def invitation_id_for(self, viewer_id: Any, other_user_id: Any) -> Optional[str]:
		return invitation_id_from_snapshot(self._loader.snapshot(viewer_id), other_user_id)


__all__ = ["InvitationManager"]
