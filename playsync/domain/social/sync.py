"""Cached, single-flight loading of a user's relationship snapshot."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from playsync.domain.social import resolver
from playsync.domain.social.exceptions import SocialError
from playsync.domain.social.models import (
	RELATIONSHIP_CACHE_DOMAIN,
	InvitationDirection,
	RelationshipStatus,
	is_valid_user_id,
	normalize_id,
	relationship_cache_key,
)
from playsync.domain.social.schemas import FriendInvitation, FriendSummary, RelationshipSnapshot
from playsync.infra.cache import FetchCache
from playsync.infra.remote import RemoteStore, RemoteStoreError
from playsync.infra.singleflight import SingleFlight, gather_mapping
from playsync.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_LOAD_ERRORS = (RemoteStoreError, SocialError, ValidationError)


def _pending(records: Iterable[Any]) -> List[FriendInvitation]:
	invitations = [FriendInvitation.from_record(record) for record in records or ()]
	return [invitation for invitation in invitations if invitation.is_pending]


def build_snapshot(
	user_id: str,
	*,
	friends: Iterable[Any],
	invitations: Iterable[Any],
	sent: Iterable[Any],
	received: Iterable[Any],
) -> RelationshipSnapshot:
	return RelationshipSnapshot(
		user_id=user_id,
		friends=[FriendSummary.from_record(record) for record in friends or ()],
		invitations=_pending(invitations),
		sent_invitations=[inv for inv in _pending(sent) if inv.from_user_id == user_id],
		received_invitations=[inv for inv in _pending(received) if inv.to_user_id == user_id],
	)


class RelationshipLoader:
	"""Serves relationship snapshots from the fetch cache or the remote store.

	Reads never raise: a failed fetch records an error string for the user and
	leaves the last good snapshot in place.
	"""

	def __init__(
		self,
		store: RemoteStore,
		cache: FetchCache | None = None,
		flight: SingleFlight | None = None,
	) -> None:
		self._store = store
		self._cache = cache or FetchCache()
		self._flight = flight or SingleFlight()
		self._snapshots: Dict[str, RelationshipSnapshot] = {}
		self._errors: Dict[str, str] = {}

	@property
	def cache(self) -> FetchCache:
		return self._cache

	async def load(self, user_id: Any, *, force: bool = False) -> Optional[RelationshipSnapshot]:
		user_id = normalize_id(user_id)
		if not is_valid_user_id(user_id):
			return None
		key = relationship_cache_key(user_id)
		if not force:
			entry = await self._cache.get(key)
			if entry is not None:
				snapshot = RelationshipSnapshot.model_validate(entry.data)
				self._snapshots[user_id] = snapshot
				return snapshot
		try:
			snapshot = await self._flight.run(key, lambda: self._fetch(user_id, key))
		except _LOAD_ERRORS as exc:
			message = str(exc) or "Failed to load relationships"
			self._errors[user_id] = message
			logger.warning("Relationship load failed for %s: %s", user_id, message)
			return self._snapshots.get(user_id)
		self._errors.pop(user_id, None)
		return snapshot

	async def refresh(self, user_id: Any) -> Optional[RelationshipSnapshot]:
		await self.invalidate(user_id)
		return await self.load(user_id, force=True)

	async def invalidate(self, user_id: Any) -> None:
		user_id = normalize_id(user_id)
		if not is_valid_user_id(user_id):
			return
		key = relationship_cache_key(user_id)
		await self._cache.invalidate(key)
		self._flight.forget(key)

	def snapshot(self, user_id: Any) -> Optional[RelationshipSnapshot]:
		return self._snapshots.get(normalize_id(user_id))

	def is_loading(self, user_id: Any) -> bool:
		return self._flight.in_flight(relationship_cache_key(normalize_id(user_id)))

	def error(self, user_id: Any) -> Optional[str]:
		return self._errors.get(normalize_id(user_id))

	async def clear(self) -> None:
		await self._cache.clear()
		self._flight.clear()
		self._snapshots.clear()
		self._errors.clear()

	async def status(self, viewer_id: Any, target_id: Any) -> RelationshipStatus:
		snapshot = await self.load(viewer_id)
		return resolver.status_from_snapshot(snapshot, target_id, viewer_id)

	async def invitation_id_for(self, viewer_id: Any, other_user_id: Any) -> Optional[str]:
		snapshot = await self.load(viewer_id)
		return resolver.invitation_id_from_snapshot(snapshot, other_user_id)

	async def _fetch(self, user_id: str, key: str) -> RelationshipSnapshot:
		epoch = self._cache.epoch(key)
		started = time.perf_counter()
		try:
			results = await gather_mapping(
				{
					"invitations": self._store.list_invitations(user_id),
					"sent": self._store.list_invitations(user_id, InvitationDirection.SENT.value),
					"received": self._store.list_invitations(user_id, InvitationDirection.RECEIVED.value),
					"friends": self._store.list_friends(user_id),
				}
			)
		except Exception:
			obs_metrics.observe_remote_read(RELATIONSHIP_CACHE_DOMAIN, "error", time.perf_counter() - started)
			raise
		obs_metrics.observe_remote_read(RELATIONSHIP_CACHE_DOMAIN, "ok", time.perf_counter() - started)
		snapshot = build_snapshot(user_id, **results)
		if self._cache.epoch(key) != epoch:
			# invalidated while in flight; a newer fetch owns the entry
			logger.debug("Discarding stale relationship fetch for %s", user_id)
			return snapshot
		await self._cache.put(key, snapshot.model_dump(mode="json"))
		self._snapshots[user_id] = snapshot
		return snapshot


__all__ = ["RelationshipLoader", "build_snapshot"]
