import asyncio

import pytest

from playsync.domain.social.models import RelationshipStatus, relationship_cache_key
from playsync.domain.social.sync import RelationshipLoader, build_snapshot
from playsync.infra.cache import FetchCache, RedisCacheBackend


def _reads(store) -> int:
    return store.calls["list_friends"] + store.calls["list_invitations"]


@pytest.mark.asyncio
async def test_invalid_ids_never_reach_the_store(store, cache):
    loader = RelationshipLoader(store, cache)

    for user_id in ("", "undefined", "null", None):
        assert await loader.load(user_id) is None

    assert _reads(store) == 0


@pytest.mark.asyncio
async def test_load_issues_four_reads_and_caches(store, cache):
    store.add_friendship("alice", "bob")
    await store.send_invitation("alice", "carol")
    loader = RelationshipLoader(store, cache)

    snapshot = await loader.load("alice")

    assert snapshot.friend_ids == {"bob"}
    assert [inv.to_user_id for inv in snapshot.sent_invitations] == ["carol"]
    assert snapshot.received_invitations == []
    assert store.calls["list_friends"] == 1
    assert store.calls["list_invitations"] == 3
    assert await cache.get(relationship_cache_key("alice")) is not None

    again = await loader.load("alice")
    assert again.friend_ids == {"bob"}
    assert _reads(store) == 4


@pytest.mark.asyncio
async def test_expired_entry_is_refetched(store, cache, clock):
    loader = RelationshipLoader(store, cache)
    await loader.load("alice")

    clock.advance(60)
    await loader.load("alice")

    assert store.calls["list_friends"] == 2


@pytest.mark.asyncio
async def test_concurrent_loads_share_one_fetch(store, cache):
    store.delay = 0.01
    loader = RelationshipLoader(store, cache)

    snapshots = await asyncio.gather(*(loader.load("alice") for _ in range(6)))

    assert store.calls["list_friends"] == 1
    assert all(snapshot is snapshots[0] for snapshot in snapshots)
    assert not loader.is_loading("alice")


@pytest.mark.asyncio
async def test_failed_refresh_keeps_last_snapshot(store, cache):
    store.add_friendship("alice", "bob")
    loader = RelationshipLoader(store, cache)
    first = await loader.load("alice")

    store.offline = True
    result = await loader.load("alice", force=True)

    assert result is first
    assert loader.error("alice") == "Network error"
    assert loader.snapshot("alice").friend_ids == {"bob"}

    store.offline = False
    await loader.load("alice", force=True)
    assert loader.error("alice") is None


@pytest.mark.asyncio
async def test_failure_without_prior_snapshot_returns_none(store, cache):
    store.offline = True
    loader = RelationshipLoader(store, cache)

    assert await loader.load("alice") is None
    assert loader.error("alice") == "Network error"
    assert await loader.status("alice", "bob") is RelationshipStatus.NONE


@pytest.mark.asyncio
async def test_fetch_started_before_invalidation_is_not_cached(store, cache):
    store.delay = 0.01
    loader = RelationshipLoader(store, cache)

    pending = asyncio.create_task(loader.load("alice"))
    for _ in range(3):
        await asyncio.sleep(0)
    assert loader.is_loading("alice")

    store.add_friendship("alice", "bob")
    await loader.invalidate("alice")
    await pending

    assert await cache.get(relationship_cache_key("alice")) is None
    fresh = await loader.load("alice")
    assert fresh.friend_ids == {"bob"}


@pytest.mark.asyncio
async def test_refresh_bypasses_the_cache(store, cache):
    loader = RelationshipLoader(store, cache)
    await loader.load("alice")
    store.add_friendship("alice", "carol")

    assert (await loader.load("alice")).friend_ids == set()
    assert (await loader.refresh("alice")).friend_ids == {"carol"}
    assert await loader.status("alice", "carol") is RelationshipStatus.FRIEND


@pytest.mark.asyncio
async def test_clear_drops_everything(store, cache):
    loader = RelationshipLoader(store, cache)
    await loader.load("alice")

    await loader.clear()

    assert loader.snapshot("alice") is None
    assert await cache.get(relationship_cache_key("alice")) is None


@pytest.mark.asyncio
async def test_redis_backed_cache_is_shared_between_loaders(store, clock, fake_redis):
    backend = RedisCacheBackend(prefix="test:")
    first = RelationshipLoader(store, FetchCache(backend, ttl_seconds=60, clock=clock))
    second = RelationshipLoader(store, FetchCache(backend, ttl_seconds=60, clock=clock))
    await store.send_invitation("bob", "alice")

    await first.load("alice")
    snapshot = await second.load("alice")

    assert store.calls["list_friends"] == 1
    assert snapshot.received_invitations[0].from_user_id == "bob"
    assert await second.status("alice", "bob") is RelationshipStatus.PENDING_RECEIVED
    assert await second.invitation_id_for("alice", "bob") == snapshot.received_invitations[0].id


def test_build_snapshot_filters_by_direction_and_status():
    snapshot = build_snapshot(
        "alice",
        friends=[{"_id": "bob", "name": "Bob"}],
        invitations=[],
        sent=[
            {"_id": "i1", "fromUserId": "alice", "toUserId": "carol", "status": "pending"},
            {"_id": "i2", "fromUserId": "dave", "toUserId": "alice", "status": "pending"},
            {"_id": "i3", "fromUserId": "alice", "toUserId": "erin", "status": "accepted"},
        ],
        received=[],
    )

    assert [friend.name for friend in snapshot.friends] == ["Bob"]
    assert [inv.id for inv in snapshot.sent_invitations] == ["i1"]
