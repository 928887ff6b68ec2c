import asyncio

import pytest

from playsync.domain.social.models import PushEvent, RelationshipStatus
from playsync.domain.social.subscriber import PushEventSubscriber
from playsync.domain.social.sync import RelationshipLoader


@pytest.fixture
def loader(store, cache):
    return RelationshipLoader(store, cache)


@pytest.mark.asyncio
async def test_bind_subscribes_to_the_user_topic(hub, loader):
    channel = hub.channel()
    subscriber = PushEventSubscriber(channel, loader)

    assert subscriber.bind({"_id": "alice"})
    assert subscriber.user_id == "alice"
    assert subscriber.topic == "user-alice"
    assert channel.topics == {"user-alice"}


@pytest.mark.asyncio
async def test_bind_with_placeholder_id_unbinds(hub, loader):
    channel = hub.channel()
    subscriber = PushEventSubscriber(channel, loader)
    subscriber.bind("alice")

    assert not subscriber.bind("undefined")
    assert subscriber.topic is None
    assert channel.topics == set()


@pytest.mark.asyncio
async def test_rebind_moves_the_subscription(hub, loader):
    channel = hub.channel()
    subscriber = PushEventSubscriber(channel, loader)
    subscriber.bind("alice")
    first_handle = subscriber._handle

    subscriber.rebind("bob")

    assert channel.topics == {"user-bob"}
    assert first_handle.closed
    assert hub.publish("user-alice", PushEvent.FRIEND_ADDED.value, {}) == 0


@pytest.mark.asyncio
async def test_same_user_bind_is_a_no_op(hub, loader):
    channel = hub.channel()
    subscriber = PushEventSubscriber(channel, loader)
    subscriber.bind("alice")
    handle = subscriber._handle

    subscriber.bind("alice")

    assert subscriber._handle is handle


@pytest.mark.asyncio
async def test_event_forces_a_refetch(hub, store, loader):
    subscriber = PushEventSubscriber(hub.channel(), loader)
    subscriber.bind("alice")
    await loader.load("alice")
    store.add_friendship("alice", "bob")
    assert await loader.status("alice", "bob") is RelationshipStatus.NONE

    hub.publish("user-alice", PushEvent.FRIEND_ADDED.value, {"id": "bob"})
    assert subscriber.pending == 1
    await subscriber.drain()

    assert await loader.status("alice", "bob") is RelationshipStatus.FRIEND


@pytest.mark.asyncio
async def test_repeated_events_converge_to_the_same_state(hub, store, loader):
    subscriber = PushEventSubscriber(hub.channel(), loader)
    subscriber.bind("alice")
    await store.send_invitation("bob", "alice")
    await subscriber.drain()
    once = loader.snapshot("alice")

    hub.publish("user-alice", PushEvent.INVITATION_CREATED.value, {})
    hub.publish("user-alice", PushEvent.INVITATION_CREATED.value, {})
    await subscriber.drain()
    twice = loader.snapshot("alice")

    assert [inv.id for inv in twice.received_invitations] == [inv.id for inv in once.received_invitations]
    assert twice.friend_ids == once.friend_ids


@pytest.mark.asyncio
async def test_unknown_events_are_ignored(hub, store, loader):
    subscriber = PushEventSubscriber(hub.channel(), loader)
    subscriber.bind("alice")

    hub.publish("user-alice", "profile-updated", {})

    assert subscriber.pending == 0
    assert store.calls["list_friends"] == 0


@pytest.mark.asyncio
async def test_close_cancels_outstanding_refetches(hub, store, loader):
    store.delay = 0.05
    subscriber = PushEventSubscriber(hub.channel(), loader)
    subscriber.bind("alice")
    hub.publish("user-alice", PushEvent.FRIEND_REMOVED.value, {})
    await asyncio.sleep(0)

    await subscriber.close()

    assert subscriber.pending == 0
    assert subscriber.topic is None
    assert hub.publish("user-alice", PushEvent.FRIEND_REMOVED.value, {}) == 0
