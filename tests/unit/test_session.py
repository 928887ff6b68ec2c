import pytest

from playsync.domain.social.models import RelationshipStatus, relationship_cache_key
from playsync.infra.memory import InMemoryRemoteStore
from playsync.infra.push import InMemoryPushChannel, SocketIOPushChannel
from playsync.infra.remote import HttpRemoteStore
from playsync.session import SyncSession, build_transports
from playsync.settings import settings


@pytest.mark.asyncio
async def test_start_loads_and_subscribes(make_session, store):
    store.add_friendship("alice", "bob")

    session = await make_session()
    snapshot = await session.start("alice")

    assert snapshot.friend_ids == {"bob"}
    assert session.user_id == "alice"
    assert session.subscriber.topic == "user-alice"
    assert await session.status("alice") is RelationshipStatus.SELF
    assert await session.status("bob") is RelationshipStatus.FRIEND


@pytest.mark.asyncio
async def test_start_without_a_user_does_nothing(make_session, store):
    session = await make_session()

    assert await session.start("undefined") is None
    assert session.user_id is None
    assert await session.snapshot() is None
    assert await session.status("bob") is RelationshipStatus.NONE
    assert store.calls["list_friends"] == 0
    with pytest.raises(RuntimeError):
        session.open_conversation("bob")


@pytest.mark.asyncio
async def test_switch_user_drops_previous_state(make_session, store):
    session = await make_session("alice")
    stream = session.open_conversation("bob")

    await session.switch_user("bob")

    assert session.subscriber.topic == "user-bob"
    assert session.channel.topics == {"user-bob"}
    assert session.loader.snapshot("alice") is None
    assert await session.cache.get(relationship_cache_key("alice")) is None
    assert stream.messages == []


@pytest.mark.asyncio
async def test_messages_flow_between_two_sessions(make_session, store):
    store.add_friendship("alice", "bob")
    alice = await make_session("alice")
    bob = await make_session("bob")
    alice_chat = alice.open_conversation("bob")
    bob_chat = bob.open_conversation({"_id": "alice"})
    assert alice.open_conversation("bob") is alice_chat

    sent = await alice_chat.send("hi bob")

    assert [m.id for m in alice_chat.messages] == [sent.id]
    assert [m.content for m in bob_chat.messages] == ["hi bob"]

    await store.edit_message(sent.id, "alice", "hi Bob")
    assert bob_chat.messages[0].content == "hi Bob"
    assert alice_chat.messages[0].is_edited

    await store.delete_message(sent.id, "alice")
    assert bob_chat.messages == []
    assert alice_chat.messages == []


@pytest.mark.asyncio
async def test_closed_conversation_stops_receiving(make_session, store):
    store.add_friendship("alice", "bob")
    alice = await make_session("alice")
    bob = await make_session("bob")
    bob_chat = bob.open_conversation("alice")
    bob.close_conversation("alice")

    await alice.open_conversation("bob").send("anyone?")

    assert bob_chat.messages == []


@pytest.mark.asyncio
async def test_close_unbinds_everything(make_session, store):
    session = await make_session("alice")
    session.open_conversation("bob")

    await session.close()

    assert session.user_id is None
    assert session.channel.topics == set()


@pytest.mark.asyncio
async def test_async_context_manager_closes(store, hub):
    async with SyncSession(store, hub.channel()) as session:
        await session.start("alice")
        channel = session.channel
    assert channel.topics == set()


def test_transports_fall_back_to_memory():
    store, channel = build_transports()

    assert isinstance(store, InMemoryRemoteStore)
    assert isinstance(channel, InMemoryPushChannel)
    assert channel.hub is store.hub


@pytest.mark.asyncio
async def test_transports_follow_configured_urls():
    settings.remote_base_url = "http://api.test"
    store, channel = build_transports()
    assert isinstance(store, HttpRemoteStore)
    assert isinstance(channel, InMemoryPushChannel)
    await store.aclose()

    settings.push_url = "http://push.test"
    store, channel = build_transports()
    assert isinstance(channel, SocketIOPushChannel)
    await store.aclose()


@pytest.mark.asyncio
async def test_conversations_poll_when_no_push_url_is_configured(store, hub):
    settings.remote_base_url = "http://api.test"
    session = SyncSession()
    assert session.poll_interval == settings.chat_poll_interval_seconds
    await session.close()

    assert SyncSession(store, hub.channel()).poll_interval is None
