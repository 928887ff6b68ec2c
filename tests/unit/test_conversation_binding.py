import asyncio

import pytest

from playsync.domain.chat.models import ChatEvent
from playsync.domain.chat.sockets import ConversationBinding
from playsync.domain.chat.stream import MessageStream
from playsync.infra.push import InMemoryPushChannel


@pytest.fixture
def friends(store):
    store.add_friendship("alice", "bob")
    return store


async def _wait_for(predicate, attempts=100):
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


@pytest.mark.asyncio
async def test_polling_picks_up_messages_without_push(friends):
    stream = MessageStream(friends, "alice", "bob")
    # a channel on its own hub never hears from the store
    binding = ConversationBinding(InMemoryPushChannel(), stream, poll_interval=0.01)
    binding.bind()
    assert binding.polling

    await friends.send_message("bob", "alice", "are you there?", "c-1")

    assert await _wait_for(lambda: bool(stream.messages))
    assert [m.content for m in stream.messages] == ["are you there?"]

    binding.unbind()
    assert not binding.polling
    assert not binding.bound


@pytest.mark.asyncio
async def test_binding_without_interval_does_not_poll(friends, hub):
    stream = MessageStream(friends, "alice", "bob")
    binding = ConversationBinding(hub.channel(), stream)

    binding.bind()

    assert not binding.polling
    binding.unbind()


@pytest.mark.asyncio
async def test_poll_latest_merges_newest_page_in_order(friends):
    stream = MessageStream(friends, "alice", "bob")
    for index in range(3):
        await friends.send_message("bob", "alice", f"m{index}", f"c-{index}")

    assert await stream.poll_latest() == 3
    assert await stream.poll_latest() == 0
    assert [m.content for m in stream.messages] == ["m2", "m1", "m0"]


@pytest.mark.asyncio
async def test_poll_latest_swallows_remote_errors(friends):
    stream = MessageStream(friends, "alice", "bob")
    friends.offline = True

    assert await stream.poll_latest() == 0
    assert stream.error is None


@pytest.mark.asyncio
async def test_read_status_reaches_the_sender(friends, hub):
    alice_stream = MessageStream(friends, "alice", "bob")
    ConversationBinding(hub.channel(), alice_stream).bind()
    sent = await alice_stream.send("hello")
    assert not alice_stream.messages[0].is_read

    bob_stream = MessageStream(friends, "bob", "alice")
    await bob_stream.load_page()

    [message] = alice_stream.messages
    assert message.id == sent.id
    assert message.is_read
    assert message.is_delivered


@pytest.mark.asyncio
async def test_delivered_status_does_not_mark_read(friends, hub):
    stream = MessageStream(friends, "alice", "bob")
    ConversationBinding(hub.channel(), stream).bind()
    sent = await stream.send("hello")

    hub.publish(stream.key.topic, ChatEvent.MESSAGE_DELIVERED.value, {"messageId": sent.id, "status": "delivered"})

    assert stream.messages[0].is_delivered
    assert not stream.messages[0].is_read
    assert not stream.apply_status({"messageId": sent.id, "status": "lost"})
    assert not stream.apply_status({"messageId": "missing", "status": "read"})


@pytest.mark.asyncio
async def test_own_echo_is_ignored_once_confirmed(friends, hub):
    stream = MessageStream(friends, "alice", "bob")
    ConversationBinding(hub.channel(), stream).bind()
    sent = await stream.send("hello")

    hub.publish(
        stream.key.topic,
        ChatEvent.NEW_MESSAGE.value,
        {"_id": "dup", "senderId": "alice", "receiverId": "bob", "content": "hello", "clientMsgId": sent.client_msg_id},
    )

    assert [m.id for m in stream.messages] == [sent.id]
