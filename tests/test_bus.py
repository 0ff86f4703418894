"""Message channel tests."""

import asyncio

import pytest

from relaybot.infra.bus import ChannelError, MessageChannel
from tests.conftest import make_message


@pytest.mark.asyncio
async def test_channel_operations():
    channel = MessageChannel()
    await channel.start()

    assert channel.running is True
    assert channel.publish(make_message("hello")) is True

    received = await channel.get()
    assert received.body == "hello"

    await channel.stop()
    assert channel.running is False
    assert await channel.get() is None


@pytest.mark.asyncio
async def test_publish_before_start_is_dropped():
    channel = MessageChannel()

    assert channel.publish(make_message("hello")) is False
    assert channel.dropped_count == 1


@pytest.mark.asyncio
async def test_full_queue_drops_messages():
    channel = MessageChannel(max_queue_size=2)
    await channel.start()

    results = [channel.publish(make_message(str(i))) for i in range(3)]

    assert results == [True, True, False]
    stats = channel.get_stats()
    assert stats["published_count"] == 2
    assert stats["dropped_count"] == 1
    assert stats["queue_size"] == 2


@pytest.mark.asyncio
async def test_stop_still_delivers_queued_messages():
    channel = MessageChannel()
    await channel.start()
    channel.publish(make_message("one"))
    channel.publish(make_message("two"))
    await channel.stop()

    bodies = [message.body async for message in channel]

    assert bodies == ["one", "two"]
    assert channel.publish(make_message("late")) is False


@pytest.mark.asyncio
async def test_get_before_start_raises():
    channel = MessageChannel()

    with pytest.raises(ChannelError):
        await channel.get()


@pytest.mark.asyncio
async def test_consumer_wakes_on_stop():
    channel = MessageChannel()
    await channel.start()

    waiter = asyncio.create_task(channel.get())
    await asyncio.sleep(0)
    await channel.stop()

    assert await asyncio.wait_for(waiter, timeout=1.0) is None
