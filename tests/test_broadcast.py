import asyncio

import pytest

from models.stream_events import AgentChunkEvent, ProgressEvent
from orchestrator.broadcast import (
    LIFECYCLE_TOPIC,
    PRIMARY_CHUNK_TOPIC,
    BroadcastChannel,
    agent_chunk_topic,
)
from orchestrator.errors import PublishFailed

pytestmark = pytest.mark.unit


def _chunk(text, done=False):
    return AgentChunkEvent(role="analyst", chunk=text, is_complete=done)


def _drain(subscription):
    async def _collect():
        subscription.close()
        return [m async for m in subscription]

    return asyncio.run(_collect())


def test_publish_keeps_submission_order_and_sequence():
    channel = BroadcastChannel()

    async def _run():
        for text in ["a", "b", "c"]:
            await channel.publish("s1", agent_chunk_topic("analyst"), _chunk(text))

    asyncio.run(_run())
    history = channel.history("s1")
    assert [m.event.chunk for m in history] == ["a", "b", "c"]
    assert [m.seq for m in history] == [1, 2, 3]


def test_sessions_are_isolated():
    channel = BroadcastChannel()
    channel.publish_nowait("s1", LIFECYCLE_TOPIC, ProgressEvent(step="x", status="starting", message="m"))
    channel.publish_nowait("s2", LIFECYCLE_TOPIC, ProgressEvent(step="y", status="starting", message="m"))

    assert [e.step for e in channel.events("s1")] == ["x"]
    assert [e.step for e in channel.events("s2")] == ["y"]
    assert channel.history("s2")[0].seq == 1


def test_subscriber_receives_only_requested_topics():
    channel = BroadcastChannel()
    subscription = channel.subscribe("s1", topics=[PRIMARY_CHUNK_TOPIC])
    channel.publish_nowait("s1", agent_chunk_topic("analyst"), _chunk("ignored"))
    channel.publish_nowait("s1", PRIMARY_CHUNK_TOPIC, _chunk("kept"))

    messages = _drain(subscription)
    assert [m.event.chunk for m in messages] == ["kept"]


def test_replay_delivers_history_before_live_events():
    channel = BroadcastChannel()
    channel.publish_nowait("s1", LIFECYCLE_TOPIC, _chunk("early"))
    subscription = channel.subscribe("s1", replay=True)
    channel.publish_nowait("s1", LIFECYCLE_TOPIC, _chunk("late"))

    messages = _drain(subscription)
    assert [m.event.chunk for m in messages] == ["early", "late"]


def test_slow_subscriber_drops_oldest_but_history_is_complete():
    channel = BroadcastChannel(subscriber_queue_size=2)
    subscription = channel.subscribe("s1")
    for text in ["1", "2", "3", "4"]:
        channel.publish_nowait("s1", LIFECYCLE_TOPIC, _chunk(text))

    assert subscription.dropped == 2
    assert len(channel.history("s1")) == 4

    messages = _drain(subscription)
    # Closing a full queue makes room for the end-of-stream marker
    assert [m.event.chunk for m in messages] == ["4"]
    assert subscription.dropped == 3


def test_live_subscriber_is_woken_by_publish():
    channel = BroadcastChannel()

    async def _run():
        subscription = channel.subscribe("s1")
        reader = asyncio.create_task(subscription.get())
        await asyncio.sleep(0)
        await channel.publish("s1", LIFECYCLE_TOPIC, _chunk("hello"))
        message = await asyncio.wait_for(reader, timeout=1)
        subscription.close()
        return message

    message = asyncio.run(_run())
    assert message.event.chunk == "hello"


def test_close_session_ends_iteration_and_unsubscribes():
    channel = BroadcastChannel()

    async def _run():
        subscription = channel.subscribe("s1")
        assert channel.subscriber_count("s1") == 1
        channel.close_session("s1")
        return [m async for m in subscription]

    assert asyncio.run(_run()) == []
    assert channel.subscriber_count("s1") == 0


def test_publish_rejects_missing_session_and_foreign_payloads():
    channel = BroadcastChannel()
    with pytest.raises(PublishFailed):
        channel.publish_nowait("", LIFECYCLE_TOPIC, _chunk("x"))
    with pytest.raises(PublishFailed):
        channel.publish_nowait("s1", LIFECYCLE_TOPIC, {"type": "agent-chunk"})


def test_open_session_and_forget():
    channel = BroadcastChannel()
    assert not channel.has_session("s1")
    channel.open_session("s1")
    assert channel.has_session("s1")
    assert channel.history("s1") == []

    channel.publish_nowait("s1", LIFECYCLE_TOPIC, _chunk("x"))
    channel.forget("s1")
    assert not channel.has_session("s1")


def test_message_wire_shape():
    channel = BroadcastChannel()
    message = channel.publish_nowait("s1", agent_chunk_topic("analyst"), _chunk("hi"))
    payload = message.to_dict()

    assert payload["session_id"] == "s1"
    assert payload["topic"] == "agent-chunk:analyst"
    assert payload["type"] == "agent-chunk"
    assert payload["chunk"] == "hi"
    assert payload["is_complete"] is False
    assert payload["timestamp"].endswith("Z")


def test_replay_is_lossless_beyond_the_live_queue_bound():
    channel = BroadcastChannel(subscriber_queue_size=3)
    channel.publish_nowait("s1", LIFECYCLE_TOPIC, ProgressEvent(step="orchestration", status="starting", message="m"))
    for i in range(20):
        channel.publish_nowait("s1", agent_chunk_topic("analyst"), _chunk(str(i)))

    subscription = channel.subscribe("s1", replay=True)
    assert subscription.backlog_size == 21
    channel.publish_nowait("s1", LIFECYCLE_TOPIC, _chunk("live"))

    messages = _drain(subscription)
    assert [m.seq for m in messages] == list(range(1, 23))
    assert messages[0].event.event_type == "progress"
    assert messages[-1].event.chunk == "live"
    assert subscription.dropped == 0


def test_replay_respects_topic_filter():
    channel = BroadcastChannel(subscriber_queue_size=1)
    for i in range(5):
        channel.publish_nowait("s1", agent_chunk_topic("analyst"), _chunk(str(i)))
        channel.publish_nowait("s1", PRIMARY_CHUNK_TOPIC, _chunk(f"p{i}"))

    subscription = channel.subscribe("s1", topics=[PRIMARY_CHUNK_TOPIC], replay=True)
    assert [m.event.chunk for m in _drain(subscription)] == ["p0", "p1", "p2", "p3", "p4"]


def test_finished_sessions_are_evicted_after_retention(clock):
    channel = BroadcastChannel(retention_s=60, clock=clock)
    channel.publish_nowait("done", LIFECYCLE_TOPIC, _chunk("x"))
    channel.publish_nowait("running", LIFECYCLE_TOPIC, _chunk("y"))
    channel.mark_finished("done")

    clock.now += 59
    assert channel.evict_expired() == 0
    assert channel.has_session("done")

    clock.now += 1
    channel.open_session("next")
    assert not channel.has_session("done")
    assert channel.has_session("running")
    assert channel.session_count() == 2


def test_eviction_waits_for_attached_subscribers(clock):
    channel = BroadcastChannel(retention_s=10, clock=clock)
    channel.publish_nowait("s1", LIFECYCLE_TOPIC, _chunk("x"))
    subscription = channel.subscribe("s1", replay=True)
    channel.mark_finished("s1")

    clock.now += 30
    assert channel.evict_expired() == 0
    assert channel.has_session("s1")

    subscription.close()
    assert channel.evict_expired() == 1
    assert not channel.has_session("s1")


def test_without_retention_history_is_kept(clock):
    channel = BroadcastChannel(clock=clock)
    channel.publish_nowait("s1", LIFECYCLE_TOPIC, _chunk("x"))
    channel.mark_finished("s1")
    clock.now += 10_000
    assert channel.evict_expired() == 0
    assert channel.has_session("s1")
