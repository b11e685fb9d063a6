"""
Per-session publish/subscribe channel for stream events.

Topics per session:
- ``lifecycle``            agent-update / agent-result / progress / metadata / result
- ``agent-chunk:<role>``   one chunk topic per agent role
- ``ai-chunk``             consolidated answer chunks, mirrored by the synthesizer

Ordering: ``publish`` never suspends, so events reach every subscriber and the
session history in exactly the order they were submitted. Each subscriber has
a bounded live queue; when it is full the oldest undelivered live event is
dropped for that subscriber only (``dropped`` counts them). Replayed history
is delivered in full, and history itself is only released by ``forget`` or
retention eviction of finished sessions.
"""

import asyncio
import time
from collections import defaultdict, deque
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from models.stream_events import StreamEvent
from orchestrator.errors import PublishFailed
from utils.logger import get_logger

logger = get_logger(__name__)

LIFECYCLE_TOPIC = "lifecycle"
PRIMARY_CHUNK_TOPIC = "ai-chunk"
AGENT_CHUNK_PREFIX = "agent-chunk:"


def agent_chunk_topic(role: str) -> str:
    return f"{AGENT_CHUNK_PREFIX}{role}"


@dataclass(frozen=True)
class ChannelMessage:
    session_id: str
    topic: str
    seq: int
    event: StreamEvent

    def to_dict(self) -> dict[str, Any]:
        return {"session_id": self.session_id, "topic": self.topic, "seq": self.seq, **self.event.to_dict()}


class Subscription:
    """
    One subscriber's view of a session; iterate it to receive messages.

    Replayed history is held in its own backlog and delivered in full before
    anything from the live queue. Only live messages are subject to the
    drop-oldest bound.
    """

    def __init__(
        self,
        channel: "BroadcastChannel",
        session_id: str,
        topics: set[str] | None,
        maxsize: int,
        backlog: Iterable[ChannelMessage] = (),
    ):
        self._channel = channel
        self.session_id = session_id
        self.topics = topics
        self._backlog: deque[ChannelMessage] = deque(m for m in backlog if self.wants(m.topic))
        self._queue: asyncio.Queue[ChannelMessage | None] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def wants(self, topic: str) -> bool:
        return self.topics is None or topic in self.topics

    @property
    def backlog_size(self) -> int:
        return len(self._backlog)

    def offer(self, message: ChannelMessage) -> None:
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(message)

    async def get(self) -> ChannelMessage | None:
        """Next message, or None once the subscription is closed and drained."""
        if self._backlog:
            return self._backlog.popleft()
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake a pending reader; make room for the sentinel if necessary
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(None)
        self._channel._discard(self)

    def __aiter__(self) -> AsyncIterator[ChannelMessage]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChannelMessage]:
        while True:
            message = await self.get()
            if message is None:
                return
            yield message


class BroadcastChannel:
    """
    In-memory broadcast channel keyed by session id.

    With ``retention_s`` set, a session marked finished keeps its history for
    that many seconds and is then evicted, once no subscriber is attached.
    Without it, history lives until ``forget``.
    """

    def __init__(
        self,
        subscriber_queue_size: int = 1000,
        keep_history: bool = True,
        retention_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.subscriber_queue_size = subscriber_queue_size
        self.keep_history = keep_history
        self.retention_s = retention_s
        self._clock = clock
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)
        self._history: dict[str, list[ChannelMessage]] = defaultdict(list)
        self._seq: dict[str, int] = defaultdict(int)
        self._finished_at: dict[str, float] = {}

    async def publish(self, session_id: str, topic: str, event: StreamEvent) -> ChannelMessage:
        """
        Append ``event`` to ``topic`` of ``session_id`` and fan it out to subscribers.

        Raises:
            PublishFailed: if the event could not be recorded
        """
        return self.publish_nowait(session_id, topic, event)

    def publish_nowait(self, session_id: str, topic: str, event: StreamEvent) -> ChannelMessage:
        if not session_id:
            raise PublishFailed("Cannot publish without a session id")
        if not isinstance(event, StreamEvent):
            raise PublishFailed(f"Unsupported event type: {type(event).__name__}")

        self._seq[session_id] += 1
        message = ChannelMessage(session_id=session_id, topic=topic, seq=self._seq[session_id], event=event)
        if self.keep_history:
            self._history[session_id].append(message)
        for subscription in list(self._subscribers.get(session_id, ())):
            if subscription.wants(topic):
                subscription.offer(message)
        return message

    def subscribe(
        self,
        session_id: str,
        topics: Iterable[str] | None = None,
        replay: bool = False,
    ) -> Subscription:
        """
        Subscribe to a session.

        Args:
            session_id: Session to follow
            topics: Topic names to receive; None means every topic
            replay: Deliver the session's full history first, then live events
        """
        # Snapshot and registration happen without a suspension point, so no
        # event can fall between the replayed history and the live queue
        subscription = Subscription(
            self,
            session_id,
            set(topics) if topics is not None else None,
            maxsize=self.subscriber_queue_size,
            backlog=list(self._history.get(session_id, ())) if replay else (),
        )
        self._subscribers[session_id].append(subscription)
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.session_id)
        if subscribers and subscription in subscribers:
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscribers[subscription.session_id]

    def history(self, session_id: str, topic: str | None = None) -> list[ChannelMessage]:
        messages = self._history.get(session_id, [])
        if topic is None:
            return list(messages)
        return [m for m in messages if m.topic == topic]

    def events(self, session_id: str, topic: str | None = None) -> list[StreamEvent]:
        return [m.event for m in self.history(session_id, topic)]

    def open_session(self, session_id: str) -> None:
        """Register a session before its first event so subscribers can attach early."""
        if not session_id:
            raise PublishFailed("Cannot open a session without an id")
        self.evict_expired()
        self._history.setdefault(session_id, [])

    def has_session(self, session_id: str) -> bool:
        return session_id in self._history

    def session_count(self) -> int:
        return len(self._history)

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def mark_finished(self, session_id: str) -> None:
        """Start the retention clock for a session whose run has ended."""
        if self.retention_s is None or session_id not in self._history:
            return
        self._finished_at[session_id] = self._clock()
        self.evict_expired()

    def evict_expired(self) -> int:
        """
        Drop finished sessions older than ``retention_s`` with no live subscriber.

        Returns:
            Number of sessions evicted
        """
        if self.retention_s is None:
            return 0
        now = self._clock()
        expired = [
            session_id
            for session_id, finished in self._finished_at.items()
            if now - finished >= self.retention_s and not self._subscribers.get(session_id)
        ]
        for session_id in expired:
            self.forget(session_id)
        if expired:
            logger.debug(
                f"Evicted {len(expired)} finished sessions",
                extra={"extra_fields": {"evicted": len(expired), "retained": len(self._history)}},
            )
        return len(expired)

    def close_session(self, session_id: str) -> None:
        """Close every live subscription of a session; history is kept."""
        for subscription in list(self._subscribers.get(session_id, ())):
            subscription.close()

    def forget(self, session_id: str) -> None:
        self.close_session(session_id)
        self._history.pop(session_id, None)
        self._seq.pop(session_id, None)
        self._finished_at.pop(session_id, None)
