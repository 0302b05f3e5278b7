"""
In-process event bus.

Delivers world events inbound and agent results outbound between the core
components and external collaborators. Every subscriber gets its own
queue, so delivery is ordered per topic and one slow consumer never starves
another. Nothing survives a process restart.
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Any, Optional

from asuka.models.enums import Topic
from asuka.models.events import BusEvent


logger = logging.getLogger("asuka.events")

_CLOSED = object()


class Subscription:
    """
    Consumer side of one topic.

    Iterate with ``async for`` to receive events lazily; iteration ends once
    the subscription is closed and its queue has drained.
    """

    def __init__(self, bus: "EventBus", topic: Topic):
        self.topic = topic
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _put(self, item: Any) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if self._loop is not None and running is not self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        else:
            self._queue.put_nowait(item)

    def _deliver(self, event: BusEvent) -> None:
        if not self._closed:
            self._put(event)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> BusEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def get(self, timeout: Optional[float] = None) -> BusEvent:
        """Wait for the next event. Raises asyncio.TimeoutError after ``timeout``."""
        if timeout is None:
            return await self.__anext__()
        return await asyncio.wait_for(self.__anext__(), timeout)

    def get_nowait(self) -> Optional[BusEvent]:
        """Return the next queued event, or None when nothing is waiting"""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return None if item is _CLOSED else item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._put(_CLOSED)


class EventBus:
    """Topic-based publish/subscribe with at-least-once in-process delivery"""

    def __init__(self, history_size: int = 200):
        self._subscribers: dict[Topic, list[Subscription]] = {topic: [] for topic in Topic}
        self._history: dict[Topic, deque[BusEvent]] = {
            topic: deque(maxlen=history_size) for topic in Topic
        }
        self._lock = threading.Lock()

    def subscribe(self, topic: Topic) -> Subscription:
        subscription = Subscription(self, topic)
        with self._lock:
            self._subscribers[topic].append(subscription)
        logger.debug("New subscriber on %s", topic.value)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers[subscription.topic]
            if subscription in subscribers:
                subscribers.remove(subscription)

    def publish(
        self,
        topic: Topic,
        payload: Any = None,
        *,
        agent_id: Optional[str] = None,
        sequence: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> BusEvent:
        """
        Publish to every current subscriber of ``topic``.

        ``payload`` may already be a BusEvent, in which case it is delivered
        as-is; anything else is wrapped in a new envelope.
        """
        if isinstance(payload, BusEvent):
            event = payload
        else:
            event = BusEvent(
                topic=topic,
                agent_id=agent_id,
                sequence=sequence,
                payload=payload,
                details=details or {},
            )

        with self._lock:
            self._history[topic].append(event)
            subscribers = list(self._subscribers[topic])

        for subscription in subscribers:
            subscription._deliver(event)

        logger.debug(
            "Published %s on %s to %d subscriber(s)",
            event.event_id,
            topic.value,
            len(subscribers),
        )
        return event

    def subscriber_count(self, topic: Topic) -> int:
        with self._lock:
            return len(self._subscribers[topic])

    def history(self, topic: Topic, limit: Optional[int] = None) -> list[BusEvent]:
        """Most recent events published on ``topic``, oldest first"""
        with self._lock:
            events = list(self._history[topic])
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def close(self) -> None:
        with self._lock:
            subscriptions = [sub for subs in self._subscribers.values() for sub in subs]
        for subscription in subscriptions:
            subscription.close()
