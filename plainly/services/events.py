"""In-process event stream feeding the presentation layer.

Publishers (capture session, pipeline, coordinator) call ``publish()``
synchronously; every subscriber owns an ``asyncio.Queue`` and consumes
events with ``async for``. Slow subscribers never block publishers: when a
subscriber's queue is full its oldest event is dropped.

Usage::

    events = EventStream()
    subscription = events.subscribe()
    async for event in subscription:
        ...
    events.unsubscribe(subscription)
"""

import asyncio
import logging
from collections import deque

from plainly.core.models import Event

logger = logging.getLogger(__name__)


class Subscription:
    """One consumer's view of the event stream."""

    def __init__(self, maxsize: int) -> None:
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def _put(self, event: Event | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            logger.debug("Subscriber queue full; dropped oldest event")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._put(None)

    async def get(self) -> Event | None:
        """Next event, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventStream:
    """Fan-out of presentation events to any number of subscribers.

    Args:
        history_size: Number of recent events kept for inspection.
        queue_size: Per-subscriber buffer size.
    """

    def __init__(self, history_size: int = 200, queue_size: int = 500) -> None:
        self._subscribers: list[Subscription] = []
        self._queue_size = queue_size
        self.history: deque[Event] = deque(maxlen=history_size)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: Event) -> None:
        self.history.append(event)
        for subscription in self._subscribers:
            subscription._put(event)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self._queue_size)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
        subscription.close()

    def close(self) -> None:
        """Close every subscription (application shutdown)."""
        for subscription in list(self._subscribers):
            self.unsubscribe(subscription)
