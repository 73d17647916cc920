"""
In-process publish/subscribe for processing job events.

Each subscriber gets its own bounded queue. Publishing never blocks: a
subscriber whose queue is full misses the event. Late subscribers see only
events published after they subscribed.
"""
import asyncio
import logging
from typing import Dict, Optional, Set

from ..models.processing import ProcessingEvent
from ..utils.config import get_settings

logger = logging.getLogger(__name__)


class Subscription:
    """
    A subscriber's view of one organization's events.

    Usable as an async iterator and an async context manager; leaving the
    context (or calling close) unregisters it from the bus.
    """

    def __init__(self, bus: "EventBus", organization_id: str, max_size: int):
        self.bus = bus
        self.organization_id = organization_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self.closed = False

    def offer(self, event: ProcessingEvent) -> bool:
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    async def get(self, timeout: Optional[float] = None) -> Optional[ProcessingEvent]:
        """Next event, or None when the timeout elapses first."""
        if timeout is None:
            return await self.queue.get()
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.bus.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProcessingEvent:
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class EventBus:
    """Fans job events out to every subscriber of the same organization."""

    def __init__(self, max_queue_size: Optional[int] = None):
        self.max_queue_size = max_queue_size or get_settings().EVENT_QUEUE_SIZE
        self._subscribers: Dict[str, Set[Subscription]] = {}

    def subscribe(self, organization_id: str) -> Subscription:
        subscription = Subscription(self, organization_id, self.max_queue_size)
        self._subscribers.setdefault(organization_id, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.organization_id)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.organization_id]

    def subscriber_count(self, organization_id: str) -> int:
        return len(self._subscribers.get(organization_id, ()))

    def publish(self, organization_id: str, event: ProcessingEvent) -> int:
        """
        Deliver an event to the organization's current subscribers.

        Returns:
            Number of subscribers that received it
        """
        delivered = 0
        for subscription in list(self._subscribers.get(organization_id, ())):
            if subscription.offer(event):
                delivered += 1
            else:
                logger.warning(
                    f"Dropped {event.type.value} for job {event.job_id}: subscriber queue full"
                )
        return delivered
