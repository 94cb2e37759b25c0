"""
In-process domain event bus

Notification delivery lives outside the engine; subscribers registered here
are the boundary it hands events to.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from ..models.template import utcnow


logger = logging.getLogger(__name__)


class Topics:
    INSTANCE_STARTED = "workflow.instance.started"
    INSTANCE_ADVANCED = "workflow.instance.advanced"
    INSTANCE_COMPLETED = "workflow.instance.completed"
    INSTANCE_REJECTED = "workflow.instance.rejected"
    INSTANCE_TIMED_OUT = "workflow.instance.timed_out"
    INSTANCE_CANCELLED = "workflow.instance.cancelled"


@dataclass
class Event:
    """Event object"""
    topic: str
    payload: Any
    timestamp: datetime = field(default_factory=utcnow)
    headers: Dict[str, str] = field(default_factory=dict)


class EventBus:
    """Publish/subscribe bus"""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, payload: Any, headers: Dict[str, str] = None):
        """Publish an event to every subscriber of the topic"""
        event = Event(
            topic=topic,
            payload=payload,
            headers=headers or {}
        )

        async with self._lock:
            subscribers = list(self.subscribers.get(topic, []))

        if subscribers:
            await asyncio.gather(
                *(self._notify_subscriber(subscriber, event) for subscriber in subscribers)
            )

        logger.debug(f"Published event to topic '{topic}' with {len(subscribers)} subscribers")

    async def subscribe(self, topic: str, handler: Callable):
        """Register a handler (sync or async) for a topic"""
        async with self._lock:
            self.subscribers.setdefault(topic, []).append(handler)

        logger.info(f"Subscribed to topic '{topic}'")

    async def unsubscribe(self, topic: str, handler: Callable):
        async with self._lock:
            if topic in self.subscribers:
                self.subscribers[topic].remove(handler)
                if not self.subscribers[topic]:
                    del self.subscribers[topic]

        logger.info(f"Unsubscribed from topic '{topic}'")

    async def _notify_subscriber(self, subscriber: Callable, event: Event):
        # a failing subscriber must not undo an already committed transition
        try:
            if inspect.iscoroutinefunction(subscriber):
                await subscriber(event)
            else:
                subscriber(event)
        except Exception as e:
            logger.error(f"Error notifying subscriber for topic '{event.topic}': {e}", exc_info=True)
