"""Integrations with collaborators outside the engine"""

from .event_bus import EventBus, Event, Topics

__all__ = [
    "EventBus",
    "Event",
    "Topics"
]
