"""
Event system for Questline.

Exports the EventBus and its supporting types.
"""

from src.core.event.bus import EventBus
from src.core.event.registry import ListenerRegistry, matches
from src.core.event.scheduler import EventScheduler
from src.core.event.types import CallbackType, EventListener, EventPayload, ListenerPriority

__all__ = [
    "EventBus",
    "ListenerRegistry",
    "EventScheduler",
    "EventListener",
    "EventPayload",
    "ListenerPriority",
    "CallbackType",
    "matches",
]
