"""
Core event types for the Questline EventBus.

Priority Levels
---------------
- CRITICAL (0): Sequential, awaited, timeout-protected.
- HIGH (10): Sequential, awaited, timeout-protected.
- NORMAL (50): Concurrent (gather), awaited.
- LOW (100): Fire-and-forget background tasks. Notification delivery to
  users and followers runs here so it can never hold up a ledger write.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

# JSON-serializable dict; keep payloads flat where possible
EventPayload = dict[str, Any]


class ListenerPriority(Enum):
    """Listener tiers; the numeric value fixes execution order (lower first)."""

    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]


@dataclass(slots=True, frozen=True)
class EventListener:
    """
    A registered listener.

    Attributes
    ----------
    callback:
        Async or sync callable invoked with the event payload.
    priority:
        Tier determining execution order and concurrency.
    identifier:
        Unique string used for deduplication and unsubscription.
    once:
        Remove the listener before its first execution.
    """

    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    once: bool = False

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.priority.value, self.identifier)

    @classmethod
    def from_callback(
        cls,
        event_name: str,
        callback: CallbackType,
        priority: ListenerPriority,
        identifier: Optional[str],
        once: bool,
    ) -> EventListener:
        """
        Build a listener, deriving an identifier of the form
        ``module.qualname@event_name`` when none is supplied.
        """
        if identifier is None:
            module = getattr(callback, "__module__", "unknown")
            qualname = getattr(callback, "__qualname__", getattr(callback, "__name__", "callback"))
            identifier = f"{module}.{qualname}@{event_name}"

        return cls(callback=callback, priority=priority, identifier=identifier, once=once)
