"""
Listener registry for the EventBus.

Holds exact and wildcard subscriptions, prunes one-shot listeners atomically
on lookup, and returns listeners in deterministic ``(priority, identifier)``
order.
"""

from __future__ import annotations

from src.core.event.types import EventListener


def matches(event_name: str, pattern: str) -> bool:
    """
    Check whether an event name matches a subscription pattern.

    ``*`` matches any run of characters, including dots.

    Examples
    --------
    >>> matches("quest.completed", "quest.*")
    True
    >>> matches("progression.friend_level_up", "*.friend_level_up")
    True
    >>> matches("quest.completed", "progression.*")
    False
    """
    if pattern == "*":
        return True
    if "*" not in pattern:
        return event_name == pattern

    while "**" in pattern:
        pattern = pattern.replace("**", "*")

    parts = pattern.split("*")
    prefix, suffix = parts[0], parts[-1]

    if not event_name.startswith(prefix):
        return False
    if suffix and not event_name.endswith(suffix):
        return False
    if len(prefix) + len(suffix) > len(event_name):
        return False

    idx = len(prefix)
    limit = len(event_name) - len(suffix)
    for middle in parts[1:-1]:
        found = event_name.find(middle, idx, limit)
        if found == -1:
            return False
        idx = found + len(middle)

    return True


class ListenerRegistry:
    """Storage for exact and wildcard listeners."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventListener]] = {}
        self._wildcard_listeners: list[tuple[str, EventListener]] = []

    # ------------------------------------------------------------------ #
    # Modification
    # ------------------------------------------------------------------ #

    def add_listener(
        self,
        event_name: str,
        listener: EventListener,
        *,
        allow_duplicates: bool,
    ) -> bool:
        """
        Register a listener; returns False when it was rejected as a
        duplicate ``(event_name, identifier)`` pair.
        """
        if "*" in event_name:
            if not allow_duplicates and any(
                pattern == event_name and existing.identifier == listener.identifier
                for pattern, existing in self._wildcard_listeners
            ):
                return False
            self._wildcard_listeners.append((event_name, listener))
            self._wildcard_listeners.sort(key=lambda pl: pl[1].sort_key)
            return True

        listeners = self._listeners.setdefault(event_name, [])
        if not allow_duplicates and any(
            existing.identifier == listener.identifier for existing in listeners
        ):
            return False

        listeners.append(listener)
        listeners.sort(key=lambda lst: lst.sort_key)
        return True

    def remove_listener(self, event_name: str, identifier: str) -> bool:
        removed = False

        if event_name in self._listeners:
            before = len(self._listeners[event_name])
            self._listeners[event_name] = [
                lst for lst in self._listeners[event_name] if lst.identifier != identifier
            ]
            removed = len(self._listeners[event_name]) < before
            if not self._listeners[event_name]:
                del self._listeners[event_name]

        before_wc = len(self._wildcard_listeners)
        self._wildcard_listeners = [
            (pattern, lst)
            for pattern, lst in self._wildcard_listeners
            if not (pattern == event_name and lst.identifier == identifier)
        ]
        return removed or len(self._wildcard_listeners) < before_wc

    def clear_all(self) -> int:
        total = self.get_total_listener_count()
        self._listeners.clear()
        self._wildcard_listeners.clear()
        return total

    # ------------------------------------------------------------------ #
    # Lookup & Once-Removal
    # ------------------------------------------------------------------ #

    def extract_listeners_for_event(self, event_name: str) -> list[EventListener]:
        """
        Collect every listener for ``event_name`` (exact and wildcard) and
        prune ``once`` listeners in the same step, so two in-flight publishes
        cannot both run a one-shot listener.
        """
        result: list[EventListener] = []

        exact = self._listeners.get(event_name, [])
        result.extend(exact)
        kept = [lst for lst in exact if not lst.once]
        if kept:
            self._listeners[event_name] = kept
        else:
            self._listeners.pop(event_name, None)

        remaining: list[tuple[str, EventListener]] = []
        for pattern, listener in self._wildcard_listeners:
            if matches(event_name, pattern):
                result.append(listener)
                if listener.once:
                    continue
            remaining.append((pattern, listener))
        self._wildcard_listeners = remaining

        result.sort(key=lambda lst: lst.sort_key)
        return result

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count_for_event(self, event_name: str) -> int:
        count = len(self._listeners.get(event_name, []))
        count += sum(1 for pattern, _ in self._wildcard_listeners if matches(event_name, pattern))
        return count

    def get_total_listener_count(self) -> int:
        total = sum(len(listeners) for listeners in self._listeners.values())
        return total + len(self._wildcard_listeners)
