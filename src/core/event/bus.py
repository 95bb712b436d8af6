"""
Questline EventBus: async pub/sub with tiered concurrency.

Purpose
-------
Decouples the engines from their observers. The progression and quest
engines publish ``progression.*`` and ``quest.*`` events; the notification
sink adapter and any host application subscribe.

Responsibilities
----------------
- Register/unregister listeners with priorities and wildcard patterns
- Publish events to every matching listener
- Execute listeners according to the tiered model (see scheduler)
- Isolate listener errors from publishers

Design Decisions
----------------
- **Instance-based**: each ServiceContainer (and each test) owns its bus
- **Config-driven timeouts**: ``core.event.listener_timeout.*`` in YAML
- **Signature check at subscribe time**: a listener must take exactly one
  argument (the payload), so mistakes surface at wiring, not at publish
"""

from __future__ import annotations

import inspect
from typing import Any, Optional

from src.core.config.manager import ConfigManager
from src.core.event.registry import ListenerRegistry
from src.core.event.scheduler import EventScheduler
from src.core.event.types import CallbackType, EventListener, EventPayload, ListenerPriority
from src.core.logging.logger import LogContext, get_logger

logger = get_logger(__name__)


class EventBus:
    """
    In-process EventBus.

    Examples
    --------
    >>> bus = EventBus()
    >>> async def on_level_up(payload):
    ...     print(payload["user_id"], payload["payload"]["new_level"])
    >>> bus.subscribe("progression.level_up", on_level_up)
    >>> await bus.publish("progression.level_up", {"user_id": "u-1", "payload": {...}})
    """

    def __init__(
        self,
        registry: Optional[ListenerRegistry] = None,
        scheduler: Optional[EventScheduler] = None,
        config_manager: Optional[type[ConfigManager]] = None,
        *,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._config_manager = config_manager
        self._registry = registry or ListenerRegistry()
        self._scheduler = scheduler or EventScheduler()
        self._publish_counts: dict[str, int] = {}

        self._critical_timeout = self._load_timeout(
            "core.event.listener_timeout.critical_seconds", critical_timeout_seconds, 5.0
        )
        self._high_timeout = self._load_timeout(
            "core.event.listener_timeout.high_seconds", high_timeout_seconds, 5.0
        )

        logger.info(
            "EventBus initialized",
            extra={
                "critical_timeout_seconds": self._critical_timeout,
                "high_timeout_seconds": self._high_timeout,
            },
        )

    # ------------------------------------------------------------------ #
    # Configuration Loading
    # ------------------------------------------------------------------ #

    def _load_timeout(self, key: str, override: Optional[float], default: float) -> float:
        """Resolve a timeout: explicit override, then config, then default."""
        if override is not None:
            return float(override)
        if self._config_manager is None:
            return float(default)

        value = self._config_manager.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid listener timeout in config, using default",
                extra={"config_key": key, "value": value, "default_value": default},
            )
            return float(default)

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_callback_signature(callback: CallbackType) -> None:
        try:
            sig = inspect.signature(callback)
        except (TypeError, ValueError):
            # C-level callables may not expose a signature
            return

        params = list(sig.parameters.values())
        if len(params) != 1:
            name = getattr(callback, "__qualname__", None) or repr(callback)
            raise ValueError(
                f"Event listener must accept exactly 1 parameter (EventPayload), "
                f"got {len(params)} parameters for '{name}'"
            )

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
        allow_duplicates: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or wildcard pattern.

        Returns the listener identifier for later ``unsubscribe``.

        Raises
        ------
        ValueError
            If the callback does not take exactly one parameter.
        """
        self._validate_callback_signature(callback)

        listener = EventListener.from_callback(
            event_name=event_name,
            callback=callback,
            priority=priority,
            identifier=identifier,
            once=once,
        )
        added = self._registry.add_listener(event_name, listener, allow_duplicates=allow_duplicates)

        if added:
            logger.debug(
                "EventBus: subscribed listener",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "once": listener.once,
                },
            )
        else:
            logger.warning(
                "EventBus: duplicate listener prevented",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )

        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        removed = self._registry.remove_listener(event_name, identifier)
        if removed:
            logger.debug(
                "EventBus: unsubscribed listener",
                extra={"event_name": event_name, "listener_id": identifier},
            )
        return removed

    def clear(self) -> None:
        """Remove all listeners. Intended for tests and full re-initialization."""
        total = self._registry.clear_all()
        logger.info("EventBus: cleared all listeners", extra={"previous_listener_count": total})

    # ------------------------------------------------------------------ #
    # Publish API
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Publish an event to all subscribed listeners.

        Returns results from CRITICAL, HIGH and NORMAL listeners.
        """
        self._publish_counts[event_name] = self._publish_counts.get(event_name, 0) + 1

        listeners = self._registry.extract_listeners_for_event(event_name)
        if not listeners:
            logger.debug("EventBus: no listeners for event", extra={"event_name": event_name})
            return []

        with LogContext(event_name=event_name, event_keys=sorted(data.keys())):
            logger.debug(
                "EventBus: executing listeners",
                extra={"event_name": event_name, "listener_count": len(listeners)},
            )
            return await self._scheduler.execute(
                event_name=event_name,
                payload=data,
                listeners=listeners,
                logger=logger,
                critical_timeout=self._critical_timeout,
                high_timeout=self._high_timeout,
            )

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for fire-and-forget listeners; returns how many are still pending."""
        return await self._scheduler.drain(timeout)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_metrics(self) -> dict[str, Any]:
        return {
            "publish_counts": dict(self._publish_counts),
            "listener_errors": dict(self._scheduler.error_counts),
            "listener_count": self._registry.get_total_listener_count(),
            "background_tasks": self._scheduler.get_background_task_count(),
        }

    def get_listener_count(self, event_name: str) -> int:
        return self._registry.get_listener_count_for_event(event_name)
