"""
Tiered listener execution for the EventBus.

- CRITICAL / HIGH: sequential, in order, each call timeout-protected.
- NORMAL: concurrent via ``asyncio.gather``, awaited.
- LOW: fire-and-forget tasks, tracked so they are not garbage collected and
  can be drained on shutdown or in tests.

Every listener runs inside its own error boundary: a failure is logged and
counted, never propagated to the publisher or to sibling listeners.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from logging import Logger
from typing import Any, Optional

from src.core.event.types import EventListener, EventPayload, ListenerPriority


class EventScheduler:
    """Runs an already-sorted listener list according to its priority tiers."""

    def __init__(self) -> None:
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self.error_counts: Counter[str] = Counter()

    async def execute(
        self,
        *,
        event_name: str,
        payload: EventPayload,
        listeners: list[EventListener],
        logger: Logger,
        critical_timeout: Optional[float],
        high_timeout: Optional[float],
    ) -> list[Any]:
        """
        Execute listeners with tiered concurrency.

        Returns results from CRITICAL, HIGH and NORMAL listeners; LOW
        listeners are scheduled in the background and contribute nothing.
        """
        by_tier: dict[ListenerPriority, list[EventListener]] = {tier: [] for tier in ListenerPriority}
        for listener in listeners:
            by_tier[listener.priority].append(listener)

        results: list[Any] = []

        for tier, timeout in (
            (ListenerPriority.CRITICAL, critical_timeout),
            (ListenerPriority.HIGH, high_timeout),
        ):
            for listener in by_tier[tier]:
                results.append(
                    await self._run_with_timeout(listener, event_name, payload, logger, timeout)
                )

        normal = by_tier[ListenerPriority.NORMAL]
        if normal:
            results.extend(
                await asyncio.gather(
                    *(self._run_listener(lst, event_name, payload, logger) for lst in normal)
                )
            )

        loop = asyncio.get_running_loop()
        for listener in by_tier[ListenerPriority.LOW]:
            task = loop.create_task(
                self._run_listener(listener, event_name, payload, logger),
                name=f"eventbus-low-{event_name}-{listener.identifier}",
            )
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        return results

    async def _run_with_timeout(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        logger: Logger,
        timeout: Optional[float],
    ) -> Any:
        if timeout is None or timeout <= 0:
            return await self._run_listener(listener, event_name, payload, logger)

        try:
            return await asyncio.wait_for(
                self._run_listener(listener, event_name, payload, logger),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "EventBus listener timeout",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "timeout_seconds": timeout,
                },
            )
            self._record_error(logger, event_name, listener, exc, log=False)
            return None

    async def _run_listener(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        logger: Logger,
    ) -> Any:
        """Run one listener; sync callbacks go to the default executor."""
        try:
            if asyncio.iscoroutinefunction(listener.callback):
                return await listener.callback(payload)

            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, listener.callback, payload)
        except Exception as exc:
            self._record_error(logger, event_name, listener, exc)
            return None

    def _record_error(
        self,
        logger: Logger,
        event_name: str,
        listener: EventListener,
        exc: BaseException,
        *,
        log: bool = True,
    ) -> None:
        self.error_counts[event_name] += 1
        if log:
            logger.error(
                "EventBus listener error",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=exc,
            )

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for in-flight LOW-tier tasks.

        Returns the number of tasks still pending when the timeout expired.
        """
        if not self._background_tasks:
            return 0
        _, pending = await asyncio.wait(set(self._background_tasks), timeout=timeout)
        return len(pending)

    def get_background_task_count(self) -> int:
        return len(self._background_tasks)
