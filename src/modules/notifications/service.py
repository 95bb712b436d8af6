"""
Notification Service
====================

Purpose
-------
Turns committed progression and quest events into fire-and-forget
notifications for the user and, on a level-up, a lighter notification for
each of the user's followers.

Design Notes
------------
- Listeners are registered at ``ListenerPriority.LOW``: the EventBus runs
  them as tracked background tasks, so publishing never waits for delivery
- Every delivery runs in its own error boundary; a failing sink or social
  graph is logged and swallowed, one failed follower does not stop the rest
- Nothing here touches the ledger or quest attempts; a notification can
  never undo or block the mutation that caused it

Notification shape: ``{"kind": str, "user_id": str, "payload": dict}``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence, Tuple

from src.core.event.types import EventPayload, ListenerPriority
from src.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from logging import Logger

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus

KIND_LEVEL_UP = "level:up"
KIND_FRIEND_LEVEL_UP = "friend:level_up"
KIND_QUEST_COMPLETED = "quest:completed"

DELIVERY_EVENT = "notification.deliver"


class SocialGraph(Protocol):
    """Follower lookup supplied by the social collaborator."""

    async def get_followers(self, user_id: str) -> Sequence[str]: ...


class NotificationSink(Protocol):
    """Fire-and-forget delivery endpoint."""

    async def send(self, notification: Dict[str, Any]) -> None: ...


class NoFollowers:
    """Social graph for deployments without one: nobody follows anybody."""

    async def get_followers(self, user_id: str) -> Sequence[str]:
        return ()


class EventBusSink:
    """Publishes notifications as ``notification.deliver`` bus events."""

    def __init__(self, event_bus: EventBus) -> None:
        self._events = event_bus

    async def send(self, notification: Dict[str, Any]) -> None:
        await self._events.publish(DELIVERY_EVENT, notification)


# ============================================================================
# NotificationService
# ============================================================================


class NotificationService(BaseService):
    """
    Background notification fan-out.

    Public Methods
    --------------
    - register() -> Subscribe to the bus (idempotent)
    - notify_level_up() -> Notify the user and their followers
    - notify_quest_completed() -> Notify the user
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        *,
        social_graph: Optional[SocialGraph] = None,
        sink: Optional[NotificationSink] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(config_manager, event_bus, logger, **kwargs)
        self._social_graph: SocialGraph = social_graph or NoFollowers()
        self._sink: NotificationSink = sink or EventBusSink(event_bus)
        self._listener_ids: List[Tuple[str, str]] = []

    def register(self) -> None:
        if self._listener_ids:
            return
        for event_name, callback in (
            ("progression.level_up", self.notify_level_up),
            ("quest.completed", self.notify_quest_completed),
        ):
            identifier = self._events.subscribe(
                event_name,
                callback,
                priority=ListenerPriority.LOW,
                identifier=f"notifications.{event_name}",
            )
            self._listener_ids.append((event_name, identifier))

        self.log.info("Notification listeners registered", extra={"listener_count": len(self._listener_ids)})

    def unregister(self) -> None:
        for event_name, identifier in self._listener_ids:
            self._events.unsubscribe(event_name, identifier)
        self._listener_ids.clear()

    # ========================================================================
    # LISTENERS
    # ========================================================================

    async def notify_level_up(self, event: EventPayload) -> None:
        user_id = event["user_id"]
        await self._deliver(
            {
                "kind": KIND_LEVEL_UP,
                "user_id": user_id,
                "payload": {
                    "old_level": event.get("old_level"),
                    "new_level": event.get("new_level"),
                    "tier": event.get("tier"),
                    "unlocked_rewards": event.get("unlocked_rewards", []),
                },
            }
        )

        try:
            followers = list(await self._social_graph.get_followers(user_id))
        except Exception as exc:
            self.log.warning(
                "Follower lookup failed; friend notifications skipped",
                extra={"user_id": user_id, "error_type": type(exc).__name__, "error_message": str(exc)},
            )
            return

        max_fanout = int(self.get_config("core.notifications.max_friend_fanout", default=500))
        if len(followers) > max_fanout:
            self.log.info(
                "Friend fan-out truncated",
                extra={"user_id": user_id, "followers": len(followers), "max_fanout": max_fanout},
            )
            followers = followers[:max_fanout]

        for follower_id in followers:
            await self._deliver(
                {
                    "kind": KIND_FRIEND_LEVEL_UP,
                    "user_id": follower_id,
                    "payload": {"friend_id": user_id, "new_level": event.get("new_level")},
                }
            )

    async def notify_quest_completed(self, event: EventPayload) -> None:
        await self._deliver(
            {
                "kind": KIND_QUEST_COMPLETED,
                "user_id": event["user_id"],
                "payload": {
                    "quest_id": event.get("quest_id"),
                    "title": event.get("title"),
                    "rewards": event.get("rewards", {}),
                },
            }
        )

    async def _deliver(self, notification: Dict[str, Any]) -> None:
        try:
            await self._sink.send(notification)
        except Exception as exc:
            self.log.warning(
                "Notification delivery failed",
                extra={
                    "kind": notification["kind"],
                    "user_id": notification["user_id"],
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
