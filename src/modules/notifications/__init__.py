"""
Notifications module.

Background level-up and quest-completion notifications.
"""

from src.modules.notifications.service import (
    DELIVERY_EVENT,
    EventBusSink,
    NoFollowers,
    NotificationService,
    NotificationSink,
    SocialGraph,
)

__all__ = [
    "DELIVERY_EVENT",
    "EventBusSink",
    "NoFollowers",
    "NotificationService",
    "NotificationSink",
    "SocialGraph",
]
