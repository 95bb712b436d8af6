"""
Unit Tests for NotificationService
==================================

Purpose
-------
Test the background fan-out of level-up and quest completion notifications.

Test Coverage
-------------
- Level-up notification for the user and each follower
- Follower fan-out cap from config
- Social graph and sink failures are swallowed
- LOW priority registration and removal
- End to end: a committed level-up reaches the sink after drain

Testing Strategy
----------------
- Mocked event bus, config, social graph and sink for the listener tests
- Real EventBus and SQLite services for the end-to-end test
"""

import pytest

from src.core.event import ListenerPriority
from src.core.logging.logger import get_logger
from src.modules.notifications import NotificationService
from src.modules.notifications.service import (
    KIND_FRIEND_LEVEL_UP,
    KIND_LEVEL_UP,
    KIND_QUEST_COMPLETED,
)

LEVEL_UP_EVENT = {
    "user_id": "user-1",
    "old_level": 1,
    "new_level": 3,
    "tier": "Novice",
    "unlocked_rewards": [{"type": "feature", "key": "post_creation", "level": 3}],
}


@pytest.fixture
def social_graph(mocker):
    graph = mocker.MagicMock()
    graph.get_followers = mocker.AsyncMock(return_value=["user-2", "user-3"])
    return graph


@pytest.fixture
def sink(mocker):
    mock_sink = mocker.MagicMock()
    mock_sink.send = mocker.AsyncMock(return_value=None)
    return mock_sink


@pytest.fixture
def notifications(mock_config_manager, mock_event_bus, social_graph, sink):
    return NotificationService(
        mock_config_manager,
        mock_event_bus,
        get_logger("tests.NotificationService"),
        social_graph=social_graph,
        sink=sink,
    )


def sent(sink) -> list:
    return [call.args[0] for call in sink.send.await_args_list]


# ============================================================================
# LISTENER TESTS
# ============================================================================


@pytest.mark.unit
class TestLevelUpNotifications:
    """Test level-up fan-out."""

    async def test_user_and_followers_notified(self, notifications, sink):
        """Test one notification for the user and one per follower."""
        # Act
        await notifications.notify_level_up(LEVEL_UP_EVENT)

        # Assert
        delivered = sent(sink)
        assert [(n["kind"], n["user_id"]) for n in delivered] == [
            (KIND_LEVEL_UP, "user-1"),
            (KIND_FRIEND_LEVEL_UP, "user-2"),
            (KIND_FRIEND_LEVEL_UP, "user-3"),
        ]
        assert delivered[0]["payload"]["new_level"] == 3
        assert delivered[1]["payload"] == {"friend_id": "user-1", "new_level": 3}

    async def test_fanout_cap(self, notifications, sink, social_graph, mock_config_manager):
        """Test that followers beyond the configured cap are skipped."""
        # Arrange
        social_graph.get_followers.return_value = [f"follower-{i}" for i in range(10)]
        mock_config_manager.get.side_effect = lambda key, default=None: (
            3 if key == "core.notifications.max_friend_fanout" else default
        )

        # Act
        await notifications.notify_level_up(LEVEL_UP_EVENT)

        # Assert
        friend_ids = [n["user_id"] for n in sent(sink) if n["kind"] == KIND_FRIEND_LEVEL_UP]
        assert friend_ids == ["follower-0", "follower-1", "follower-2"]

    async def test_follower_lookup_failure_is_swallowed(self, notifications, sink, social_graph):
        """Test that a broken social graph still lets the user be notified."""
        # Arrange
        social_graph.get_followers.side_effect = ConnectionError("graph down")

        # Act
        await notifications.notify_level_up(LEVEL_UP_EVENT)

        # Assert
        assert [n["kind"] for n in sent(sink)] == [KIND_LEVEL_UP]

    async def test_sink_failure_does_not_stop_fanout(self, notifications, sink):
        """Test that one failed delivery does not stop the rest."""
        # Arrange
        sink.send.side_effect = [RuntimeError("push down"), None, None]

        # Act
        await notifications.notify_level_up(LEVEL_UP_EVENT)

        # Assert
        assert sink.send.await_count == 3


@pytest.mark.unit
class TestQuestCompletedNotifications:
    """Test quest completion notifications."""

    async def test_quest_completed(self, notifications, sink, social_graph):
        """Test that only the user is notified."""
        # Act
        await notifications.notify_quest_completed(
            {"user_id": "user-1", "quest_id": "daily-share", "title": "Daily Share", "rewards": {"xp": 25}}
        )

        # Assert
        (notification,) = sent(sink)
        assert notification["kind"] == KIND_QUEST_COMPLETED
        assert notification["payload"]["quest_id"] == "daily-share"
        social_graph.get_followers.assert_not_awaited()


# ============================================================================
# REGISTRATION TESTS
# ============================================================================


@pytest.mark.unit
class TestRegistration:
    """Test bus wiring."""

    def test_register_subscribes_at_low_priority(self, notifications, mock_event_bus):
        """Test both listeners and their priority."""
        # Act
        notifications.register()
        notifications.register()

        # Assert
        assert mock_event_bus.subscribe.call_count == 2
        events = [call.args[0] for call in mock_event_bus.subscribe.call_args_list]
        assert events == ["progression.level_up", "quest.completed"]
        assert all(
            call.kwargs["priority"] is ListenerPriority.LOW
            for call in mock_event_bus.subscribe.call_args_list
        )

    def test_unregister(self, notifications, mock_event_bus):
        """Test that every registered listener is removed."""
        # Arrange
        notifications.register()

        # Act
        notifications.unregister()

        # Assert
        mock_event_bus.unsubscribe.assert_any_call("progression.level_up", "notifications.progression.level_up")
        mock_event_bus.unsubscribe.assert_any_call("quest.completed", "notifications.quest.completed")


@pytest.mark.unit
@pytest.mark.database
class TestEndToEnd:
    """Test delivery through the real bus."""

    async def test_committed_level_up_reaches_sink(
        self, config_manager, event_bus, progression_service, user_id, social_graph, sink
    ):
        """Test that a level-up is delivered in the background after the grant returns."""
        # Arrange
        service = NotificationService(
            config_manager,
            event_bus,
            get_logger("tests.NotificationService"),
            social_graph=social_graph,
            sink=sink,
        )
        service.register()

        # Act
        await progression_service.apply_experience(user_id, 150, "quest")
        pending = await event_bus.drain(timeout=2.0)

        # Assert
        assert pending == 0
        assert [n["kind"] for n in sent(sink)] == [
            KIND_LEVEL_UP,
            KIND_FRIEND_LEVEL_UP,
            KIND_FRIEND_LEVEL_UP,
        ]
