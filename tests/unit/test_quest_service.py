"""
Unit Tests for QuestService and QuestCatalogService
===================================================

Purpose
-------
Test the quest lifecycle against a throwaway SQLite database: starting,
progress, completion rewards, lazy expiry, abandonment and the read views.

Test Coverage
-------------
- Start preconditions (inactive, level, already active/completed)
- Progress validation and completion with reward XP
- Expiry on touch and restarts after expiry
- Recurring re-attempts after the reset window
- Action fan-out across active attempts
- Reward retry after a failed grant
- List, details and reset status views
- Catalog parsing from config

Testing Strategy
----------------
- Real services on SQLite (aiosqlite), fresh schema per test
- FrozenClock to move across deadlines
- AAA pattern (Arrange, Act, Assert)
"""

from datetime import timedelta

import pytest

from src.core.exceptions import DatabaseError
from src.modules.shared.exceptions import (
    ExpiredError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from tests.conftest import START_TIME, event_names, payloads_for


# ============================================================================
# START TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestStartQuest:
    """Test starting attempts."""

    async def test_start_daily_quest(self, quest_service, user_id, published_events):
        """Test a fresh daily attempt with its deadline."""
        # Act
        attempt = await quest_service.start_quest(user_id, "daily-share")

        # Assert
        assert attempt["status"] == "active"
        assert attempt["progress"] == {"create_post": 0}
        assert attempt["expires_at"] == START_TIME + timedelta(hours=24)
        assert attempt["id"] is not None
        (payload,) = payloads_for(published_events, "quest.started")
        assert payload["instance_id"] == attempt["id"]

    async def test_start_achievement_has_no_deadline(self, quest_service, user_id):
        """Test that achievements never expire."""
        # Act
        attempt = await quest_service.start_quest(user_id, "first-step")

        # Assert
        assert attempt["expires_at"] is None

    async def test_already_active(self, quest_service, user_id):
        """Test that a second start inside the window is rejected."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")

        # Act & Assert
        with pytest.raises(PreconditionFailedError) as exc_info:
            await quest_service.start_quest(user_id, "daily-share")

        assert exc_info.value.error_code == "PRECONDITION_ALREADY_ACTIVE"

    async def test_level_too_low(self, quest_service, user_id):
        """Test the quest level prerequisite against the ledger."""
        # Act & Assert
        with pytest.raises(PreconditionFailedError) as exc_info:
            await quest_service.start_quest(user_id, "community-builder")

        assert exc_info.value.error_code == "PRECONDITION_LEVEL_TOO_LOW"

    async def test_cached_level_satisfies_prerequisite(self, quest_service, user_id):
        """Test that a caller-supplied level is used instead of the ledger."""
        # Act
        attempt = await quest_service.start_quest(user_id, "community-builder", user_level=3)

        # Assert
        assert attempt["progress"] == {"follow_users": 0, "join_guild": 0}

    async def test_inactive_quest(self, quest_service, user_id):
        """Test that retired quests cannot be started."""
        # Act & Assert
        with pytest.raises(PreconditionFailedError) as exc_info:
            await quest_service.start_quest(user_id, "retired-quest")

        assert exc_info.value.error_code == "PRECONDITION_QUEST_INACTIVE"

    async def test_unknown_quest(self, quest_service, user_id):
        """Test an id missing from the catalog."""
        # Act & Assert
        with pytest.raises(NotFoundError):
            await quest_service.start_quest(user_id, "no-such-quest")

    async def test_start_without_ledger(self, quest_service, services):
        """Test that the level lookup needs a ledger."""
        # Act & Assert
        with pytest.raises(NotFoundError):
            await quest_service.start_quest("ghost", "daily-share")


# ============================================================================
# PROGRESS TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestRecordProgress:
    """Test progress and completion."""

    async def test_completion_grants_reward_xp(
        self, quest_service, progression_service, user_id, published_events
    ):
        """Test that the completing increment applies the quest XP."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")

        # Act
        result = await quest_service.record_progress(user_id, "daily-share", "create_post")

        # Assert
        assert result["is_completed"] is True
        assert result["instance"]["status"] == "completed"
        assert result["rewards"]["xp"] == 25
        assert result["xp_result"]["new_xp"] == 25
        assert result["reward_pending"] is False
        assert (await progression_service.get_progression(user_id))["xp"] == 25
        assert "quest.completed" in event_names(published_events)

    async def test_partial_progress(self, quest_service, user_id):
        """Test an increment that does not complete the quest."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-likes")

        # Act
        result = await quest_service.record_progress(user_id, "daily-likes", "like_posts", 2)

        # Assert
        assert result["is_completed"] is False
        assert result["instance"]["progress"] == {"like_posts": 2}
        assert result["instance"]["progress_percent"] == 67
        assert result["xp_result"] is None

    async def test_progress_after_completion(self, quest_service, user_id):
        """Test that a completed attempt takes no more progress."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        await quest_service.record_progress(user_id, "daily-share", "create_post")

        # Act & Assert
        with pytest.raises(PreconditionFailedError) as exc_info:
            await quest_service.record_progress(user_id, "daily-share", "create_post")

        assert exc_info.value.error_code == "PRECONDITION_NOT_ACTIVE"

    async def test_unrequired_requirement_type(self, quest_service, user_id):
        """Test an action the quest does not count."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")

        # Act & Assert
        with pytest.raises(ValidationError):
            await quest_service.record_progress(user_id, "daily-share", "like_posts")

    @pytest.mark.parametrize("requirement_type,increment", [("teleport", 1), ("create_post", 0)])
    async def test_invalid_input(self, quest_service, user_id, requirement_type, increment):
        """Test unknown actions and non-positive increments."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")

        # Act & Assert
        with pytest.raises(ValidationError):
            await quest_service.record_progress(user_id, "daily-share", requirement_type, increment)

    async def test_reward_failure_leaves_completion_pending(
        self, quest_service, progression_service, user_id, mocker
    ):
        """Test that a failed XP grant keeps the completion and can be retried once."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        mocker.patch.object(
            progression_service,
            "apply_experience",
            side_effect=DatabaseError("progression.apply_experience", RuntimeError("connection reset")),
        )

        # Act
        result = await quest_service.record_progress(user_id, "daily-share", "create_post")
        mocker.stopall()
        instance_id = result["instance"]["id"]
        retried = await quest_service.retry_completion_reward(user_id, instance_id)
        repeated = await quest_service.retry_completion_reward(user_id, instance_id)

        # Assert
        assert result["is_completed"] is True
        assert result["reward_pending"] is True
        assert result["xp_result"] is None
        assert retried["new_xp"] == 25
        assert retried["already_applied"] is False
        assert repeated["already_applied"] is True
        assert (await progression_service.get_progression(user_id))["xp"] == 25

    async def test_pending_reward_is_stored_on_the_attempt(
        self, quest_service, progression_service, user_id, mocker
    ):
        """Test that a failed grant is recorded on the attempt and cleared by the retry."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        mocker.patch.object(
            progression_service,
            "apply_experience",
            side_effect=DatabaseError("progression.apply_experience", RuntimeError("connection reset")),
        )
        result = await quest_service.record_progress(user_id, "daily-share", "create_post")
        mocker.stopall()

        # Act
        before = await quest_service.get_quest_details(user_id, "daily-share")
        await quest_service.retry_completion_reward(user_id, result["instance"]["id"])
        after = await quest_service.get_quest_details(user_id, "daily-share")

        # Assert
        assert before["instance"]["reward_pending"] is True
        assert after["instance"]["reward_pending"] is False

    async def test_successful_completion_is_not_pending(self, quest_service, user_id):
        """Test that a granted completion leaves no pending flag behind."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")

        # Act
        await quest_service.record_progress(user_id, "daily-share", "create_post")
        details = await quest_service.get_quest_details(user_id, "daily-share")

        # Assert
        assert details["instance"]["reward_pending"] is False
        assert await quest_service.settle_pending_rewards(user_id) == {"settled": [], "pending": []}

    async def test_settle_pending_rewards(self, quest_service, progression_service, user_id, mocker):
        """Test that pending completions are found and granted without the caller's response."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        mocker.patch.object(
            progression_service,
            "apply_experience",
            side_effect=DatabaseError("progression.apply_experience", RuntimeError("connection reset")),
        )
        result = await quest_service.record_progress(user_id, "daily-share", "create_post")

        # Act
        still_failing = await quest_service.settle_pending_rewards(user_id)
        mocker.stopall()
        settled = await quest_service.settle_pending_rewards(user_id)
        again = await quest_service.settle_pending_rewards(user_id)

        # Assert
        instance_id = result["instance"]["id"]
        assert still_failing == {"settled": [], "pending": [instance_id]}
        assert settled == {"settled": [instance_id], "pending": []}
        assert again == {"settled": [], "pending": []}
        assert (await progression_service.get_progression(user_id))["xp"] == 25

    async def test_listing_settles_pending_rewards(
        self, quest_service, progression_service, user_id, mocker
    ):
        """Test that listing quests finishes an owed completion grant."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        mocker.patch.object(
            progression_service,
            "apply_experience",
            side_effect=DatabaseError("progression.apply_experience", RuntimeError("connection reset")),
        )
        await quest_service.record_progress(user_id, "daily-share", "create_post")
        mocker.stopall()

        # Act
        listing = await quest_service.list_quests(user_id)

        # Assert
        (completed,) = listing["completed"]
        assert completed["reward_pending"] is False
        assert (await progression_service.get_progression(user_id))["xp"] == 25

    async def test_uncleared_flag_does_not_grant_twice(
        self, quest_service, progression_service, user_id, mocker
    ):
        """Test that XP landing before the flag is cleared is not granted again."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        mocker.patch.object(
            quest_service,
            "_mark_reward_granted",
            side_effect=DatabaseError("quests.mark_reward_granted", RuntimeError("connection reset")),
        )
        result = await quest_service.record_progress(user_id, "daily-share", "create_post")
        mocker.stopall()

        # Act
        settled = await quest_service.settle_pending_rewards(user_id)

        # Assert
        assert result["xp_result"]["new_xp"] == 25
        assert result["reward_pending"] is False
        assert settled == {"settled": [result["instance"]["id"]], "pending": []}
        assert (await progression_service.get_progression(user_id))["xp"] == 25

    async def test_retry_reward_on_active_attempt(self, quest_service, user_id):
        """Test that only completed attempts can be rewarded."""
        # Arrange
        attempt = await quest_service.start_quest(user_id, "daily-share")

        # Act & Assert
        with pytest.raises(PreconditionFailedError):
            await quest_service.retry_completion_reward(user_id, attempt["id"])

    async def test_retry_reward_for_other_user(self, quest_service, progression_service, user_id):
        """Test that attempts of another user are not found."""
        # Arrange
        attempt = await quest_service.start_quest(user_id, "daily-share")
        await progression_service.create_ledger("user-2")

        # Act & Assert
        with pytest.raises(NotFoundError):
            await quest_service.retry_completion_reward("user-2", attempt["id"])


# ============================================================================
# EXPIRY AND RESTART TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestExpiryAndRestart:
    """Test lazy expiry, abandonment and restarts."""

    async def test_progress_after_deadline_expires_attempt(
        self, quest_service, user_id, clock, published_events
    ):
        """Test that touching an overdue attempt expires it and rejects the progress."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        clock.advance(hours=25)

        # Act & Assert
        with pytest.raises(ExpiredError):
            await quest_service.record_progress(user_id, "daily-share", "create_post")

        details = await quest_service.get_quest_details(user_id, "daily-share")
        assert details["instance"]["status"] == "expired"
        assert details["can_start"] is True
        assert "quest.expired" in event_names(published_events)

    async def test_restart_after_expiry(self, quest_service, user_id, clock):
        """Test that an overdue attempt does not block a new one."""
        # Arrange
        first = await quest_service.start_quest(user_id, "daily-share")
        clock.advance(hours=25)

        # Act
        second = await quest_service.start_quest(user_id, "daily-share")

        # Assert
        assert second["id"] != first["id"]
        assert second["status"] == "active"
        assert second["expires_at"] == clock.current + timedelta(hours=24)

    async def test_completed_daily_reattempt_after_window(self, quest_service, user_id, clock):
        """Test the recurring restart rule."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        await quest_service.record_progress(user_id, "daily-share", "create_post")

        # Act & Assert
        with pytest.raises(PreconditionFailedError) as exc_info:
            await quest_service.start_quest(user_id, "daily-share")
        assert exc_info.value.error_code == "PRECONDITION_ALREADY_COMPLETED"

        clock.advance(hours=24)
        attempt = await quest_service.start_quest(user_id, "daily-share")
        assert attempt["status"] == "active"

    async def test_completed_achievement_is_final(self, quest_service, user_id, clock):
        """Test that achievements cannot be repeated."""
        # Arrange
        await quest_service.start_quest(user_id, "first-step")
        await quest_service.record_progress(user_id, "first-step", "create_post")
        clock.advance(days=30)

        # Act & Assert
        with pytest.raises(PreconditionFailedError) as exc_info:
            await quest_service.start_quest(user_id, "first-step")

        assert exc_info.value.error_code == "PRECONDITION_ALREADY_COMPLETED"

    async def test_abandon(self, quest_service, user_id, published_events):
        """Test that an abandoned attempt stops counting and frees the quest."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-likes")

        # Act
        abandoned = await quest_service.abandon_quest(user_id, "daily-likes")

        # Assert
        assert abandoned["status"] == "abandoned"
        assert "quest.abandoned" in event_names(published_events)
        with pytest.raises(PreconditionFailedError):
            await quest_service.record_progress(user_id, "daily-likes", "like_posts")
        restarted = await quest_service.start_quest(user_id, "daily-likes")
        assert restarted["status"] == "active"

    async def test_abandon_without_attempt(self, quest_service, user_id):
        """Test abandoning a quest that is not running."""
        # Act & Assert
        with pytest.raises(PreconditionFailedError):
            await quest_service.abandon_quest(user_id, "daily-likes")

    async def test_abandon_overdue_attempt_expires_it(self, quest_service, user_id, clock):
        """Test that an overdue attempt is expired rather than abandoned."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-likes")
        clock.advance(hours=30)

        # Act & Assert
        with pytest.raises(ExpiredError):
            await quest_service.abandon_quest(user_id, "daily-likes")

        details = await quest_service.get_quest_details(user_id, "daily-likes")
        assert details["instance"]["status"] == "expired"

    async def test_expire_overdue_quests(self, quest_service, user_id, clock):
        """Test the per-user sweep expires only overdue attempts."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        await quest_service.start_quest(user_id, "weekly-active")
        clock.advance(hours=25)

        # Act
        expired = await quest_service.expire_overdue_quests(user_id)
        again = await quest_service.expire_overdue_quests(user_id)

        # Assert
        assert (expired, again) == (1, 0)


# ============================================================================
# ACTION FAN-OUT TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestRecordAction:
    """Test counting one action across attempts."""

    async def test_action_advances_every_matching_attempt(
        self, quest_service, progression_service, user_id
    ):
        """Test that one post counts for every quest requiring posts."""
        # Arrange
        for quest_id in ("daily-share", "weekly-active", "first-step", "daily-likes"):
            await quest_service.start_quest(user_id, quest_id)

        # Act
        result = await quest_service.record_action(user_id, "create_post")

        # Assert
        assert sorted(result["completed"]) == ["daily-share", "first-step"]
        assert sorted(instance["quest_id"] for instance in result["updated"]) == [
            "daily-share",
            "first-step",
            "weekly-active",
        ]
        assert result["expired"] == []
        assert (await progression_service.get_progression(user_id))["xp"] == 75

    async def test_action_skips_overdue_attempts(self, quest_service, user_id, clock):
        """Test that an expired attempt is reported and the others still advance."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        await quest_service.start_quest(user_id, "weekly-active")
        clock.advance(hours=25)

        # Act
        result = await quest_service.record_action(user_id, "create_post")

        # Assert
        assert result["expired"] == ["daily-share"]
        assert [instance["quest_id"] for instance in result["updated"]] == ["weekly-active"]

    async def test_action_without_attempts(self, quest_service, user_id):
        """Test an action nothing is waiting for."""
        # Act
        result = await quest_service.record_action(user_id, "join_guild")

        # Assert
        assert result == {"updated": [], "completed": [], "expired": []}


# ============================================================================
# READ VIEW TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestQuestViews:
    """Test list, details and reset status."""

    async def test_list_quests_hides_hidden_and_inactive(self, quest_service, user_id):
        """Test visibility, level gating and stats."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")

        # Act
        listing = await quest_service.list_quests(user_id)

        # Assert
        available = {quest["id"] for quest in listing["available"]}
        assert available == {"daily-likes", "weekly-active", "first-step"}
        assert [attempt["quest_id"] for attempt in listing["active"]] == ["daily-share"]
        assert listing["stats"] == {
            "total_quests": 5,
            "active_count": 1,
            "completed_count": 0,
            "daily_quests": 2,
            "available_count": 3,
        }

    async def test_list_quests_filter(self, quest_service, user_id):
        """Test the type filter."""
        # Act
        listing = await quest_service.list_quests(user_id, filter_type="weekly")

        # Assert
        assert [quest["id"] for quest in listing["available"]] == ["weekly-active"]
        with pytest.raises(ValidationError):
            await quest_service.list_quests(user_id, filter_type="monthly")

    async def test_get_quest_details(self, quest_service, user_id):
        """Test details with and without an attempt."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-likes")
        await quest_service.record_progress(user_id, "daily-likes", "like_posts")

        # Act
        running = await quest_service.get_quest_details(user_id, "daily-likes")
        gated = await quest_service.get_quest_details(user_id, "community-builder")

        # Assert
        assert running["progress_percent"] == 33
        assert running["can_start"] is False
        assert gated["instance"] is None
        assert gated["can_start"] is False

    async def test_get_reset_status(self, quest_service, user_id):
        """Test next reset per recurring quest."""
        # Arrange
        await quest_service.start_quest(user_id, "daily-share")
        await quest_service.record_progress(user_id, "daily-share", "create_post")

        # Act
        status = {row["quest_id"]: row for row in await quest_service.get_reset_status(user_id)}

        # Assert
        assert set(status) == {"daily-share", "daily-likes", "weekly-active"}
        assert status["daily-share"]["last_status"] == "completed"
        assert status["daily-share"]["can_start"] is False
        assert status["daily-share"]["next_reset_at"] == START_TIME + timedelta(hours=24)
        assert status["daily-likes"] == {
            "quest_id": "daily-likes",
            "quest_type": "daily",
            "reset_type": "daily",
            "last_status": None,
            "next_reset_at": None,
            "can_start": True,
        }


# ============================================================================
# CATALOG TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestQuestCatalog:
    """Test the quest catalog service."""

    def test_configured_definitions(self, quest_catalog):
        """Test that the shipped catalog parses."""
        # Act
        definitions = quest_catalog.configured_definitions()

        # Assert
        ids = [definition.id for definition in definitions]
        assert len(ids) == len(set(ids))
        assert "daily-share" in ids
        assert all(definition.requirements for definition in definitions)

    async def test_seed_catalog_skips_existing(self, quest_catalog):
        """Test that reseeding the test catalog inserts nothing."""
        # Act
        from tests.conftest import build_quest_definitions

        inserted = await quest_catalog.seed_catalog(build_quest_definitions())

        # Assert
        assert inserted == 0

    async def test_get_definition(self, quest_catalog):
        """Test the catalog lookup."""
        # Act
        definition = await quest_catalog.get_definition("community-builder")

        # Assert
        assert definition.min_level == 3
        with pytest.raises(NotFoundError):
            await quest_catalog.get_definition("no-such-quest")

    async def test_list_definitions_ordering(self, quest_catalog):
        """Test difficulty, then reward XP ordering with hidden and retired quests left out."""
        # Act
        visible = await quest_catalog.list_definitions()
        everything = await quest_catalog.list_definitions(include_inactive=True, include_hidden=True)
        daily = await quest_catalog.list_definitions("daily")

        # Assert
        assert [definition.id for definition in visible] == [
            "daily-likes",
            "daily-share",
            "first-step",
            "weekly-active",
            "community-builder",
        ]
        assert {"secret-path", "retired-quest"} <= {definition.id for definition in everything}
        assert [definition.id for definition in daily] == ["daily-likes", "daily-share"]
