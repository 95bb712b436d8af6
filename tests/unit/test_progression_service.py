"""
Unit Tests for ProgressionService and LevelCatalogService
=========================================================

Purpose
-------
Test ledger creation, experience grants, the progression view and the level
catalog against a throwaway SQLite database.

Test Coverage
-------------
- Ledger creation (idempotent)
- Experience grants: single and multi-level, max level, validation
- Idempotency keys
- Level history and the progression view
- Post-commit events
- Level catalog seeding, caching and table defects

Testing Strategy
----------------
- Real services on SQLite (aiosqlite), fresh schema per test
- Controllable clock and fast retry policy from conftest
- AAA pattern (Arrange, Act, Assert)
"""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from src.core.exceptions import ConfigurationError
from src.database.models.progression.progression_ledger import ProgressionLedger
from src.domain.models import LevelDefinition, LevelTable
from src.modules.progression.service import MAX_LEDGER_XP
from src.modules.shared.exceptions import InternalConsistencyError, NotFoundError, ValidationError
from tests.conftest import START_TIME, build_level_definitions, event_names, payloads_for


# ============================================================================
# LEDGER TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestCreateLedger:
    """Test ledger creation."""

    async def test_create_ledger_starts_at_level_one(self, progression_service, published_events):
        """Test that a new ledger holds level 1 and 0 XP."""
        # Act
        ledger = await progression_service.create_ledger("user-9")

        # Assert
        assert ledger == {"user_id": "user-9", "level": 1, "xp": 0, "created": True}
        assert event_names(published_events) == ["progression.ledger_created"]

    async def test_create_ledger_is_idempotent(self, progression_service, user_id):
        """Test that creating twice returns the existing ledger."""
        # Arrange
        await progression_service.apply_experience(user_id, 40, "post")

        # Act
        ledger = await progression_service.create_ledger(user_id)

        # Assert
        assert ledger["created"] is False
        assert ledger["xp"] == 40


# ============================================================================
# EXPERIENCE TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestApplyExperience:
    """Test experience grants."""

    async def test_level_up_from_fresh_ledger(self, progression_service, user_id):
        """Test that 150 XP takes a fresh ledger to level 2."""
        # Act
        result = await progression_service.apply_experience(user_id, 150, "quest")

        # Assert
        assert result["leveled_up"] is True
        assert (result["old_level"], result["new_level"]) == (1, 2)
        assert result["new_xp"] == 150
        assert result["unlocked_rewards"] == [
            {"type": "feature", "key": "profile_customization", "level": 2}
        ]
        assert await progression_service.get_level_for_user(user_id) == 2

    async def test_multi_level_jump_records_history(self, progression_service, user_id):
        """Test that a jump to level 4 writes one history entry per crossed level."""
        # Act
        result = await progression_service.apply_experience(user_id, 600, "import")
        history = await progression_service.get_level_history(user_id)

        # Assert
        assert result["new_level"] == 4
        assert sorted({grant["level"] for grant in result["unlocked_rewards"]}) == [2, 3, 4]
        assert [entry["level"] for entry in history] == [4, 3, 2]
        assert all(entry["reason"] == "import" for entry in history)
        assert all(entry["xp_at_achievement"] == 600 for entry in history)

    async def test_rewards_granted_once_across_grants(self, progression_service, user_id):
        """Test that consecutive grants never repeat a level's rewards."""
        # Act
        first = await progression_service.apply_experience(user_id, 120, "post")
        second = await progression_service.apply_experience(user_id, 200, "post")

        # Assert
        assert {grant["level"] for grant in first["unlocked_rewards"]} == {2}
        assert {grant["level"] for grant in second["unlocked_rewards"]} == {3}

    async def test_xp_accumulates_at_max_level(self, progression_service, user_id):
        """Test that XP keeps growing once the table is exhausted."""
        # Arrange
        await progression_service.apply_experience(user_id, 1_500, "event")

        # Act
        result = await progression_service.apply_experience(user_id, 500, "event")

        # Assert
        assert result["new_level"] == 5
        assert result["leveled_up"] is False
        assert result["new_xp"] == 2_000

    @pytest.mark.parametrize("amount", [0, -10, 2.5, True, None])
    async def test_invalid_amount_rejected(self, progression_service, user_id, amount):
        """Test that non-positive or non-integer XP changes nothing."""
        # Act & Assert
        with pytest.raises(ValidationError):
            await progression_service.apply_experience(user_id, amount, "bad")

        view = await progression_service.get_progression(user_id)
        assert view["xp"] == 0

    async def test_amount_above_grant_cap_rejected(self, progression_service, user_id, config_manager):
        """Test that a single grant is bounded by config."""
        # Arrange
        config_manager.set("progression.limits.max_xp_per_grant", 500)

        # Act & Assert
        with pytest.raises(ValidationError) as exc_info:
            await progression_service.apply_experience(user_id, 501, "import")

        assert exc_info.value.field == "amount"
        assert (await progression_service.apply_experience(user_id, 500, "import"))["new_xp"] == 500

    async def test_oversized_amount_rejected(self, progression_service, user_id):
        """Test that amounts beyond the 64-bit column are input errors."""
        # Act & Assert
        with pytest.raises(ValidationError):
            await progression_service.apply_experience(user_id, 2**63, "import")

        assert (await progression_service.get_progression(user_id))["xp"] == 0

    async def test_ledger_overflow_rejected(self, progression_service, user_id, database):
        """Test that a grant pushing the ledger past the column limit changes nothing."""
        # Arrange
        near_limit = MAX_LEDGER_XP - 10
        async with database.get_transaction() as session:
            await session.execute(
                update(ProgressionLedger).where(ProgressionLedger.user_id == user_id).values(xp=near_limit)
            )

        # Act & Assert
        with pytest.raises(ValidationError) as exc_info:
            await progression_service.apply_experience(user_id, 100, "import")

        assert exc_info.value.field == "amount"
        async with database.get_session() as session:
            ledger = (
                await session.execute(select(ProgressionLedger).where(ProgressionLedger.user_id == user_id))
            ).scalar_one()
        assert ledger.xp == near_limit

    async def test_reason_is_required(self, progression_service, user_id):
        """Test that an empty reason is rejected."""
        # Act & Assert
        with pytest.raises(ValidationError):
            await progression_service.apply_experience(user_id, 10, "  ")

    async def test_unknown_user(self, progression_service, services):
        """Test that a grant needs an existing ledger."""
        # Act & Assert
        with pytest.raises(NotFoundError) as exc_info:
            await progression_service.apply_experience("ghost", 10, "post")

        assert exc_info.value.error_code == "LEDGER_NOT_FOUND"

    async def test_idempotency_key_applies_once(self, progression_service, user_id):
        """Test that a consumed key grants nothing the second time."""
        # Arrange
        key = ("daily_login", "2025-03-03")

        # Act
        first = await progression_service.apply_experience(user_id, 30, "login", idempotency_key=key)
        second = await progression_service.apply_experience(user_id, 30, "login", idempotency_key=key)

        # Assert
        assert first["already_applied"] is False
        assert second["already_applied"] is True
        assert second["new_xp"] == 30
        view = await progression_service.get_progression(user_id)
        assert view["xp"] == 30

    async def test_level_up_event_published_after_commit(
        self, progression_service, user_id, published_events
    ):
        """Test the progression.level_up payload."""
        # Act
        await progression_service.apply_experience(user_id, 300, "quest")

        # Assert
        (payload,) = payloads_for(published_events, "progression.level_up")
        assert payload["user_id"] == user_id
        assert (payload["old_level"], payload["new_level"]) == (1, 3)
        assert payload["tier"] == "Novice"
        assert payload["occurred_at"] is not None

    async def test_no_event_without_level_up(self, progression_service, user_id, published_events):
        """Test that a grant inside a level publishes nothing."""
        # Act
        await progression_service.apply_experience(user_id, 10, "like")

        # Assert
        assert payloads_for(published_events, "progression.level_up") == []


# ============================================================================
# VIEW TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestProgressionView:
    """Test the read side."""

    async def test_get_progression(self, progression_service, user_id):
        """Test the full progression view halfway through level 2."""
        # Arrange
        await progression_service.apply_experience(user_id, 175, "post")

        # Act
        view = await progression_service.get_progression(user_id)

        # Assert
        assert view["level"] == 2
        assert view["xp_in_current_level"] == 75
        assert view["xp_needed_for_next"] == 75
        assert view["progress_percentage"] == 50.0
        assert view["is_max_level"] is False
        assert view["tier_info"]["tier"] == "Beginner"
        assert view["tier_info"]["tier_range"] == "1-2"
        assert view["next_milestone"]["level"] == 3
        assert [reward["level"] for reward in view["upcoming_rewards"]] == [3, 4, 5]
        assert view["recent_levels"][0]["level"] == 2
        assert view["last_level_up_at"] is not None

    async def test_get_progression_at_max_level(self, progression_service, user_id):
        """Test that max level reports 100% and no next level."""
        # Arrange
        await progression_service.apply_experience(user_id, 5_000, "event")

        # Act
        view = await progression_service.get_progression(user_id)

        # Assert
        assert view["is_max_level"] is True
        assert view["progress_percentage"] == 100.0
        assert view["next_level"] is None
        assert view["next_milestone"] is None
        assert view["upcoming_rewards"] == []

    async def test_get_progression_unknown_user(self, progression_service, services):
        """Test the missing ledger."""
        # Act & Assert
        with pytest.raises(NotFoundError):
            await progression_service.get_progression("ghost")

    async def test_history_limit(self, progression_service, user_id):
        """Test the history limit and its upper bound."""
        # Arrange
        await progression_service.apply_experience(user_id, 1_000, "event")

        # Act
        history = await progression_service.get_level_history(user_id, limit=2)

        # Assert
        assert [entry["level"] for entry in history] == [5, 4]
        with pytest.raises(ValidationError):
            await progression_service.get_level_history(user_id, limit=101)


# ============================================================================
# LEVEL CATALOG TESTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.database
class TestLevelCatalog:
    """Test seeding and the cached Level Table."""

    async def test_seed_is_append_only(self, level_catalog):
        """Test that reseeding inserts nothing and keeps stored rows."""
        # Arrange
        changed = build_level_definitions()
        changed[1] = LevelDefinition(level=2, xp_required=180, xp_to_next=70, tier="Beginner")

        # Act
        inserted = await level_catalog.seed_levels(changed)
        table = await level_catalog.get_table()

        # Assert
        assert inserted == 0
        assert table.definition(2).xp_required == 100

    async def test_list_and_get_levels(self, level_catalog):
        """Test the catalog read operations."""
        # Act
        novice = await level_catalog.list_levels(tier="Novice")
        level_three = await level_catalog.get_level(3)

        # Assert
        assert [row["level"] for row in novice] == [3, 4, 5]
        assert level_three["rewards"]["unlocked_features"] == ["post_creation"]
        with pytest.raises(NotFoundError):
            await level_catalog.get_level(6)

    async def test_table_gap_is_internal_consistency_error(self, database, service_kwargs):
        """Test that a catalog with a hole fails loudly instead of defaulting."""
        # Arrange
        from src.core.logging.logger import get_logger
        from src.modules.progression import LevelCatalogService

        catalog = LevelCatalogService(logger=get_logger("tests.gap"), **service_kwargs)
        definitions = [d for d in build_level_definitions() if d.level != 3]
        await catalog.seed_levels(definitions)

        # Act & Assert
        with pytest.raises(InternalConsistencyError) as exc_info:
            await catalog.get_table()

        assert exc_info.value.details["level"] == 3

    async def test_empty_catalog_is_internal_consistency_error(self, database, service_kwargs):
        """Test that an unseeded catalog cannot answer level questions."""
        # Arrange
        from src.core.logging.logger import get_logger
        from src.modules.progression import LevelCatalogService

        catalog = LevelCatalogService(logger=get_logger("tests.empty"), **service_kwargs)

        # Act & Assert
        with pytest.raises(InternalConsistencyError):
            await catalog.get_table()

    def test_default_definitions_from_config(self, level_catalog):
        """Test the configured curve: 100 levels, level 2 at 114 XP."""
        # Act
        definitions = level_catalog.build_default_definitions()

        # Assert
        assert len(definitions) == 100
        assert definitions[0].xp_required == 0
        assert definitions[1].xp_required == 114
        assert definitions[0].tier == "Beginner"

    def test_default_table_caps_at_level_100(self, level_catalog):
        """Test that the shipped catalog ends at level 100 however much XP is held."""
        # Arrange
        table = LevelTable(level_catalog.build_default_definitions())

        # Act
        level = table.resolve_level(10**12)
        progress = table.progress(level, 10**12)

        # Assert
        assert table.max_level == 100
        assert level == 100
        assert progress.is_max_level is True
        assert progress.progress_percentage == 100

    def test_invalid_curve_is_configuration_error(self, level_catalog, config_manager):
        """Test that a curve producing repeated thresholds is rejected."""
        # Arrange
        config_manager.set("progression.curve.growth", 1.0)

        # Act & Assert
        with pytest.raises(ConfigurationError):
            level_catalog.build_default_definitions()

    async def test_history_timestamps_use_service_clock(self, progression_service, user_id, clock):
        """Test that history entries carry the injected time."""
        # Arrange
        clock.advance(hours=2)

        # Act
        await progression_service.apply_experience(user_id, 150, "quest")
        (entry,) = await progression_service.get_level_history(user_id)

        # Assert
        assert entry["achieved_at"].replace(tzinfo=None) == (START_TIME + timedelta(hours=2)).replace(tzinfo=None)
