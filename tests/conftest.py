"""
Pytest Configuration and Fixtures for Questline Tests
=====================================================

Purpose
-------
Centralized test fixtures and configuration for the Questline test suite.
Provides reusable fixtures for the database, the event bus, the engine
services and small, explicit level and quest catalogs.

Responsibilities
----------------
- Point ConfigManager at the repository's YAML config
- SQLite (aiosqlite) database per test for service tests
- Testcontainers PostgreSQL for the concurrency integration tests
- Engine services wired with a controllable clock and a fast retry policy
- Catalog factories for test data
- Mock fixtures for unit tests

Non-Responsibilities
--------------------
- Test implementation (delegated to test files)
- Business logic (delegated to domain models and services)
- Production configuration (test-specific only)

Architecture Notes
------------------
- Unit tests use mocks or a throwaway SQLite file (fast, isolated)
- Integration tests use testcontainers (real PostgreSQL row locks and
  partial unique indexes); they skip when Docker is not available
- Every database test gets a fresh schema
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Generator, List, Optional

import pytest
import pytest_asyncio
from testcontainers.postgres import PostgresContainer

from src.core.config.config import Config
from src.core.config.manager import ConfigManager
from src.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from src.core.database.service import DatabaseService
from src.core.event.bus import EventBus
from src.core.logging.logger import get_logger
from src.domain.models.level import Badge, LevelDefinition, LevelRewards, LevelTable
from src.domain.models.quest import (
    QuestDefinition,
    QuestDifficulty,
    QuestRequirement,
    QuestRewards,
    QuestType,
    RequirementType,
    ResetType,
)
from src.modules.engine import EngineGateway
from src.modules.progression import LevelCatalogService, ProgressionService
from src.modules.quests import QuestCatalogService, QuestService

logger = get_logger(__name__)

PROJECT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

START_TIME = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Configure pytest environment."""
    os.environ["ENVIRONMENT"] = "testing"
    os.environ["LOG_LEVEL"] = "DEBUG"
    # Config validated on import; pick up the test environment
    Config.load()


# ============================================================================
# CLOCK
# ============================================================================


class FrozenClock:
    """
    Controllable UTC clock injected into services.

    Usage:
        clock.advance(hours=25)
    """

    def __init__(self, start: datetime = START_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


# ============================================================================
# CATALOG FACTORIES
# ============================================================================


def build_level_definitions() -> List[LevelDefinition]:
    """
    Five-level table used across the suite.

    Level 1 = 0, 2 = 100, 3 = 250, 4 = 500, 5 = 1000 XP. Beginner covers
    levels 1-2, Novice covers 3-5.
    """
    return [
        LevelDefinition(level=1, xp_required=0, xp_to_next=100, tier="Beginner", title="Beginner 1"),
        LevelDefinition(
            level=2,
            xp_required=100,
            xp_to_next=150,
            tier="Beginner",
            title="Beginner 2",
            rewards=LevelRewards(unlocked_features=("profile_customization",)),
        ),
        LevelDefinition(
            level=3,
            xp_required=250,
            xp_to_next=250,
            tier="Novice",
            tier_color="#10b981",
            title="Novice 3",
            rewards=LevelRewards(unlocked_features=("post_creation",)),
        ),
        LevelDefinition(
            level=4,
            xp_required=500,
            xp_to_next=500,
            tier="Novice",
            tier_color="#10b981",
            title="Novice 4",
            rewards=LevelRewards(badges=(Badge(name="Rising Star", icon="star"),)),
        ),
        LevelDefinition(
            level=5,
            xp_required=1000,
            xp_to_next=0,
            tier="Novice",
            tier_color="#10b981",
            title="Novice 5",
            rewards=LevelRewards(special_abilities=("mentor",)),
        ),
    ]


def build_quest(
    quest_id: str,
    quest_type: QuestType = QuestType.DAILY,
    requirements: Optional[dict] = None,
    *,
    xp: int = 25,
    min_level: int = 0,
    is_active: bool = True,
    is_hidden: bool = False,
    difficulty: QuestDifficulty = QuestDifficulty.EASY,
) -> QuestDefinition:
    """
    Quest definition with the reset behaviour implied by its type.

    Daily and weekly quests reset on their window and allow a re-attempt;
    achievements never reset.
    """
    reset_type = {
        QuestType.DAILY: ResetType.DAILY,
        QuestType.WEEKLY: ResetType.WEEKLY,
        QuestType.ACHIEVEMENT: ResetType.NONE,
    }[quest_type]
    requirements = requirements or {RequirementType.CREATE_POST: 1}
    return QuestDefinition(
        id=quest_id,
        title=quest_id.replace("-", " ").title(),
        quest_type=quest_type,
        requirements=tuple(
            QuestRequirement(type=requirement_type, target=target)
            for requirement_type, target in requirements.items()
        ),
        rewards=QuestRewards(xp=xp),
        reset_type=reset_type,
        difficulty=difficulty,
        min_level=min_level,
        is_active=is_active,
        is_hidden=is_hidden,
        allow_reattempt=reset_type is not ResetType.NONE,
    )


def build_quest_definitions() -> List[QuestDefinition]:
    return [
        build_quest("daily-share", QuestType.DAILY, {RequirementType.CREATE_POST: 1}, xp=25),
        build_quest("daily-likes", QuestType.DAILY, {RequirementType.LIKE_POSTS: 3}, xp=20),
        build_quest(
            "weekly-active",
            QuestType.WEEKLY,
            {RequirementType.CREATE_POST: 3},
            xp=150,
            difficulty=QuestDifficulty.MEDIUM,
        ),
        build_quest("first-step", QuestType.ACHIEVEMENT, {RequirementType.CREATE_POST: 1}, xp=50),
        build_quest(
            "community-builder",
            QuestType.ACHIEVEMENT,
            {RequirementType.FOLLOW_USERS: 2, RequirementType.JOIN_GUILD: 1},
            xp=180,
            min_level=3,
            difficulty=QuestDifficulty.MEDIUM,
        ),
        build_quest("secret-path", QuestType.ACHIEVEMENT, xp=10, is_hidden=True),
        build_quest("retired-quest", QuestType.DAILY, xp=10, is_active=False),
    ]


@pytest.fixture
def level_table() -> LevelTable:
    return LevelTable(build_level_definitions())


# ============================================================================
# CONFIGURATION & EVENTS
# ============================================================================


@pytest.fixture
def config_manager() -> Generator[type[ConfigManager], None, None]:
    """
    ConfigManager loaded from the repository's YAML files.

    Overrides applied with ``ConfigManager.set`` are dropped afterwards.
    """
    ConfigManager.initialize(PROJECT_CONFIG_DIR)
    yield ConfigManager
    ConfigManager.reset()


@pytest.fixture
def event_bus(config_manager) -> EventBus:
    return EventBus(config_manager=config_manager)


RECORDED_EVENTS = (
    "progression.ledger_created",
    "progression.level_up",
    "quest.started",
    "quest.progressed",
    "quest.completed",
    "quest.expired",
    "quest.abandoned",
    "system.alert",
)


def event_recorder(sink: List[tuple], event_name: str):
    """Async listener appending ``(event_name, payload)`` to a shared list."""

    async def record(payload) -> None:
        sink.append((event_name, payload))

    return record


def event_names(recorded: List[tuple]) -> List[str]:
    return [name for name, _ in recorded]


def payloads_for(recorded: List[tuple], event_name: str) -> List[dict]:
    return [payload for name, payload in recorded if name == event_name]


@pytest.fixture
def published_events(event_bus) -> List[tuple]:
    """
    Every engine event published on ``event_bus``, as ``(event_name, payload)``.

    Registered as NORMAL listeners so publishing awaits them.
    """
    captured: List[tuple] = []
    for event_name in RECORDED_EVENTS:
        event_bus.subscribe(
            event_name,
            event_recorder(captured, event_name),
            identifier=f"tests.recorder.{event_name}",
        )
    return captured


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def retry_policy() -> DatabaseRetryPolicy:
    return DatabaseRetryPolicy(
        DatabaseRetryConfig(max_attempts=3, initial_backoff_ms=1, max_backoff_ms=5, jitter_ms=0)
    )


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch, config_manager) -> AsyncGenerator[type[DatabaseService], None]:
    """
    DatabaseService bound to a fresh SQLite file.

    Scope: function (new schema per test)
    """
    monkeypatch.setattr(Config, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'questline.db'}")
    await DatabaseService.shutdown()
    await DatabaseService.initialize()
    await DatabaseService.create_schema()

    yield DatabaseService

    await DatabaseService.shutdown()


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL testcontainer for integration tests.

    Scope: session (container persists across all tests)
    Skips the requesting tests when Docker is not reachable.
    """
    logger.info("Starting PostgreSQL testcontainer...")
    container = PostgresContainer(image="postgres:17-alpine", driver="asyncpg")
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"PostgreSQL testcontainer unavailable: {exc}")

    logger.info("PostgreSQL testcontainer started: %s", container.get_connection_url())

    yield container

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest_asyncio.fixture
async def postgres_database(
    postgres_container: PostgresContainer,
    monkeypatch,
    config_manager,
) -> AsyncGenerator[type[DatabaseService], None]:
    """
    DatabaseService bound to the PostgreSQL testcontainer.

    Scope: function (schema dropped and recreated per test)
    """
    monkeypatch.setattr(Config, "DATABASE_URL", postgres_container.get_connection_url())
    await DatabaseService.shutdown()
    await DatabaseService.initialize()
    await DatabaseService.drop_schema()
    await DatabaseService.create_schema()

    yield DatabaseService

    await DatabaseService.shutdown()


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def service_kwargs(config_manager, event_bus, retry_policy, clock) -> dict:
    return {
        "config_manager": config_manager,
        "event_bus": event_bus,
        "retry_policy": retry_policy,
        "clock": clock,
    }


def _build_services(kwargs: dict) -> dict:
    level_catalog = LevelCatalogService(logger=get_logger("tests.LevelCatalogService"), **kwargs)
    progression = ProgressionService(
        logger=get_logger("tests.ProgressionService"),
        level_catalog=level_catalog,
        **kwargs,
    )
    quest_catalog = QuestCatalogService(logger=get_logger("tests.QuestCatalogService"), **kwargs)
    quests = QuestService(
        logger=get_logger("tests.QuestService"),
        quest_catalog=quest_catalog,
        progression_service=progression,
        **kwargs,
    )
    return {
        "level_catalog": level_catalog,
        "progression": progression,
        "quest_catalog": quest_catalog,
        "quests": quests,
    }


async def _seed(services: dict) -> None:
    await services["level_catalog"].seed_levels(build_level_definitions())
    await services["quest_catalog"].seed_catalog(build_quest_definitions())


@pytest_asyncio.fixture
async def services(database, service_kwargs) -> dict:
    """Engine services on SQLite with the test catalogs seeded."""
    built = _build_services(service_kwargs)
    await _seed(built)
    return built


@pytest_asyncio.fixture
async def postgres_services(postgres_database, service_kwargs) -> dict:
    """Engine services on PostgreSQL with the test catalogs seeded."""
    built = _build_services(service_kwargs)
    await _seed(built)
    return built


@pytest.fixture
def level_catalog(services) -> LevelCatalogService:
    return services["level_catalog"]


@pytest.fixture
def progression_service(services) -> ProgressionService:
    return services["progression"]


@pytest.fixture
def quest_catalog(services) -> QuestCatalogService:
    return services["quest_catalog"]


@pytest.fixture
def quest_service(services) -> QuestService:
    return services["quests"]


@pytest.fixture
def gateway(services, event_bus) -> EngineGateway:
    return EngineGateway(
        progression_service=services["progression"],
        quest_service=services["quests"],
        event_bus=event_bus,
        logger=get_logger("tests.EngineGateway"),
    )


@pytest_asyncio.fixture
async def user_id(progression_service) -> str:
    """A user with a fresh ledger (level 1, 0 XP)."""
    await progression_service.create_ledger("user-1")
    return "user-1"


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests.

    Scope: function
    Uses: Unit tests that need to assert on published events
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock(side_effect=lambda event_name, callback, **kwargs: kwargs.get("identifier"))
    mock_bus.unsubscribe = mocker.MagicMock(return_value=True)
    mock_bus.drain = mocker.AsyncMock(return_value=0)
    return mock_bus


@pytest.fixture
def mock_config_manager(mocker):
    """
    Mock ConfigManager returning the caller's default for every key.

    Scope: function
    Uses: Unit tests that do not depend on YAML values
    """
    mock_config = mocker.MagicMock()
    mock_config.get = mocker.MagicMock(side_effect=lambda key, default=None: default)
    return mock_config


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def assert_domain_event_emitted(domain_model, event_name: str) -> bool:
    """
    Assert that a domain model emitted a specific event.

    Usage:
        state.apply_experience(150, "test", table)
        assert assert_domain_event_emitted(state, "progression.level_up")
    """
    events = domain_model.get_pending_events()
    return any(event.event_name == event_name for event in events)


def get_domain_event_payload(domain_model, event_name: str) -> dict | None:
    """
    Get the payload of a specific domain event.

    Usage:
        state.apply_experience(150, "test", table)
        payload = get_domain_event_payload(state, "progression.level_up")
        assert payload["new_level"] == 2
    """
    events = domain_model.get_pending_events()
    for event in events:
        if event.event_name == event_name:
            return event.payload
    return None
