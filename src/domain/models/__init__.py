"""
Domain models package for Questline.

Purpose
-------
Rich domain models with the progression and quest rules: level resolution,
reward grants, the quest state machine and progress counters.

Design Notes
------------
Domain models are separate from database models:
- Database models (src/database/models/): anemic SQLAlchemy rows
- Domain models (src/domain/models/): rich objects with business logic

Services convert between the two inside a transaction.
"""

from src.domain.models.base import (
    AggregateRoot,
    DomainEvent,
    DomainValidationError,
    Entity,
    validate_positive,
)
from src.domain.models.level import (
    Badge,
    LevelDefinition,
    LevelProgress,
    LevelRewards,
    LevelTable,
    LevelTableError,
    TierInfo,
    TierSpec,
    generate_level_definitions,
    xp_required_for,
)
from src.domain.models.progression import ExperienceResult, ProgressionState
from src.domain.models.quest import (
    QuestAttempt,
    QuestDefinition,
    QuestDifficulty,
    QuestRequirement,
    QuestRewards,
    QuestStatus,
    QuestTransitionError,
    QuestType,
    RequirementType,
    ResetType,
    ResetWindows,
)

__all__ = [
    # Base
    "Entity",
    "AggregateRoot",
    "DomainEvent",
    "DomainValidationError",
    "validate_positive",
    # Levels
    "Badge",
    "LevelRewards",
    "LevelDefinition",
    "LevelProgress",
    "TierInfo",
    "TierSpec",
    "LevelTable",
    "LevelTableError",
    "generate_level_definitions",
    "xp_required_for",
    # Progression
    "ProgressionState",
    "ExperienceResult",
    # Quests
    "QuestType",
    "ResetType",
    "QuestDifficulty",
    "QuestStatus",
    "RequirementType",
    "QuestTransitionError",
    "QuestRequirement",
    "QuestRewards",
    "QuestDefinition",
    "ResetWindows",
    "QuestAttempt",
]
