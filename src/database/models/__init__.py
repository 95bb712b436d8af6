"""
Database Models Package
========================

All SQLAlchemy ORM models for Questline, organized by domain.

All models are schema-only:
- Use Mapped[] syntax with mapped_column()
- Inherit from the shared mixins (IdMixin, TimestampMixin)
- Optimistic locking via ``version`` columns for mutable per-user rows
- JSON columns (JSONB on PostgreSQL) for structured payloads

Domain Organization:
--------------------
- progression: Level catalog, ledgers, level history, reward claims
- quests: Quest catalog and quest instances

Importing this package registers every table on ``Base.metadata``.
"""

from src.core.database.base import Base

from .progression import (
    LevelDefinitionRecord,
    LevelHistoryEntry,
    ProgressionLedger,
    RewardClaim,
)
from .quests import ACTIVE_INSTANCE_INDEX, QuestDefinitionRecord, QuestInstance

__all__ = [
    "Base",
    # Progression
    "LevelDefinitionRecord",
    "LevelHistoryEntry",
    "ProgressionLedger",
    "RewardClaim",
    # Quests
    "ACTIVE_INSTANCE_INDEX",
    "QuestDefinitionRecord",
    "QuestInstance",
]
