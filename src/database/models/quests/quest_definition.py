"""
QuestDefinitionRecord - persisted quest catalog entry.

Schema only. Append-only reference data seeded from ``config/quests.yaml``
by ``QuestCatalogService.seed_catalog()``. ``requirements`` is the ordered
list of ``{type, target, description}``; ``rewards`` is ``{xp, coins,
badge, title}``.
"""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, JSONType, TimestampMixin


class QuestDefinitionRecord(Base, TimestampMixin):
    __tablename__ = "quest_definitions"
    __table_args__ = (
        CheckConstraint("min_level >= 0", name="min_level_non_negative"),
        Index("ix_quest_definitions_type_active", "quest_type", "is_active"),
        Index("ix_quest_definitions_reset_type", "reset_type"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    quest_type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="beginner")
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="easy")

    requirements: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    rewards: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    reset_type: Mapped[str] = mapped_column(String(16), nullable=False, default="none")

    min_level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Minimum user level to start (prerequisites.level)",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allow_reattempt: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Completed attempts stop blocking a restart once the reset window elapsed",
    )

    icon: Mapped[str] = mapped_column(String(32), nullable=False, default="target")

    def __repr__(self) -> str:
        return f"<QuestDefinitionRecord(id='{self.id}', quest_type='{self.quest_type}')>"
