"""
LevelDefinitionRecord - persisted Level Table row.

Schema only. Append-only reference data seeded at deployment time by
``LevelCatalogService.seed_levels()``; read at runtime through the cached
``LevelTable``.
"""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import BigInteger, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, JSONType, TimestampMixin


class LevelDefinitionRecord(Base, TimestampMixin):
    """
    One level of the catalog.

    ``rewards`` holds ``{unlocked_features: [str], badges: [{name, icon,
    description}], special_abilities: [str]}``.
    """

    __tablename__ = "level_definitions"
    __table_args__ = (
        CheckConstraint("level >= 1", name="level_positive"),
        CheckConstraint("xp_required >= 0", name="xp_required_non_negative"),
        CheckConstraint("xp_to_next >= 0", name="xp_to_next_non_negative"),
        Index("ix_level_definitions_tier", "tier"),
    )

    level: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=False,
    )

    xp_required: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
        doc="Cumulative XP needed to reach this level",
    )

    xp_to_next: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        doc="XP delta to the following level (0 at the last level)",
    )

    tier: Mapped[str] = mapped_column(String(32), nullable=False)
    tier_color: Mapped[str] = mapped_column(String(16), nullable=False, default="#64748b")
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    title: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    unlock_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="Social")

    rewards: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return f"<LevelDefinitionRecord(level={self.level}, xp_required={self.xp_required}, tier='{self.tier}')>"
