"""
ProgressionLedger - per-user level and experience.

Schema only. One row per user, created at account creation with level 1 and
0 XP, mutated only by ``ProgressionService`` and never deleted.

Concurrency
-----------
Writers lock the row (``SELECT ... FOR UPDATE``) and ``version`` is the
mapper's ``version_id_col``: every UPDATE carries ``WHERE version = :old``,
so a write based on a stale read raises ``StaleDataError`` instead of
silently losing an update.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, IdMixin, JSONType, TimestampMixin


class ProgressionLedger(Base, IdMixin, TimestampMixin):
    """Level, XP and the levels whose rewards were already granted."""

    __tablename__ = "progression_ledgers"
    __table_args__ = (
        CheckConstraint("level >= 1", name="level_positive"),
        CheckConstraint("xp >= 0", name="xp_non_negative"),
        Index("ix_progression_ledgers_level", "level"),
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
    )

    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    granted_reward_levels: Mapped[List[int]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        doc="Sorted level numbers whose rewards have been granted",
    )

    last_level_up_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Optimistic locking version",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ProgressionLedger(user_id='{self.user_id}', level={self.level}, "
            f"xp={self.xp}, version={self.version})>"
        )
