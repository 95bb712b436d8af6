"""
LevelHistoryEntry - append-only record of every level a user reached.

Schema only. Written in the same transaction as the ledger update that
crossed the level; read by ``ProgressionService.get_level_history()`` and the
``recent_levels`` part of the progression view.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, IdMixin, utc_now


class LevelHistoryEntry(Base, IdMixin):
    __tablename__ = "level_history"
    __table_args__ = (
        Index("ix_level_history_user_achieved", "user_id", "achieved_at"),
        Index("uq_level_history_user_level", "user_id", "level", unique=True),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    level: Mapped[int] = mapped_column(Integer, nullable=False)

    achieved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    xp_at_achievement: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reason: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    def __repr__(self) -> str:
        return f"<LevelHistoryEntry(user_id='{self.user_id}', level={self.level})>"
