"""
QuestInstance - one user's attempt at one quest.

Schema only. State transitions live in ``QuestAttempt``; ``QuestService``
writes the result back inside the transaction that locked the row.

Constraints
-----------
- Partial unique index on ``(user_id, quest_id) WHERE status = 'active'``:
  at most one active attempt per user and quest. Two concurrent starts both
  pass the application check, the second INSERT fails with IntegrityError.
- ``reward_pending`` is set in the completing transaction when the quest
  grants XP and cleared once the grant is recorded; a crash between the two
  steps leaves it set for the next settle pass.
- ``version`` is the mapper's ``version_id_col`` for optimistic checks on
  top of the row lock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, false, text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, IdMixin, JSONType, TimestampMixin, utc_now

ACTIVE_INSTANCE_INDEX = "uq_quest_instances_active_user_quest"


class QuestInstance(Base, IdMixin, TimestampMixin):
    __tablename__ = "quest_instances"
    __table_args__ = (
        Index(
            ACTIVE_INSTANCE_INDEX,
            "user_id",
            "quest_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_quest_instances_user_status", "user_id", "status"),
        Index("ix_quest_instances_expires_at", "expires_at"),
        Index("ix_quest_instances_user_reward_pending", "user_id", "reward_pending"),
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    quest_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("quest_definitions.id", ondelete="RESTRICT"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")

    progress: Mapped[Dict[str, int]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        doc="Requirement type -> running count, keys fixed at start",
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Null for quests without a reset window",
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="When the attempt entered a terminal state",
    )

    reward_pending: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
        doc="Completed but the reward XP grant is not recorded yet",
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
            f"<QuestInstance(id={self.id}, user_id='{self.user_id}', "
            f"quest_id='{self.quest_id}', status='{self.status}')>"
        )
