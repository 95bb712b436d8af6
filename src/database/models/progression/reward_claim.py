"""
RewardClaim Model - Idempotency Guard for Experience Grants
===========================================================

Purpose
-------
Prevents double-granting by recording every keyed grant with a composite
primary key on (user_id, claim_type, claim_key).

This table serves as an idempotency guard for:
- Quest completion XP (``quest_completion`` / quest instance id)
- Any caller-supplied idempotency key passed to ``apply_experience``

Schema Design
-------------
- Composite primary key prevents duplicate claims at DB level
- Inserted in the same transaction as the ledger update it guards, so the
  claim and the XP either both exist or neither does
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, utc_now


class RewardClaim(Base):
    """
    One consumed idempotency key.

    Composite Primary Key: (user_id, claim_type, claim_key)
    """

    __tablename__ = "reward_claims"
    __table_args__ = (Index("ix_reward_claims_type_claimed", "claim_type", "claimed_at"),)

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    claim_type: Mapped[str] = mapped_column(
        String(50),
        primary_key=True,
        doc="Type of claim (quest_completion, daily_login, ...)",
    )

    claim_key: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        doc="Unique identifier for this claim (instance id, date, ...)",
    )

    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    xp_amount: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<RewardClaim(user_id='{self.user_id}', claim_type='{self.claim_type}', "
            f"claim_key='{self.claim_key}')>"
        )
