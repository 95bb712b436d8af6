"""
Progression domain model for Questline.

Purpose
-------
Rich domain model for one user's progression ledger. Encapsulates the
experience rules: monotonic XP, level resolution through the Level Table,
multi-level crossing and at-most-once reward grants per level.

This is separate from the database model (``ProgressionLedger``), which is
an anemic row. ``ProgressionService`` loads the row under a lock, builds
this aggregate, applies the change and writes ``to_db_updates()`` back.

Business Rules
--------------
- XP only grows: every grant must be a positive integer
- ``level == table.resolve_level(xp)`` after every grant
- A single grant may cross several levels; the rewards of every crossed
  level are returned, not just those of the final level
- A level present in ``granted_reward_levels`` never grants again

Domain Events
-------------
- progression.level_up: emitted when a grant raises the level
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, List, Optional

from src.domain.models.base import AggregateRoot, DomainValidationError, validate_positive
from src.domain.models.level import LevelDefinition, LevelTable, LevelTableError

if TYPE_CHECKING:
    from src.database.models.progression.progression_ledger import ProgressionLedger


@dataclass(frozen=True)
class ExperienceResult:
    """
    Outcome of one experience grant.

    ``unlocked_rewards`` holds typed grants (``{"type": "feature" | "badge" |
    "ability", ..., "level": n}``) for the newly granted levels only.
    """

    user_id: str
    leveled_up: bool
    old_level: int
    new_level: int
    old_xp: int
    new_xp: int
    xp_applied: int
    unlocked_rewards: List[Dict[str, Any]] = field(default_factory=list)
    crossed_levels: List[LevelDefinition] = field(default_factory=list)
    already_applied: bool = False

    @classmethod
    def noop(cls, user_id: str, level: int, xp: int) -> ExperienceResult:
        """Result for a grant whose idempotency key was already consumed."""
        return cls(
            user_id=user_id,
            leveled_up=False,
            old_level=level,
            new_level=level,
            old_xp=xp,
            new_xp=xp,
            xp_applied=0,
            already_applied=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "leveled_up": self.leveled_up,
            "old_level": self.old_level,
            "new_level": self.new_level,
            "old_xp": self.old_xp,
            "new_xp": self.new_xp,
            "xp_applied": self.xp_applied,
            "unlocked_rewards": list(self.unlocked_rewards),
            "already_applied": self.already_applied,
        }


class ProgressionState(AggregateRoot):
    """
    Progression aggregate root for a single user.

    Examples
    --------
    >>> state = ProgressionState(user_id="u-1", level=1, xp=0)
    >>> result = state.apply_experience(150, "test", table)
    >>> (result.old_level, result.new_level)
    (1, 2)
    """

    def __init__(
        self,
        user_id: str,
        level: int = 1,
        xp: int = 0,
        granted_reward_levels: Optional[Iterable[int]] = None,
        last_level_up_at: Optional[datetime] = None,
    ) -> None:
        super().__init__(user_id)
        if level < 1:
            raise DomainValidationError(f"level must be >= 1, got {level}", field="level")
        if xp < 0:
            raise DomainValidationError("xp cannot be negative", field="xp")

        self._level = level
        self._xp = xp
        self._granted_reward_levels = set(granted_reward_levels or ())
        self._last_level_up_at = last_level_up_at

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    @property
    def user_id(self) -> str:
        return self.id

    @property
    def level(self) -> int:
        return self._level

    @property
    def xp(self) -> int:
        return self._xp

    @property
    def granted_reward_levels(self) -> FrozenSet[int]:
        return frozenset(self._granted_reward_levels)

    @property
    def last_level_up_at(self) -> Optional[datetime]:
        return self._last_level_up_at

    # ========================================================================
    # BUSINESS LOGIC
    # ========================================================================

    def apply_experience(
        self,
        amount: int,
        reason: str,
        table: LevelTable,
        now: Optional[datetime] = None,
    ) -> ExperienceResult:
        """
        Add ``amount`` XP and resolve the new level.

        Raises
        ------
        DomainValidationError
            If ``amount`` is not a positive integer (no state change)
        LevelTableError
            If the table cannot place the new XP total, or places it below
            the level the ledger already holds
        """
        validate_positive(amount, "amount")
        now = now or datetime.now(timezone.utc)

        old_level, old_xp = self._level, self._xp
        new_xp = old_xp + amount
        new_level = table.resolve_level(new_xp)

        if new_level < old_level:
            raise LevelTableError(
                f"ledger level {old_level} is above the level table's answer {new_level} "
                f"for {new_xp} XP",
                level=old_level,
            )

        # Gap check for the resolved level itself
        table.definition(new_level)

        crossed = table.crossed(old_level, new_level)
        unlocked: List[Dict[str, Any]] = []
        for definition in crossed:
            if definition.level in self._granted_reward_levels:
                continue
            unlocked.extend(definition.rewards.to_grants(definition.level))
            self._granted_reward_levels.add(definition.level)

        self._xp = new_xp
        self._level = new_level

        leveled_up = new_level > old_level
        if leveled_up:
            self._last_level_up_at = now
            self.add_domain_event(
                "progression.level_up",
                {
                    "user_id": self.user_id,
                    "old_level": old_level,
                    "new_level": new_level,
                    "new_xp": new_xp,
                    "reason": reason,
                    "tier": table.definition(new_level).tier,
                    "unlocked_rewards": unlocked,
                },
            )

        return ExperienceResult(
            user_id=self.user_id,
            leveled_up=leveled_up,
            old_level=old_level,
            new_level=new_level,
            old_xp=old_xp,
            new_xp=new_xp,
            xp_applied=amount,
            unlocked_rewards=unlocked,
            crossed_levels=crossed,
        )

    # ========================================================================
    # CONVERSION
    # ========================================================================

    @classmethod
    def from_db(cls, ledger: ProgressionLedger) -> ProgressionState:
        return cls(
            user_id=ledger.user_id,
            level=ledger.level,
            xp=ledger.xp,
            granted_reward_levels=ledger.granted_reward_levels or (),
            last_level_up_at=ledger.last_level_up_at,
        )

    def to_db_updates(self) -> Dict[str, Any]:
        return {
            "level": self._level,
            "xp": self._xp,
            "granted_reward_levels": sorted(self._granted_reward_levels),
            "last_level_up_at": self._last_level_up_at,
        }
