"""
Level Table domain model for Questline.

Purpose
-------
Pure, in-memory view of the level catalog: which XP total maps to which
level, what each level unlocks, and how far a user is into the current
level and tier. The Level Table is the single source of truth for levels;
nothing else in the engine derives a level from XP.

Responsibilities
----------------
- Hold immutable ``LevelDefinition`` rows (frozen dataclasses)
- Validate the table on construction (dense from level 1, strictly
  increasing ``xp_required``)
- Resolve XP to a level with a bounded lookup (``bisect``), capped at the
  table's last level
- Collect every crossed level for a multi-level jump
- Derive the progression view (level progress, tier progress, milestones)
- Generate the default catalog from the growth curve for seeding

Non-Responsibilities
--------------------
- Loading or persisting definitions (``LevelCatalogService``)
- Ledger mutation (``ProgressionState``)

Curve
-----
Level 1 requires 0 XP so a fresh ledger (level 1, 0 XP) is consistent with
the table. Level ``n >= 2`` requires ``floor(base_xp * growth ** (n - 1))``
cumulative XP; ``xp_to_next`` is the delta to the following level and 0 at
the last level.

Level cap
---------
The cap is the table's last level, not a constant. The shipped catalog is
generated up to ``progression.max_level`` (100), so production tables end at
level 100; ``is_max_level`` and level resolution follow whatever table was
seeded, which lets tests run against short tables.
"""

from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from src.domain.models.base import DomainValidationError

if TYPE_CHECKING:
    from src.database.models.progression.level_definition import LevelDefinitionRecord


class LevelTableError(Exception):
    """
    The level table cannot answer a question it must be able to answer.

    Signals a seeding defect (a missing or out-of-order level). Services
    surface it as an internal consistency failure; it is never defaulted.
    """

    def __init__(self, reason: str, level: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.level = level


# ============================================================================
# VALUE OBJECTS
# ============================================================================


@dataclass(frozen=True)
class Badge:
    name: str
    icon: str = ""
    description: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "icon": self.icon, "description": self.description}


@dataclass(frozen=True)
class LevelRewards:
    """
    Rewards unlocked on reaching a level.

    Attributes
    ----------
    unlocked_features : Tuple[str, ...]
        Feature keys (e.g. "post_creation")
    badges : Tuple[Badge, ...]
        Badges granted at the level
    special_abilities : Tuple[str, ...]
        Ability keys
    """

    unlocked_features: Tuple[str, ...] = ()
    badges: Tuple[Badge, ...] = ()
    special_abilities: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.unlocked_features or self.badges or self.special_abilities)

    def to_grants(self, level: int) -> List[Dict[str, Any]]:
        """Flatten into typed grant records tagged with their level."""
        grants: List[Dict[str, Any]] = []
        for feature in self.unlocked_features:
            grants.append({"type": "feature", "key": feature, "level": level})
        for badge in self.badges:
            grants.append({"type": "badge", **badge.to_dict(), "level": level})
        for ability in self.special_abilities:
            grants.append({"type": "ability", "key": ability, "level": level})
        return grants

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unlocked_features": list(self.unlocked_features),
            "badges": [badge.to_dict() for badge in self.badges],
            "special_abilities": list(self.special_abilities),
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> LevelRewards:
        data = data or {}
        return cls(
            unlocked_features=tuple(data.get("unlocked_features") or ()),
            badges=tuple(
                Badge(
                    name=str(badge["name"]),
                    icon=str(badge.get("icon", "")),
                    description=str(badge.get("description", "")),
                )
                for badge in data.get("badges") or ()
            ),
            special_abilities=tuple(data.get("special_abilities") or ()),
        )


@dataclass(frozen=True)
class LevelDefinition:
    """
    Immutable catalog row for one level.

    Attributes
    ----------
    level : int
        Level number (1-based)
    xp_required : int
        Cumulative XP needed to reach this level
    xp_to_next : int
        XP delta to the following level (0 at the last level)
    tier : str
        Tier name (Beginner ... Divine)
    """

    level: int
    xp_required: int
    xp_to_next: int
    tier: str
    tier_color: str = "#64748b"
    icon: str = ""
    title: str = ""
    description: str = ""
    unlock_message: str = ""
    category: str = "Social"
    rewards: LevelRewards = field(default_factory=LevelRewards)

    def __post_init__(self) -> None:
        if self.level < 1:
            raise DomainValidationError(f"level must be >= 1, got {self.level}", field="level")
        if self.xp_required < 0:
            raise DomainValidationError("xp_required cannot be negative", field="xp_required")
        if self.xp_to_next < 0:
            raise DomainValidationError("xp_to_next cannot be negative", field="xp_to_next")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "xp_required": self.xp_required,
            "xp_to_next": self.xp_to_next,
            "tier": self.tier,
            "tier_color": self.tier_color,
            "icon": self.icon,
            "title": self.title,
            "description": self.description,
            "unlock_message": self.unlock_message,
            "category": self.category,
            "rewards": self.rewards.to_dict(),
        }

    @classmethod
    def from_db(cls, record: LevelDefinitionRecord) -> LevelDefinition:
        return cls(
            level=record.level,
            xp_required=record.xp_required,
            xp_to_next=record.xp_to_next,
            tier=record.tier,
            tier_color=record.tier_color,
            icon=record.icon,
            title=record.title,
            description=record.description,
            unlock_message=record.unlock_message,
            category=record.category,
            rewards=LevelRewards.from_dict(record.rewards),
        )


@dataclass(frozen=True)
class LevelProgress:
    """Read-only position of an XP total inside the level table."""

    current_level: LevelDefinition
    next_level: Optional[LevelDefinition]
    xp: int
    xp_in_current_level: int
    xp_needed_for_next: int
    progress_percentage: float
    is_max_level: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_level": self.current_level.to_dict(),
            "next_level": self.next_level.to_dict() if self.next_level else None,
            "xp": self.xp,
            "xp_in_current_level": self.xp_in_current_level,
            "xp_needed_for_next": self.xp_needed_for_next,
            "progress_percentage": self.progress_percentage,
            "is_max_level": self.is_max_level,
        }


@dataclass(frozen=True)
class TierInfo:
    tier: str
    tier_color: str
    start_level: int
    end_level: int
    tier_progress: float

    @property
    def tier_range(self) -> str:
        return f"{self.start_level}-{self.end_level}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "tier_color": self.tier_color,
            "tier_range": self.tier_range,
            "start_level": self.start_level,
            "end_level": self.end_level,
            "tier_progress": self.tier_progress,
        }


# ============================================================================
# LEVEL TABLE
# ============================================================================


class LevelTable:
    """
    Ordered, validated level catalog.

    The table must be dense from level 1 and ``xp_required`` must be strictly
    increasing; anything else raises ``LevelTableError`` at construction so
    a broken catalog fails loudly instead of mis-levelling users.

    Examples
    --------
    >>> table = LevelTable([
    ...     LevelDefinition(level=1, xp_required=0, xp_to_next=100, tier="Beginner"),
    ...     LevelDefinition(level=2, xp_required=100, xp_to_next=150, tier="Beginner"),
    ...     LevelDefinition(level=3, xp_required=250, xp_to_next=0, tier="Beginner"),
    ... ])
    >>> table.resolve_level(150)
    2
    >>> [d.level for d in table.crossed(1, 3)]
    [2, 3]
    """

    def __init__(self, definitions: Iterable[LevelDefinition]) -> None:
        ordered = sorted(definitions, key=lambda definition: definition.level)
        if not ordered:
            raise LevelTableError("level table is empty")

        for expected, definition in enumerate(ordered, start=1):
            if definition.level != expected:
                raise LevelTableError(
                    f"level table has a gap: expected level {expected}, found {definition.level}",
                    level=expected,
                )

        for previous, current in zip(ordered, ordered[1:]):
            if current.xp_required <= previous.xp_required:
                raise LevelTableError(
                    f"xp_required must strictly increase (level {current.level})",
                    level=current.level,
                )

        self._definitions: Tuple[LevelDefinition, ...] = tuple(ordered)
        self._thresholds: List[int] = [definition.xp_required for definition in ordered]

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self):
        return iter(self._definitions)

    @property
    def max_level(self) -> int:
        return self._definitions[-1].level

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    def definition(self, level: int) -> LevelDefinition:
        """Definition for ``level``; a missing level is a table defect."""
        if 1 <= level <= len(self._definitions):
            return self._definitions[level - 1]
        raise LevelTableError(f"level table has no entry for level {level}", level=level)

    def get(self, level: int) -> Optional[LevelDefinition]:
        if 1 <= level <= len(self._definitions):
            return self._definitions[level - 1]
        return None

    def resolve_level(self, xp: int) -> int:
        """Greatest level whose ``xp_required <= xp``, capped at the last level."""
        index = bisect_right(self._thresholds, xp)
        # XP below level 1's requirement still sits at level 1
        return max(index, 1)

    def crossed(self, old_level: int, new_level: int) -> List[LevelDefinition]:
        """Every definition with ``old_level < level <= new_level``."""
        if new_level <= old_level:
            return []
        return [self.definition(level) for level in range(old_level + 1, new_level + 1)]

    def tier_levels(self, tier: str) -> List[LevelDefinition]:
        return [definition for definition in self._definitions if definition.tier == tier]

    # ========================================================================
    # PROGRESSION VIEW
    # ========================================================================

    def progress(self, level: int, xp: int) -> LevelProgress:
        """
        Position of ``xp`` inside ``level``.

        ``progress_percentage`` is clamped to [0, 100] and exactly 100 at the
        last level regardless of XP beyond the table.
        """
        current = self.definition(level)
        is_max_level = level >= self.max_level
        next_level = None if is_max_level else self.definition(level + 1)

        xp_in_current_level = max(0, xp - current.xp_required)
        if is_max_level:
            return LevelProgress(
                current_level=current,
                next_level=None,
                xp=xp,
                xp_in_current_level=xp_in_current_level,
                xp_needed_for_next=0,
                progress_percentage=100.0,
                is_max_level=True,
            )

        span = current.xp_to_next or (next_level.xp_required - current.xp_required)
        percentage = (xp_in_current_level / span) * 100 if span > 0 else 100.0
        return LevelProgress(
            current_level=current,
            next_level=next_level,
            xp=xp,
            xp_in_current_level=xp_in_current_level,
            xp_needed_for_next=max(0, next_level.xp_required - xp),
            progress_percentage=round(min(max(percentage, 0.0), 100.0), 2),
            is_max_level=False,
        )

    def tier_info(self, level: int) -> TierInfo:
        current = self.definition(level)
        levels = self.tier_levels(current.tier)
        start, end = levels[0].level, levels[-1].level
        return TierInfo(
            tier=current.tier,
            tier_color=current.tier_color,
            start_level=start,
            end_level=end,
            tier_progress=round((level - start + 1) / (end - start + 1) * 100, 2),
        )

    def next_milestone(self, level: int) -> Optional[LevelDefinition]:
        """First later level that closes a tier or carries rewards."""
        for definition in self._definitions[level:]:
            closes_tier = (
                definition.level == self.max_level
                or self._definitions[definition.level].tier != definition.tier
            )
            if closes_tier or not definition.rewards.is_empty:
                return definition
        return None

    def upcoming_rewards(self, level: int, window: int = 10, limit: int = 5) -> List[LevelDefinition]:
        """Levels in ``(level, level + window]`` that carry rewards."""
        upcoming = [
            definition
            for definition in self._definitions[level : level + window]
            if not definition.rewards.is_empty
        ]
        return upcoming[:limit]


# ============================================================================
# CATALOG GENERATION
# ============================================================================


@dataclass(frozen=True)
class TierSpec:
    """One band of consecutive levels sharing a name, colour and icon."""

    name: str
    color: str
    icon: str
    category: str
    description: str = "Level {level}"
    unlock_message: str = "Level {level} reached!"
    badge_description: str = "Completed level {level} of the {tier} tier"


def xp_required_for(level: int, base_xp: int, growth: float) -> int:
    """Cumulative XP for ``level``; level 1 is free."""
    if level <= 1:
        return 0
    return math.floor(base_xp * growth ** (level - 1))


def generate_level_definitions(
    *,
    max_level: int,
    base_xp: int,
    growth: float,
    tiers: Sequence[TierSpec],
    levels_per_tier: int,
    features: Mapping[int, Sequence[str]],
    abilities: Optional[Mapping[int, Sequence[str]]] = None,
) -> List[LevelDefinition]:
    """
    Build the default level catalog from the growth curve.

    A badge named ``"{tier} Master"`` is attached to every level that closes
    a tier band.
    """
    if not tiers:
        raise DomainValidationError("at least one tier is required", field="tiers")

    abilities = abilities or {}
    definitions: List[LevelDefinition] = []
    for level in range(1, max_level + 1):
        tier = tiers[min((level - 1) // levels_per_tier, len(tiers) - 1)]
        xp_required = xp_required_for(level, base_xp, growth)
        xp_to_next = (
            xp_required_for(level + 1, base_xp, growth) - xp_required if level < max_level else 0
        )

        badges: Tuple[Badge, ...] = ()
        if level % levels_per_tier == 0:
            badges = (
                Badge(
                    name=f"{tier.name} Master",
                    icon=tier.icon,
                    description=tier.badge_description.format(level=level, tier=tier.name),
                ),
            )

        definitions.append(
            LevelDefinition(
                level=level,
                xp_required=xp_required,
                xp_to_next=xp_to_next,
                tier=tier.name,
                tier_color=tier.color,
                icon=tier.icon,
                title=f"{tier.name} {level}",
                description=tier.description.format(level=level, tier=tier.name),
                unlock_message=tier.unlock_message.format(level=level, tier=tier.name),
                category=tier.category,
                rewards=LevelRewards(
                    unlocked_features=tuple(features.get(level, ())),
                    badges=badges,
                    special_abilities=tuple(abilities.get(level, ())),
                ),
            )
        )
    return definitions
