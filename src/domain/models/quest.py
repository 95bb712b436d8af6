"""
Quest domain model for Questline.

Purpose
-------
Rich domain model for quest definitions and for one user's attempt at a
quest. Encapsulates the quest state machine, the fixed-key progress mapping
and the completion rule.

This is separate from the database models (``QuestDefinitionRecord``,
``QuestInstance``). ``QuestService`` converts rows into these objects, calls
their business methods and writes the result back inside one transaction.

Business Rules
--------------
- Progress keys are fixed at start from the quest's requirement list
- Counters only grow; increments must be positive integers
- Completion is the conjunction over all requirements, evaluated after the
  increment
- ``active -> completed | expired | abandoned``; terminal states absorb
- An overdue attempt expires on its next touch (lazy expiry)

Domain Events
-------------
- quest.started: attempt created
- quest.progressed: counter incremented without completing
- quest.completed: all requirements met
- quest.expired: deadline passed before completion
- quest.abandoned: explicit user action
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

from src.core.database.base import as_utc
from src.domain.models.base import AggregateRoot, DomainValidationError, validate_positive

if TYPE_CHECKING:
    from src.database.models.quests.quest_definition import QuestDefinitionRecord
    from src.database.models.quests.quest_instance import QuestInstance


# ============================================================================
# ENUMERATIONS
# ============================================================================


class QuestType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    ACHIEVEMENT = "achievement"


class ResetType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    NONE = "none"


class QuestDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    LEGENDARY = "legendary"

    @property
    def rank(self) -> int:
        return list(QuestDifficulty).index(self)


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not QuestStatus.ACTIVE


class RequirementType(str, Enum):
    """Countable user actions a quest can require."""

    CREATE_POST = "create_post"
    LIKE_POSTS = "like_posts"
    COMMENT_POSTS = "comment_posts"
    FOLLOW_USERS = "follow_users"
    VISIT_REGIONS = "visit_regions"
    LEVEL_UP = "level_up"
    SHARE_POST = "share_post"
    JOIN_GUILD = "join_guild"
    COMPLETE_PROFILE = "complete_profile"
    UPLOAD_AVATAR = "upload_avatar"
    LOGIN_DAYS = "login_days"
    INTERACT_WITH_CLASS = "interact_with_class"
    HELP_NEWBIE = "help_newbie"
    EXPLORE_FEATURE = "explore_feature"


class QuestTransitionError(DomainValidationError):
    """A state transition was requested from a state that does not allow it."""

    def __init__(self, action: str, status: QuestStatus):
        super().__init__(f"Cannot {action} a quest that is {status.value}", field="status")
        self.action = action
        self.status = status


# ============================================================================
# VALUE OBJECTS
# ============================================================================


@dataclass(frozen=True)
class QuestRequirement:
    type: RequirementType
    target: int
    description: str = ""

    def __post_init__(self) -> None:
        validate_positive(self.target, "target")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "target": self.target, "description": self.description}


@dataclass(frozen=True)
class QuestRewards:
    xp: int = 0
    coins: int = 0
    badge: Optional[str] = None
    title: Optional[str] = None

    def __post_init__(self) -> None:
        if self.xp < 0 or self.coins < 0:
            raise DomainValidationError("quest rewards cannot be negative", field="rewards")

    def to_dict(self) -> Dict[str, Any]:
        return {"xp": self.xp, "coins": self.coins, "badge": self.badge, "title": self.title}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> QuestRewards:
        data = data or {}
        return cls(
            xp=int(data.get("xp", 0)),
            coins=int(data.get("coins", 0)),
            badge=data.get("badge"),
            title=data.get("title"),
        )


@dataclass(frozen=True)
class QuestDefinition:
    """
    Immutable quest catalog entry.

    ``allow_reattempt`` is the explicit catalog permission to start a
    completed recurring quest again once its reset window has elapsed.
    """

    id: str
    title: str
    quest_type: QuestType
    requirements: Tuple[QuestRequirement, ...]
    rewards: QuestRewards
    reset_type: ResetType = ResetType.NONE
    description: str = ""
    category: str = "beginner"
    difficulty: QuestDifficulty = QuestDifficulty.EASY
    min_level: int = 0
    is_active: bool = True
    is_hidden: bool = False
    allow_reattempt: bool = False
    icon: str = "target"

    def __post_init__(self) -> None:
        if not self.requirements:
            raise DomainValidationError(
                f"quest '{self.id}' must have at least one requirement", field="requirements"
            )
        types = [requirement.type for requirement in self.requirements]
        if len(set(types)) != len(types):
            raise DomainValidationError(
                f"quest '{self.id}' repeats a requirement type", field="requirements"
            )
        if self.min_level < 0:
            raise DomainValidationError("min_level cannot be negative", field="min_level")

    @property
    def requirement_types(self) -> Tuple[RequirementType, ...]:
        return tuple(requirement.type for requirement in self.requirements)

    def requires(self, requirement_type: RequirementType) -> bool:
        return requirement_type in self.requirement_types

    def initial_progress(self) -> Dict[str, int]:
        """Zeroed counters, one per required action."""
        return {requirement.type.value: 0 for requirement in self.requirements}

    def is_complete(self, progress: Mapping[str, int]) -> bool:
        return all(
            progress.get(requirement.type.value, 0) >= requirement.target
            for requirement in self.requirements
        )

    def progress_percent(self, progress: Mapping[str, int]) -> int:
        """Mean over requirements of the capped per-requirement percentage."""
        total = sum(
            min(progress.get(requirement.type.value, 0) / requirement.target * 100, 100)
            for requirement in self.requirements
        )
        return round(total / len(self.requirements))

    def compute_expiry(self, started_at: datetime, windows: ResetWindows) -> Optional[datetime]:
        return windows.expiry_for(self.reset_type, started_at)

    def sort_key(self) -> Tuple[int, int, str]:
        return (self.difficulty.rank, self.rewards.xp, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "quest_type": self.quest_type.value,
            "category": self.category,
            "difficulty": self.difficulty.value,
            "requirements": [requirement.to_dict() for requirement in self.requirements],
            "rewards": self.rewards.to_dict(),
            "reset_type": self.reset_type.value,
            "min_level": self.min_level,
            "is_active": self.is_active,
            "is_hidden": self.is_hidden,
            "allow_reattempt": self.allow_reattempt,
            "icon": self.icon,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QuestDefinition:
        """Build from catalog data (YAML entry or stored row columns)."""
        try:
            return cls(
                id=str(data["id"]),
                title=str(data["title"]),
                description=str(data.get("description", "")),
                quest_type=QuestType(data.get("quest_type", data.get("type"))),
                category=str(data.get("category", "beginner")),
                difficulty=QuestDifficulty(data.get("difficulty", "easy")),
                requirements=tuple(
                    QuestRequirement(
                        type=RequirementType(requirement["type"]),
                        target=int(requirement["target"]),
                        description=str(requirement.get("description", "")),
                    )
                    for requirement in data.get("requirements") or ()
                ),
                rewards=QuestRewards.from_dict(data.get("rewards")),
                reset_type=ResetType(data.get("reset_type", "none")),
                min_level=int(data.get("min_level", 0)),
                is_active=bool(data.get("is_active", True)),
                is_hidden=bool(data.get("is_hidden", False)),
                allow_reattempt=bool(data.get("allow_reattempt", False)),
                icon=str(data.get("icon", "target")),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise DomainValidationError(
                f"invalid quest definition '{data.get('id')}': {exc}", field="quest"
            ) from exc

    @classmethod
    def from_db(cls, record: QuestDefinitionRecord) -> QuestDefinition:
        return cls.from_dict(
            {
                "id": record.id,
                "title": record.title,
                "description": record.description,
                "quest_type": record.quest_type,
                "category": record.category,
                "difficulty": record.difficulty,
                "requirements": record.requirements,
                "rewards": record.rewards,
                "reset_type": record.reset_type,
                "min_level": record.min_level,
                "is_active": record.is_active,
                "is_hidden": record.is_hidden,
                "allow_reattempt": record.allow_reattempt,
                "icon": record.icon,
            }
        )


@dataclass(frozen=True)
class ResetWindows:
    """Length of the daily and weekly windows."""

    daily: timedelta = field(default_factory=lambda: timedelta(hours=24))
    weekly: timedelta = field(default_factory=lambda: timedelta(days=7))

    def expiry_for(self, reset_type: ResetType, started_at: datetime) -> Optional[datetime]:
        if reset_type is ResetType.DAILY:
            return started_at + self.daily
        if reset_type is ResetType.WEEKLY:
            return started_at + self.weekly
        return None


# ============================================================================
# QUEST ATTEMPT AGGREGATE
# ============================================================================


class QuestAttempt(AggregateRoot):
    """
    One user's attempt at one quest.

    All transitions go through this aggregate so the state machine is
    enforced in one place:

    - ``record_progress`` / ``abandon`` require ``active``
    - ``expire_if_overdue`` moves an overdue ``active`` attempt to ``expired``
    - terminal states reject every further transition
    - a completion with reward XP stays ``reward_pending`` until
      ``mark_reward_granted`` records the grant
    """

    def __init__(
        self,
        instance_id: Optional[int],
        user_id: str,
        definition: QuestDefinition,
        status: QuestStatus,
        progress: Mapping[str, int],
        started_at: datetime,
        expires_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        ended_at: Optional[datetime] = None,
        reward_pending: bool = False,
    ) -> None:
        super().__init__(instance_id)
        self._user_id = user_id
        self._definition = definition
        self._status = status
        self._progress: Dict[str, int] = dict(progress)
        self._started_at = started_at
        self._expires_at = expires_at
        self._completed_at = completed_at
        self._ended_at = ended_at
        self._reward_pending = reward_pending

    @classmethod
    def start(
        cls,
        user_id: str,
        definition: QuestDefinition,
        now: datetime,
        windows: ResetWindows,
    ) -> QuestAttempt:
        attempt = cls(
            instance_id=None,
            user_id=user_id,
            definition=definition,
            status=QuestStatus.ACTIVE,
            progress=definition.initial_progress(),
            started_at=now,
            expires_at=definition.compute_expiry(now, windows),
        )
        attempt.add_domain_event(
            "quest.started",
            {"user_id": user_id, "quest_id": definition.id, "expires_at": attempt.expires_at},
        )
        return attempt

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def definition(self) -> QuestDefinition:
        return self._definition

    @property
    def status(self) -> QuestStatus:
        return self._status

    @property
    def progress(self) -> Dict[str, int]:
        return dict(self._progress)

    @property
    def started_at(self) -> datetime:
        return self._started_at

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    @property
    def completed_at(self) -> Optional[datetime]:
        return self._completed_at

    @property
    def ended_at(self) -> Optional[datetime]:
        return self._ended_at

    @property
    def is_completed(self) -> bool:
        return self._status is QuestStatus.COMPLETED

    @property
    def reward_pending(self) -> bool:
        """Completed, but the reward XP has not been recorded as granted."""
        return self._reward_pending

    @property
    def progress_percent(self) -> int:
        return self._definition.progress_percent(self._progress)

    def is_overdue(self, now: datetime) -> bool:
        return self._expires_at is not None and now > self._expires_at

    # ========================================================================
    # BUSINESS LOGIC - TRANSITIONS
    # ========================================================================

    def expire_if_overdue(self, now: datetime) -> bool:
        """Transition an overdue active attempt to ``expired``; True if it did."""
        if self._status is not QuestStatus.ACTIVE or not self.is_overdue(now):
            return False
        self._status = QuestStatus.EXPIRED
        self._ended_at = now
        self.add_domain_event(
            "quest.expired",
            {
                "user_id": self._user_id,
                "quest_id": self._definition.id,
                "instance_id": self.id,
                "expired_at": self._expires_at,
            },
        )
        return True

    def record_progress(self, requirement_type: RequirementType, increment_by: int, now: datetime) -> bool:
        """
        Increment one counter and evaluate completion.

        The caller expires overdue attempts first; this method only accepts
        an active, non-overdue attempt.

        Returns
        -------
        bool
            True if this increment completed the quest
        """
        if self._status is not QuestStatus.ACTIVE:
            raise QuestTransitionError("record progress on", self._status)
        validate_positive(increment_by, "increment_by")
        if not self._definition.requires(requirement_type):
            raise DomainValidationError(
                f"quest '{self._definition.id}' does not require '{requirement_type.value}'",
                field="requirement_type",
            )

        key = requirement_type.value
        self._progress[key] = self._progress.get(key, 0) + increment_by

        if self._definition.is_complete(self._progress):
            self._status = QuestStatus.COMPLETED
            self._completed_at = now
            self._ended_at = now
            self._reward_pending = self._definition.rewards.xp > 0
            self.add_domain_event(
                "quest.completed",
                {
                    "user_id": self._user_id,
                    "quest_id": self._definition.id,
                    "instance_id": self.id,
                    "title": self._definition.title,
                    "rewards": self._definition.rewards.to_dict(),
                },
            )
            return True

        self.add_domain_event(
            "quest.progressed",
            {
                "user_id": self._user_id,
                "quest_id": self._definition.id,
                "instance_id": self.id,
                "requirement_type": key,
                "count": self._progress[key],
            },
        )
        return False

    def mark_reward_granted(self) -> None:
        if self._status is not QuestStatus.COMPLETED:
            raise QuestTransitionError("grant the reward of", self._status)
        self._reward_pending = False

    def abandon(self, now: datetime) -> None:
        if self._status is not QuestStatus.ACTIVE:
            raise QuestTransitionError("abandon", self._status)
        self._status = QuestStatus.ABANDONED
        self._ended_at = now
        self.add_domain_event(
            "quest.abandoned",
            {"user_id": self._user_id, "quest_id": self._definition.id, "instance_id": self.id},
        )

    # ========================================================================
    # RESTART RULES
    # ========================================================================

    def next_reset_at(self) -> Optional[datetime]:
        """When a completed recurring attempt stops blocking a restart."""
        if self._definition.reset_type is ResetType.NONE:
            return None
        return self._expires_at

    def blocks_restart(self, now: datetime) -> bool:
        """
        Whether this attempt prevents starting the quest again.

        Active attempts block until they expire. Completed attempts block for
        good unless the catalog allows a re-attempt and the reset window has
        elapsed. Expired and abandoned attempts never block.
        """
        if self._status is QuestStatus.ACTIVE:
            return not self.is_overdue(now)
        if self._status is QuestStatus.COMPLETED:
            reset_at = self.next_reset_at()
            if not self._definition.allow_reattempt or reset_at is None:
                return True
            return now < reset_at
        return False

    # ========================================================================
    # CONVERSION
    # ========================================================================

    @classmethod
    def from_db(cls, instance: QuestInstance, definition: QuestDefinition) -> QuestAttempt:
        return cls(
            instance_id=instance.id,
            user_id=instance.user_id,
            definition=definition,
            status=QuestStatus(instance.status),
            progress=instance.progress or definition.initial_progress(),
            started_at=as_utc(instance.started_at),
            expires_at=as_utc(instance.expires_at),
            completed_at=as_utc(instance.completed_at),
            ended_at=as_utc(instance.ended_at),
            reward_pending=bool(instance.reward_pending),
        )

    def to_db_updates(self) -> Dict[str, Any]:
        return {
            "status": self._status.value,
            "progress": dict(self._progress),
            "completed_at": self._completed_at,
            "ended_at": self._ended_at,
            "reward_pending": self._reward_pending,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self._user_id,
            "quest_id": self._definition.id,
            "status": self._status.value,
            "progress": dict(self._progress),
            "progress_percent": self.progress_percent,
            "started_at": self._started_at,
            "expires_at": self._expires_at,
            "completed_at": self._completed_at,
            "ended_at": self._ended_at,
            "reward_pending": self._reward_pending,
        }
