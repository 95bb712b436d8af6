"""
Progression Service
===================

Purpose
-------
Owns every write to a user's progression ledger: experience grants, level
resolution through the Level Table, reward grants for crossed levels and the
append-only level history.

Domain
------
- Create the per-user ledger (level 1, 0 XP)
- Apply experience atomically, at most once per idempotency key
- Grant the rewards of every crossed level exactly once
- Build the progression view (level, tier, milestones, recent levels)

Concurrency
-----------
One grant is one read-modify-write of one ledger row: the row is read with
``SELECT ... FOR UPDATE`` and written back with the mapper's version check.
A write that still loses a race raises ``StaleDataError``; the retry policy
repeats the whole transaction and, once exhausted, the caller receives a
retryable ``ConflictError``. Events are published only after the commit, so
notification failures can never roll a grant back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from src.core.database.service import DatabaseService
from src.core.logging.logger import LogContext, get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models.progression.level_history import LevelHistoryEntry
from src.database.models.progression.progression_ledger import ProgressionLedger
from src.database.models.progression.reward_claim import RewardClaim
from src.domain.models.base import DomainValidationError
from src.domain.models.level import LevelTable, LevelTableError
from src.domain.models.progression import ExperienceResult, ProgressionState
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.base_service import BaseService
from src.modules.shared.exceptions import (
    InternalConsistencyError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus
    from src.domain.models.base import DomainEvent
    from src.modules.progression.level_catalog import LevelCatalogService

IdempotencyKey = Tuple[str, str]

# Ledger xp is a signed 64-bit column
MAX_LEDGER_XP = 2**63 - 1


# ============================================================================
# Repositories
# ============================================================================


class ProgressionLedgerRepository(BaseRepository[ProgressionLedger]):
    """Repository for ProgressionLedger model."""

    async def find_by_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        for_update: bool = False,
    ) -> Optional[ProgressionLedger]:
        return await self.find_one_where(
            session,
            ProgressionLedger.user_id == user_id,
            for_update=for_update,
        )


class LevelHistoryRepository(BaseRepository[LevelHistoryEntry]):
    """Repository for LevelHistoryEntry model."""

    async def recent_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        limit: int,
    ) -> List[LevelHistoryEntry]:
        return await self.find_many_where(
            session,
            LevelHistoryEntry.user_id == user_id,
            order_by=[LevelHistoryEntry.level.desc()],
            limit=limit,
        )


class RewardClaimRepository(BaseRepository[RewardClaim]):
    """Repository for RewardClaim model."""

    pass


# ============================================================================
# ProgressionService
# ============================================================================


class ProgressionService(BaseService):
    """
    Service for user level and experience.

    Public Methods
    --------------
    - create_ledger() -> Create a user's ledger at level 1 with 0 XP
    - apply_experience() -> Grant XP, resolve level, grant crossed rewards
    - get_progression() -> Progression view for one user
    - get_level_history() -> Levels reached, newest first
    - get_level_for_user() -> Current level (for quest prerequisites)
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        level_catalog: LevelCatalogService,
        **kwargs: Any,
    ) -> None:
        """
        Initialize ProgressionService with required dependencies.

        Args:
            config_manager: Application configuration manager
            event_bus: Event bus for post-commit notifications
            logger: Structured logger instance
            level_catalog: Source of the validated Level Table
        """
        super().__init__(config_manager, event_bus, logger, **kwargs)

        self._catalog = level_catalog
        self._ledger_repo = ProgressionLedgerRepository(
            model_class=ProgressionLedger,
            logger=get_logger(f"{__name__}.ProgressionLedgerRepository"),
        )
        self._history_repo = LevelHistoryRepository(
            model_class=LevelHistoryEntry,
            logger=get_logger(f"{__name__}.LevelHistoryRepository"),
        )
        self._claim_repo = RewardClaimRepository(
            model_class=RewardClaim,
            logger=get_logger(f"{__name__}.RewardClaimRepository"),
        )

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def create_ledger(self, user_id: str) -> Dict[str, Any]:
        """
        Create the user's ledger at level 1 with 0 XP.

        Idempotent: an existing ledger is returned unchanged with
        ``created=False``.
        """
        user_id = InputValidator.validate_user_id(user_id)
        self.log_operation("create_ledger", user_id=user_id)

        async def work() -> Tuple[ProgressionLedger, bool]:
            async with DatabaseService.get_transaction() as session:
                ledger = await self._ledger_repo.find_by_user(session, user_id)
                if ledger is not None:
                    return ledger, False

                ledger = self._ledger_repo.add(
                    session,
                    ProgressionLedger(user_id=user_id, level=1, xp=0, granted_reward_levels=[]),
                )
                await self._ledger_repo.flush(session)
                return ledger, True

        try:
            ledger, created = await self.run_with_retry(
                "progression.create_ledger",
                work,
                resource_type="ProgressionLedger",
                context={"user_id": user_id},
            )
        except IntegrityError:
            # A concurrent create won; theirs is the ledger
            ledger, created = await self.run_with_retry(
                "progression.create_ledger",
                work,
                resource_type="ProgressionLedger",
                context={"user_id": user_id},
            )

        if created:
            await self.emit_event("progression.ledger_created", {"user_id": user_id})

        return {
            "user_id": ledger.user_id,
            "level": ledger.level,
            "xp": ledger.xp,
            "created": created,
        }

    async def apply_experience(
        self,
        user_id: str,
        amount: int,
        reason: str,
        idempotency_key: Optional[IdempotencyKey] = None,
    ) -> Dict[str, Any]:
        """
        Grant ``amount`` XP to a user.

        This is a **write operation** using get_transaction() with a locked
        ledger read and a version-checked write.

        Args:
            user_id: Ledger owner
            amount: Strictly positive integer XP
            reason: Short source label stored in the level history
            idempotency_key: ``(claim_type, claim_key)``; a key that was
                already consumed grants nothing and returns
                ``already_applied=True``

        Returns:
            Dict with user_id, leveled_up, old_level, new_level, old_xp,
            new_xp, xp_applied, unlocked_rewards, already_applied

        Raises:
            ValidationError: ``amount`` is not a positive integer, exceeds the
                per-grant cap, or would overflow the ledger
            NotFoundError: The user has no ledger
            ConflictError: Concurrent writers exhausted the retries (retryable)
            InternalConsistencyError: The Level Table cannot place the XP

        Example:
            >>> result = await service.apply_experience("u-1", 150, "quest")
            >>> result["new_level"]
            2
        """
        user_id = InputValidator.validate_user_id(user_id)
        amount = InputValidator.validate_positive_integer(
            amount,
            "amount",
            max_value=int(self.get_config("progression.limits.max_xp_per_grant", default=1_000_000)),
        )
        reason = InputValidator.validate_string(reason, "reason", max_length=64)
        if idempotency_key is not None:
            claim_type = InputValidator.validate_string(idempotency_key[0], "claim_type", max_length=50)
            claim_key = InputValidator.validate_string(str(idempotency_key[1]), "claim_key", max_length=100)
            idempotency_key = (claim_type, claim_key)

        table = await self._catalog.get_table()

        async def work() -> Tuple[ExperienceResult, List[DomainEvent]]:
            async with DatabaseService.get_transaction() as session:
                return await self._apply_in_session(session, table, user_id, amount, reason, idempotency_key)

        context = {"user_id": user_id, "amount": amount, "reason": reason}
        async with LogContext(user_id=user_id, operation="apply_experience"):
            try:
                result, events = await self.run_with_retry(
                    "progression.apply_experience",
                    work,
                    resource_type="ProgressionLedger",
                    context=context,
                )
            except IntegrityError:
                if idempotency_key is None:
                    raise
                # Another transaction consumed the same key first
                result, events = await self.run_with_retry(
                    "progression.apply_experience",
                    work,
                    resource_type="ProgressionLedger",
                    context=context,
                )

            await self.publish_domain_events(events)

            if result.already_applied:
                self.log.info(
                    "Experience grant skipped: idempotency key already consumed",
                    extra={**context, "claim_type": idempotency_key[0] if idempotency_key else None},
                )
            else:
                self.log.info(
                    "Experience applied",
                    extra={
                        **context,
                        "old_level": result.old_level,
                        "new_level": result.new_level,
                        "new_xp": result.new_xp,
                        "leveled_up": result.leveled_up,
                        "reward_count": len(result.unlocked_rewards),
                    },
                )

        return result.to_dict()

    async def _apply_in_session(
        self,
        session: AsyncSession,
        table: LevelTable,
        user_id: str,
        amount: int,
        reason: str,
        idempotency_key: Optional[IdempotencyKey],
    ) -> Tuple[ExperienceResult, List[DomainEvent]]:
        ledger = await self._ledger_repo.find_by_user(session, user_id, for_update=True)
        if ledger is None:
            raise NotFoundError("Ledger", user_id)

        if idempotency_key is not None:
            claim = await self._claim_repo.get(session, (user_id, *idempotency_key))
            if claim is not None:
                return ExperienceResult.noop(user_id, ledger.level, ledger.xp), []

        if ledger.xp + amount > MAX_LEDGER_XP:
            raise ValidationError("amount", f"Ledger cannot hold more than {MAX_LEDGER_XP} XP")

        now = self.now()
        state = ProgressionState.from_db(ledger)
        try:
            result = state.apply_experience(amount, reason, table, now=now)
        except LevelTableError as exc:
            self.log.critical(
                "Level table cannot place ledger",
                extra={"user_id": user_id, "xp": ledger.xp + amount, "level": exc.level},
            )
            raise InternalConsistencyError(
                "level_table",
                exc.reason,
                {"user_id": user_id, "level": exc.level},
            ) from exc
        except DomainValidationError as exc:
            raise ValidationError(exc.field or "amount", str(exc)) from exc

        for column, value in state.to_db_updates().items():
            setattr(ledger, column, value)

        for definition in result.crossed_levels:
            self._history_repo.add(
                session,
                LevelHistoryEntry(
                    user_id=user_id,
                    level=definition.level,
                    achieved_at=now,
                    xp_at_achievement=result.new_xp,
                    reason=reason,
                ),
            )

        if idempotency_key is not None:
            self._claim_repo.add(
                session,
                RewardClaim(
                    user_id=user_id,
                    claim_type=idempotency_key[0],
                    claim_key=idempotency_key[1],
                    claimed_at=now,
                    xp_amount=amount,
                ),
            )

        await self._ledger_repo.flush(session)
        return result, state.clear_domain_events()

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_progression(self, user_id: str) -> Dict[str, Any]:
        """
        Progression view for one user.

        This is a **read-only** operation using get_session().

        Returns:
            Dict containing:
                - user_id, level, xp, last_level_up_at
                - current_level / next_level: catalog rows (next is None at max)
                - xp_in_current_level, xp_needed_for_next
                - progress_percentage: clamped to [0, 100], 100 at max level
                - is_max_level
                - tier_info: tier, tier_range, tier_progress
                - next_milestone: next level closing a tier or carrying rewards
                - upcoming_rewards: rewarded levels within the next window
                - recent_levels: latest level history entries

        Raises:
            NotFoundError: The user has no ledger
            InternalConsistencyError: The ledger's level is not in the table
        """
        user_id = InputValidator.validate_user_id(user_id)
        table = await self._catalog.get_table()
        recent_limit = int(self.get_config("progression.view.recent_levels_limit", default=5))

        async with DatabaseService.get_session() as session:
            ledger = await self._ledger_repo.find_by_user(session, user_id)
            if ledger is None:
                raise NotFoundError("Ledger", user_id)
            history = await self._history_repo.recent_for_user(session, user_id, recent_limit)

        try:
            progress = table.progress(ledger.level, ledger.xp)
            tier_info = table.tier_info(ledger.level)
        except LevelTableError as exc:
            self.log.critical(
                "Ledger level missing from level table",
                extra={"user_id": user_id, "level": ledger.level},
            )
            raise InternalConsistencyError(
                "level_table", exc.reason, {"user_id": user_id, "level": exc.level}
            ) from exc

        milestone = table.next_milestone(ledger.level)
        upcoming = table.upcoming_rewards(
            ledger.level,
            window=int(self.get_config("progression.view.upcoming_rewards_window", default=10)),
            limit=int(self.get_config("progression.view.upcoming_rewards_limit", default=5)),
        )

        return {
            "user_id": ledger.user_id,
            "level": ledger.level,
            "xp": ledger.xp,
            "last_level_up_at": ledger.last_level_up_at,
            **progress.to_dict(),
            "tier_info": tier_info.to_dict(),
            "next_milestone": milestone.to_dict() if milestone else None,
            "upcoming_rewards": [
                {
                    "level": definition.level,
                    "title": definition.title,
                    "tier": definition.tier,
                    "xp_required": definition.xp_required,
                    "rewards": definition.rewards.to_dict(),
                }
                for definition in upcoming
            ],
            "recent_levels": [self._history_to_dict(entry) for entry in history],
        }

    async def get_level_history(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Levels the user reached, newest first."""
        user_id = InputValidator.validate_user_id(user_id)
        limit = InputValidator.validate_positive_integer(limit, "limit", max_value=100)

        async with DatabaseService.get_session() as session:
            if not await self._ledger_repo.exists(session, ProgressionLedger.user_id == user_id):
                raise NotFoundError("Ledger", user_id)
            history = await self._history_repo.recent_for_user(session, user_id, limit)

        return [self._history_to_dict(entry) for entry in history]

    async def get_level_for_user(self, user_id: str) -> int:
        """
        Current level from the ledger.

        Raises:
            NotFoundError: The user has no ledger
        """
        user_id = InputValidator.validate_user_id(user_id)
        async with DatabaseService.get_session() as session:
            ledger = await self._ledger_repo.find_by_user(session, user_id)
        if ledger is None:
            raise NotFoundError("Ledger", user_id)
        return ledger.level

    @staticmethod
    def _history_to_dict(entry: LevelHistoryEntry) -> Dict[str, Any]:
        return {
            "level": entry.level,
            "achieved_at": entry.achieved_at,
            "xp_at_achievement": entry.xp_at_achievement,
            "reason": entry.reason,
        }
