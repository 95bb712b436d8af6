"""
Quest Service
=============

Purpose
-------
Runs the quest lifecycle for users: starting attempts, counting progress,
completion, abandonment and lazy expiry, and hands completion rewards to the
Progression Engine.

Domain
------
- Start attempts (catalog, level and restart checks)
- Record progress against one quest, or fan one action out to every active
  attempt that counts it
- Lazy expiry: an overdue attempt is expired on its next touch
- Grant completion XP through ``ProgressionService`` with an idempotency key
- Quest listing, details and reset status

Concurrency
-----------
- Starts: the partial unique index on ``(user_id, quest_id) WHERE status =
  'active'`` rejects a concurrent duplicate; it surfaces as ``ConflictError``
- Progress: the attempt row is locked (``SELECT ... FOR UPDATE``) and written
  back with a version check
- Completion and its XP are two transactions: the completion commits first,
  then XP is applied under the key ``("quest_completion", instance_id)``. If
  the second step fails the completion stays with ``reward_pending`` set,
  the failure is logged, and ``retry_completion_reward()`` or
  ``settle_pending_rewards()`` finishes the grant later.

Staleness
---------
No scheduler expires attempts. An overdue attempt keeps ``status=active`` in
storage until the user next touches it (progress, start, abandon, listing,
details or reset status).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError

from src.core.database.service import DatabaseService
from src.core.exceptions import QuestlineInfrastructureException
from src.core.logging.logger import LogContext, get_logger
from src.core.validation.input_validator import InputValidator
from src.database.models.quests.quest_instance import ACTIVE_INSTANCE_INDEX, QuestInstance
from src.domain.models.base import DomainValidationError
from src.domain.models.quest import (
    QuestAttempt,
    QuestDefinition,
    QuestStatus,
    QuestTransitionError,
    QuestType,
    RequirementType,
    ResetType,
    ResetWindows,
)
from src.modules.shared.base_repository import BaseRepository
from src.modules.shared.base_service import BaseService
from src.modules.shared.exceptions import (
    ConflictError,
    ExpiredError,
    InternalConsistencyError,
    NotFoundError,
    PreconditionFailedError,
    QuestlineDomainException,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus
    from src.domain.models.base import DomainEvent
    from src.modules.progression.service import ProgressionService
    from src.modules.quests.catalog_service import QuestCatalogService

QUEST_FILTERS = ("all", "daily", "weekly", "achievement")
COMPLETION_CLAIM_TYPE = "quest_completion"


# ============================================================================
# Repository
# ============================================================================


class QuestInstanceRepository(BaseRepository[QuestInstance]):
    """Repository for QuestInstance model."""

    async def find_active(
        self,
        session: AsyncSession,
        user_id: str,
        quest_id: str,
        *,
        for_update: bool = False,
    ) -> Optional[QuestInstance]:
        return await self.find_one_where(
            session,
            QuestInstance.user_id == user_id,
            QuestInstance.quest_id == quest_id,
            QuestInstance.status == QuestStatus.ACTIVE.value,
            for_update=for_update,
        )

    async def find_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        quest_id: Optional[str] = None,
        statuses: Optional[Sequence[QuestStatus]] = None,
        for_update: bool = False,
    ) -> List[QuestInstance]:
        """Attempts of one user, newest first."""
        conditions = [QuestInstance.user_id == user_id]
        if quest_id is not None:
            conditions.append(QuestInstance.quest_id == quest_id)
        if statuses:
            conditions.append(QuestInstance.status.in_([status.value for status in statuses]))
        return await self.find_many_where(
            session,
            *conditions,
            for_update=for_update,
            order_by=[QuestInstance.started_at.desc(), QuestInstance.id.desc()],
        )

    async def find_reward_pending(self, session: AsyncSession, user_id: str) -> List[QuestInstance]:
        """Completed attempts whose reward XP is not recorded as granted, oldest first."""
        return await self.find_many_where(
            session,
            QuestInstance.user_id == user_id,
            QuestInstance.status == QuestStatus.COMPLETED.value,
            QuestInstance.reward_pending.is_(True),
            order_by=[QuestInstance.completed_at.asc(), QuestInstance.id.asc()],
        )


@dataclass
class _ProgressOutcome:
    attempt: QuestAttempt
    completed: bool = False
    expired: bool = False
    events: List[DomainEvent] = field(default_factory=list)


# ============================================================================
# QuestService
# ============================================================================


class QuestService(BaseService):
    """
    Service for quest attempts.

    Public Methods
    --------------
    - start_quest() -> Create an active attempt
    - record_progress() -> Count an action against one quest
    - record_action() -> Count an action against every quest requiring it
    - abandon_quest() -> End an active attempt without rewards
    - expire_overdue_quests() -> Expire every overdue attempt of a user
    - list_quests() -> Active, available and completed quests plus stats
    - get_quest_details() -> One quest with the user's latest attempt
    - get_reset_status() -> Next reset per recurring quest
    - retry_completion_reward() -> Finish a completion XP grant that failed
    - settle_pending_rewards() -> Finish every completion XP grant still pending
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        quest_catalog: QuestCatalogService,
        progression_service: ProgressionService,
        **kwargs: Any,
    ) -> None:
        """
        Initialize QuestService with required dependencies.

        Args:
            config_manager: Application configuration manager
            event_bus: Event bus for post-commit notifications
            logger: Structured logger instance
            quest_catalog: Source of quest definitions
            progression_service: Receives completion XP
        """
        super().__init__(config_manager, event_bus, logger, **kwargs)

        self._catalog = quest_catalog
        self._progression = progression_service
        self._instance_repo = QuestInstanceRepository(
            model_class=QuestInstance,
            logger=get_logger(f"{__name__}.QuestInstanceRepository"),
        )

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _reset_windows(self) -> ResetWindows:
        return ResetWindows(
            daily=timedelta(hours=float(self.get_config("quests.reset_windows.daily_hours", default=24))),
            weekly=timedelta(days=float(self.get_config("quests.reset_windows.weekly_days", default=7))),
        )

    async def _resolve_level(self, user_id: str, user_level: Optional[int]) -> int:
        """Cached level from the identity collaborator, else the ledger."""
        if user_level is not None:
            return InputValidator.validate_positive_integer(user_level, "user_level")
        return await self._progression.get_level_for_user(user_id)

    @staticmethod
    def _write_back(instance: QuestInstance, attempt: QuestAttempt) -> None:
        for column, value in attempt.to_db_updates().items():
            setattr(instance, column, value)

    @staticmethod
    def _is_duplicate_active(exc: IntegrityError) -> bool:
        message = str(exc.orig)
        # PostgreSQL names the index, SQLite names the columns
        return ACTIVE_INSTANCE_INDEX in message or "quest_instances.user_id" in message

    def _expire_overdue(
        self,
        instances: Sequence[QuestInstance],
        definitions: Dict[str, QuestDefinition],
        now: datetime,
    ) -> List[DomainEvent]:
        events: List[DomainEvent] = []
        for instance in instances:
            definition = definitions.get(instance.quest_id)
            if definition is None:
                continue
            attempt = QuestAttempt.from_db(instance, definition)
            if attempt.expire_if_overdue(now):
                self._write_back(instance, attempt)
                events.extend(attempt.clear_domain_events())
        return events

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def start_quest(
        self,
        user_id: str,
        quest_id: str,
        user_level: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Start a new attempt.

        This is a **write operation** using get_transaction(). An overdue
        active attempt is expired in the same transaction and does not
        block the new one.

        Args:
            user_id: Acting user
            quest_id: Catalog slug
            user_level: Level cached by the identity collaborator; read from
                the ledger when omitted

        Returns:
            The new attempt (id, status, progress, started_at, expires_at, ...)

        Raises:
            NotFoundError: Unknown quest, or no ledger when user_level is omitted
            PreconditionFailedError: quest_inactive, level_too_low,
                already_active or already_completed
            ConflictError: A concurrent start won (duplicate_active_instance)
        """
        user_id = InputValidator.validate_user_id(user_id)
        quest_id = InputValidator.validate_quest_id(quest_id)
        level = await self._resolve_level(user_id, user_level)
        windows = self._reset_windows()

        self.log_operation("start_quest", user_id=user_id, quest_id=quest_id, level=level)

        async def work() -> Tuple[Dict[str, Any], List[DomainEvent], List[DomainEvent]]:
            async with DatabaseService.get_transaction() as session:
                definition = await self._catalog.load_definition(session, quest_id)
                if not definition.is_active:
                    raise PreconditionFailedError("start_quest", "quest_inactive")
                if level < definition.min_level:
                    raise PreconditionFailedError(
                        "start_quest",
                        "level_too_low",
                        f"Quest '{quest_id}' requires level {definition.min_level}",
                    )

                now = self.now()
                previous = await self._instance_repo.find_for_user(
                    session,
                    user_id,
                    quest_id=quest_id,
                    statuses=[QuestStatus.ACTIVE, QuestStatus.COMPLETED],
                    for_update=True,
                )
                expired_events = self._expire_overdue(previous, {quest_id: definition}, now)
                for instance in previous:
                    attempt = QuestAttempt.from_db(instance, definition)
                    if attempt.blocks_restart(now):
                        reason = "already_active" if attempt.status is QuestStatus.ACTIVE else "already_completed"
                        raise PreconditionFailedError("start_quest", reason)

                # Expired rows must leave the partial index before the insert
                await self._instance_repo.flush(session)

                attempt = QuestAttempt.start(user_id, definition, now, windows)
                instance = self._instance_repo.add(
                    session,
                    QuestInstance(
                        user_id=user_id,
                        quest_id=quest_id,
                        status=attempt.status.value,
                        progress=attempt.progress,
                        started_at=attempt.started_at,
                        expires_at=attempt.expires_at,
                    ),
                )
                await self._instance_repo.flush(session)

                started = QuestAttempt.from_db(instance, definition)
                return started.to_dict(), expired_events, attempt.clear_domain_events()

        try:
            data, expired_events, start_events = await self.run_with_retry(
                "quests.start_quest",
                work,
                resource_type="QuestInstance",
                context={"user_id": user_id, "quest_id": quest_id},
            )
        except IntegrityError as exc:
            if not self._is_duplicate_active(exc):
                raise
            self.log.info(
                "Concurrent duplicate start rejected",
                extra={"user_id": user_id, "quest_id": quest_id},
            )
            raise ConflictError("QuestInstance", "duplicate_active_instance") from exc

        await self.publish_domain_events(expired_events)
        for event in start_events:
            await self.emit_event(
                event.event_name,
                {**event.payload, "instance_id": data["id"], "occurred_at": event.occurred_at},
            )

        self.log.info(
            "Quest started",
            extra={"user_id": user_id, "quest_id": quest_id, "instance_id": data["id"]},
        )
        return data

    async def record_progress(
        self,
        user_id: str,
        quest_id: str,
        requirement_type: str,
        increment_by: int = 1,
    ) -> Dict[str, Any]:
        """
        Count ``increment_by`` occurrences of ``requirement_type``.

        This is a **write operation** using get_transaction() with a locked
        attempt row. On completion the attempt commits first, then the
        reward XP is applied as a separate, idempotent step.

        Returns:
            Dict containing:
                - instance: the attempt after the increment
                - is_completed: whether this increment completed the quest
                - rewards: the quest rewards when completed, else None
                - xp_result: the experience grant result, None if not completed,
                  the quest grants no XP, or the grant failed
                - reward_pending: True if the completion XP still has to be
                  granted through retry_completion_reward()

        Raises:
            ValidationError: Unknown or unrequired requirement type, or a
                non-positive increment
            NotFoundError: Unknown quest
            PreconditionFailedError: No active attempt (not_active)
            ExpiredError: The attempt was past its deadline; it is now expired
        """
        user_id = InputValidator.validate_user_id(user_id)
        quest_id = InputValidator.validate_quest_id(quest_id)
        requirement = InputValidator.validate_enum(requirement_type, "requirement_type", RequirementType)
        increment_by = InputValidator.validate_positive_integer(increment_by, "increment_by")

        async with LogContext(user_id=user_id, quest_id=quest_id, operation="record_progress"):
            outcome = await self._progress_one(user_id, quest_id, requirement, increment_by)
            await self.publish_domain_events(outcome.events)

            if outcome.expired:
                self.log.info(
                    "Progress rejected: quest expired",
                    extra={"user_id": user_id, "quest_id": quest_id, "instance_id": outcome.attempt.id},
                )
                raise ExpiredError(quest_id, outcome.attempt.expires_at)

            xp_result: Optional[Dict[str, Any]] = None
            reward_pending = False
            if outcome.completed:
                xp_result, reward_pending = await self._grant_completion_reward(outcome.attempt)

        definition = outcome.attempt.definition
        return {
            "instance": outcome.attempt.to_dict(),
            "is_completed": outcome.completed,
            "rewards": definition.rewards.to_dict() if outcome.completed else None,
            "xp_result": xp_result,
            "reward_pending": reward_pending,
        }

    async def _progress_one(
        self,
        user_id: str,
        quest_id: str,
        requirement: RequirementType,
        increment_by: int,
    ) -> _ProgressOutcome:
        async def work() -> _ProgressOutcome:
            async with DatabaseService.get_transaction() as session:
                definition = await self._catalog.load_definition(session, quest_id)
                instance = await self._instance_repo.find_active(session, user_id, quest_id, for_update=True)
                if instance is None:
                    raise PreconditionFailedError("record_progress", "not_active")

                now = self.now()
                attempt = QuestAttempt.from_db(instance, definition)

                # Committed as expired; the caller raises after the commit
                if attempt.expire_if_overdue(now):
                    self._write_back(instance, attempt)
                    await self._instance_repo.flush(session)
                    return _ProgressOutcome(attempt, expired=True, events=attempt.clear_domain_events())

                try:
                    completed = attempt.record_progress(requirement, increment_by, now)
                except QuestTransitionError as exc:
                    raise PreconditionFailedError("record_progress", "not_active") from exc
                except DomainValidationError as exc:
                    raise ValidationError(exc.field or "requirement_type", str(exc)) from exc

                self._write_back(instance, attempt)
                await self._instance_repo.flush(session)
                return _ProgressOutcome(attempt, completed=completed, events=attempt.clear_domain_events())

        return await self.run_with_retry(
            "quests.record_progress",
            work,
            resource_type="QuestInstance",
            context={"user_id": user_id, "quest_id": quest_id, "requirement_type": requirement.value},
        )

    async def _grant_completion_reward(self, attempt: QuestAttempt) -> Tuple[Optional[Dict[str, Any]], bool]:
        """Apply completion XP; a failure leaves the completion and its pending flag in place."""
        xp = attempt.definition.rewards.xp
        if xp <= 0:
            return None, False

        try:
            result = await self._progression.apply_experience(
                attempt.user_id,
                xp,
                "quest",
                idempotency_key=(COMPLETION_CLAIM_TYPE, str(attempt.id)),
            )
        except InternalConsistencyError:
            raise
        except (QuestlineDomainException, QuestlineInfrastructureException) as exc:
            self.log.error(
                "Quest completed but reward XP was not applied; retry pending",
                extra={
                    "user_id": attempt.user_id,
                    "quest_id": attempt.definition.id,
                    "instance_id": attempt.id,
                    "xp": xp,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return None, True

        try:
            await self._mark_reward_granted(attempt.user_id, attempt.id)
        except (QuestlineDomainException, QuestlineInfrastructureException) as exc:
            # The claim row already prevents a second grant
            self.log.warning(
                "Reward XP applied but the pending flag was not cleared",
                extra={
                    "user_id": attempt.user_id,
                    "instance_id": attempt.id,
                    "error_type": type(exc).__name__,
                },
            )

        self.log.info(
            "Quest completed",
            extra={
                "user_id": attempt.user_id,
                "quest_id": attempt.definition.id,
                "instance_id": attempt.id,
                "xp": xp,
                "new_level": result["new_level"],
                "already_applied": result["already_applied"],
            },
        )
        return result, False

    async def _mark_reward_granted(self, user_id: str, instance_id: int) -> None:
        async def work() -> None:
            async with DatabaseService.get_transaction() as session:
                instance = await self._instance_repo.find_one_where(
                    session,
                    QuestInstance.id == instance_id,
                    QuestInstance.user_id == user_id,
                    for_update=True,
                )
                if instance is None or not instance.reward_pending:
                    return
                definition = await self._catalog.load_definition(session, instance.quest_id)
                attempt = QuestAttempt.from_db(instance, definition)
                attempt.mark_reward_granted()
                self._write_back(instance, attempt)
                await self._instance_repo.flush(session)

        await self.run_with_retry(
            "quests.mark_reward_granted",
            work,
            resource_type="QuestInstance",
            context={"user_id": user_id, "instance_id": instance_id},
        )

    async def settle_pending_rewards(self, user_id: str) -> Dict[str, List[int]]:
        """
        Grant the reward XP of every completed attempt still flagged pending.

        Covers completions whose second step failed or never ran. Each grant
        uses the completion idempotency key, so an attempt whose XP did land
        is only unflagged.

        Returns:
            Dict with ``settled`` and ``pending`` instance ids
        """
        user_id = InputValidator.validate_user_id(user_id)

        async with DatabaseService.get_session() as session:
            instances = await self._instance_repo.find_reward_pending(session, user_id)
            definitions = await self._catalog.load_definitions(session)

        settled: List[int] = []
        pending: List[int] = []
        for instance in instances:
            definition = definitions.get(instance.quest_id)
            if definition is None:
                pending.append(instance.id)
                continue
            _, still_pending = await self._grant_completion_reward(QuestAttempt.from_db(instance, definition))
            (pending if still_pending else settled).append(instance.id)

        if instances:
            self.log.info(
                "Pending completion rewards settled",
                extra={"user_id": user_id, "settled": len(settled), "pending": len(pending)},
            )
        return {"settled": settled, "pending": pending}

    async def record_action(self, user_id: str, requirement_type: str, amount: int = 1) -> Dict[str, Any]:
        """
        Count one action against every active attempt that requires it.

        Each attempt is updated in its own transaction; an overdue attempt
        is expired and skipped, the others still advance.

        Returns:
            Dict with ``updated`` (attempts after the increment),
            ``completed`` (quest ids completed by this action) and
            ``expired`` (quest ids expired on touch)
        """
        user_id = InputValidator.validate_user_id(user_id)
        requirement = InputValidator.validate_enum(requirement_type, "requirement_type", RequirementType)
        amount = InputValidator.validate_positive_integer(amount, "amount")

        async with DatabaseService.get_session() as session:
            definitions = await self._catalog.load_definitions(session)
            active = await self._instance_repo.find_for_user(
                session, user_id, statuses=[QuestStatus.ACTIVE]
            )

        quest_ids = [
            instance.quest_id
            for instance in active
            if instance.quest_id in definitions and definitions[instance.quest_id].requires(requirement)
        ]

        updated: List[Dict[str, Any]] = []
        completed: List[str] = []
        expired: List[str] = []
        for quest_id in quest_ids:
            try:
                result = await self.record_progress(user_id, quest_id, requirement.value, amount)
            except ExpiredError:
                expired.append(quest_id)
                continue
            except PreconditionFailedError:
                # Finished or abandoned by a concurrent call since the read
                continue

            updated.append(result["instance"])
            if result["is_completed"]:
                completed.append(quest_id)

        self.log.info(
            "Action recorded",
            extra={
                "user_id": user_id,
                "requirement_type": requirement.value,
                "amount": amount,
                "updated": len(updated),
                "completed": len(completed),
                "expired": len(expired),
            },
        )
        return {"updated": updated, "completed": completed, "expired": expired}

    async def abandon_quest(self, user_id: str, quest_id: str) -> Dict[str, Any]:
        """
        End the active attempt without rewards (irreversible).

        Raises:
            PreconditionFailedError: No active attempt (not_active)
            ExpiredError: The attempt was already past its deadline; it is
                now expired instead of abandoned
        """
        user_id = InputValidator.validate_user_id(user_id)
        quest_id = InputValidator.validate_quest_id(quest_id)
        self.log_operation("abandon_quest", user_id=user_id, quest_id=quest_id)

        async def work() -> _ProgressOutcome:
            async with DatabaseService.get_transaction() as session:
                definition = await self._catalog.load_definition(session, quest_id)
                instance = await self._instance_repo.find_active(session, user_id, quest_id, for_update=True)
                if instance is None:
                    raise PreconditionFailedError("abandon_quest", "not_active")

                now = self.now()
                attempt = QuestAttempt.from_db(instance, definition)
                expired = attempt.expire_if_overdue(now)
                if not expired:
                    attempt.abandon(now)

                self._write_back(instance, attempt)
                await self._instance_repo.flush(session)
                return _ProgressOutcome(attempt, expired=expired, events=attempt.clear_domain_events())

        outcome = await self.run_with_retry(
            "quests.abandon_quest",
            work,
            resource_type="QuestInstance",
            context={"user_id": user_id, "quest_id": quest_id},
        )
        await self.publish_domain_events(outcome.events)

        if outcome.expired:
            raise ExpiredError(quest_id, outcome.attempt.expires_at)
        return outcome.attempt.to_dict()

    async def expire_overdue_quests(self, user_id: str) -> int:
        """
        Expire every overdue active attempt of one user.

        Runs on touch; there is no background sweep.

        Returns:
            Number of attempts expired
        """
        user_id = InputValidator.validate_user_id(user_id)

        async def work() -> List[DomainEvent]:
            async with DatabaseService.get_transaction() as session:
                definitions = await self._catalog.load_definitions(session)
                active = await self._instance_repo.find_for_user(
                    session, user_id, statuses=[QuestStatus.ACTIVE], for_update=True
                )
                events = self._expire_overdue(active, definitions, self.now())
                await self._instance_repo.flush(session)
                return events

        events = await self.run_with_retry(
            "quests.expire_overdue",
            work,
            resource_type="QuestInstance",
            context={"user_id": user_id},
        )
        await self.publish_domain_events(events)

        if events:
            self.log.info("Overdue quests expired", extra={"user_id": user_id, "count": len(events)})
        return len(events)

    async def retry_completion_reward(self, user_id: str, instance_id: int) -> Dict[str, Any]:
        """
        Apply the completion XP of a completed attempt.

        Safe to call repeatedly: the idempotency key makes every call after
        the first successful grant return ``already_applied=True``.

        Raises:
            NotFoundError: Unknown attempt for this user
            PreconditionFailedError: The attempt is not completed
        """
        user_id = InputValidator.validate_user_id(user_id)
        instance_id = InputValidator.validate_positive_integer(instance_id, "instance_id")

        async with DatabaseService.get_session() as session:
            instance = await self._instance_repo.get(session, instance_id)
            if instance is None or instance.user_id != user_id:
                raise NotFoundError("QuestInstance", instance_id)
            definition = await self._catalog.load_definition(session, instance.quest_id)

        attempt = QuestAttempt.from_db(instance, definition)
        if not attempt.is_completed:
            raise PreconditionFailedError("retry_completion_reward", "not_completed")
        if definition.rewards.xp <= 0:
            raise PreconditionFailedError("retry_completion_reward", "no_xp_reward")

        self.log_operation("retry_completion_reward", user_id=user_id, instance_id=instance_id)
        result = await self._progression.apply_experience(
            user_id,
            definition.rewards.xp,
            "quest",
            idempotency_key=(COMPLETION_CLAIM_TYPE, str(instance_id)),
        )
        await self._mark_reward_granted(user_id, instance_id)
        return result

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def list_quests(
        self,
        user_id: str,
        filter_type: str = "all",
        user_level: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Quests for one user, grouped by state.

        Overdue attempts are expired and pending completion rewards are
        settled first (listing is a touch).

        Returns:
            Dict containing:
                - active: active attempts with their quest
                - available: startable quests (visible, level met, not blocked)
                - completed: completed attempts with their quest
                - stats: total_quests, active_count, completed_count,
                  daily_quests, available_count
        """
        user_id = InputValidator.validate_user_id(user_id)
        filter_type = InputValidator.validate_choice(filter_type, "filter_type", QUEST_FILTERS)
        level = await self._resolve_level(user_id, user_level)

        await self.expire_overdue_quests(user_id)
        await self.settle_pending_rewards(user_id)
        now = self.now()

        async with DatabaseService.get_session() as session:
            definitions = await self._catalog.load_definitions(session)
            instances = await self._instance_repo.find_for_user(session, user_id)

        wanted = None if filter_type == "all" else QuestType(filter_type)

        def matches(definition: QuestDefinition) -> bool:
            return wanted is None or definition.quest_type is wanted

        visible = sorted(
            (
                definition
                for definition in definitions.values()
                if definition.is_active and not definition.is_hidden and matches(definition)
            ),
            key=QuestDefinition.sort_key,
        )

        attempts = [
            QuestAttempt.from_db(instance, definitions[instance.quest_id])
            for instance in instances
            if instance.quest_id in definitions and matches(definitions[instance.quest_id])
        ]
        blocked = {attempt.definition.id for attempt in attempts if attempt.blocks_restart(now)}

        active = [self._attempt_view(attempt) for attempt in attempts if attempt.status is QuestStatus.ACTIVE]
        completed = [self._attempt_view(attempt) for attempt in attempts if attempt.is_completed]
        available = [
            definition.to_dict()
            for definition in visible
            if definition.min_level <= level and definition.id not in blocked
        ]

        return {
            "active": active,
            "available": available,
            "completed": completed,
            "stats": {
                "total_quests": len(visible),
                "active_count": len(active),
                "completed_count": len(completed),
                "daily_quests": sum(1 for definition in visible if definition.quest_type is QuestType.DAILY),
                "available_count": len(available),
            },
        }

    async def get_quest_details(
        self,
        user_id: str,
        quest_id: str,
        user_level: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        One quest with the user's latest attempt.

        Returns:
            Dict with ``quest``, ``instance`` (latest attempt or None),
            ``progress_percent`` and ``can_start``
        """
        user_id = InputValidator.validate_user_id(user_id)
        quest_id = InputValidator.validate_quest_id(quest_id)
        level = await self._resolve_level(user_id, user_level)

        await self.expire_overdue_quests(user_id)
        now = self.now()

        async with DatabaseService.get_session() as session:
            definition = await self._catalog.load_definition(session, quest_id)
            instances = await self._instance_repo.find_for_user(session, user_id, quest_id=quest_id)

        attempts = [QuestAttempt.from_db(instance, definition) for instance in instances]
        latest = attempts[0] if attempts else None

        can_start = (
            definition.is_active
            and level >= definition.min_level
            and not any(attempt.blocks_restart(now) for attempt in attempts)
        )
        return {
            "quest": definition.to_dict(),
            "instance": latest.to_dict() if latest else None,
            "progress_percent": latest.progress_percent if latest else 0,
            "can_start": can_start,
        }

    async def get_reset_status(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Next reset per recurring (daily or weekly) quest.

        ``next_reset_at`` is when the latest attempt stops blocking a
        restart; None when nothing blocks.
        """
        user_id = InputValidator.validate_user_id(user_id)
        await self.expire_overdue_quests(user_id)
        now = self.now()

        async with DatabaseService.get_session() as session:
            definitions = await self._catalog.load_definitions(session)
            instances = await self._instance_repo.find_for_user(session, user_id)

        latest: Dict[str, QuestAttempt] = {}
        blocked: Dict[str, bool] = {}
        for instance in instances:
            definition = definitions.get(instance.quest_id)
            if definition is None or definition.reset_type is ResetType.NONE:
                continue
            attempt = QuestAttempt.from_db(instance, definition)
            latest.setdefault(definition.id, attempt)
            blocked[definition.id] = blocked.get(definition.id, False) or attempt.blocks_restart(now)

        status: List[Dict[str, Any]] = []
        for definition in sorted(definitions.values(), key=QuestDefinition.sort_key):
            if definition.reset_type is ResetType.NONE or not definition.is_active:
                continue
            attempt = latest.get(definition.id)
            is_blocked = blocked.get(definition.id, False)
            status.append(
                {
                    "quest_id": definition.id,
                    "quest_type": definition.quest_type.value,
                    "reset_type": definition.reset_type.value,
                    "last_status": attempt.status.value if attempt else None,
                    "next_reset_at": attempt.next_reset_at() if attempt and is_blocked else None,
                    "can_start": not is_blocked,
                }
            )
        return status

    @staticmethod
    def _attempt_view(attempt: QuestAttempt) -> Dict[str, Any]:
        return {**attempt.to_dict(), "quest": attempt.definition.to_dict()}
