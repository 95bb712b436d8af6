"""
Engine Gateway
==============

Purpose
-------
Transport-independent boundary of the progression and quest engines. Every
operation returns an ``OperationResult`` so callers branch on ``ok`` instead
of on the exception hierarchy.

Responsibilities
----------------
- Route the external operations to ``ProgressionService`` and ``QuestService``
- Recover domain and infrastructure exceptions into ``OperationResult.error``
  formatted by ``ErrorResponseService``
- Escalate ``InternalConsistencyError``: log at CRITICAL, publish a
  ``system.alert`` event, re-raise

Non-Responsibilities
--------------------
- Business rules (services)
- Transport concerns (HTTP, bot commands, queues)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

from src.core.exceptions import ErrorSeverity, QuestlineInfrastructureException
from src.core.logging.logger import LogContext
from src.core.services.error_response_service import ErrorResponseService
from src.modules.shared.exceptions import InternalConsistencyError, QuestlineDomainException

if TYPE_CHECKING:
    from logging import Logger

    from src.core.event.bus import EventBus
    from src.modules.progression.service import ProgressionService
    from src.modules.quests.service import QuestService

ALERT_EVENT = "system.alert"

_LOG_LEVELS = {
    ErrorSeverity.DEBUG: logging.DEBUG,
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of one engine operation.

    Exactly one of ``data`` / ``error`` is set. ``error`` carries title,
    description, help_text, severity, error_code, is_retryable and details.
    """

    ok: bool
    data: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: Any) -> OperationResult:
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: Dict[str, Any]) -> OperationResult:
        return cls(ok=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "data": self.data, "error": self.error}


class EngineGateway:
    """
    External interface of the engines.

    Usage:
        gateway = container.gateway
        result = await gateway.record_progress("u-1", "daily-share", "create_post")
        if not result.ok:
            show(result.error["description"])
    """

    def __init__(
        self,
        progression_service: ProgressionService,
        quest_service: QuestService,
        event_bus: EventBus,
        logger: Logger,
        error_service: Optional[ErrorResponseService] = None,
    ) -> None:
        self._progression = progression_service
        self._quests = quest_service
        self._events = event_bus
        self.log = logger
        self._errors = error_service or ErrorResponseService()

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        **context: Any,
    ) -> OperationResult:
        async with LogContext(operation=operation, **context):
            try:
                return OperationResult.success(await call())
            except InternalConsistencyError as exc:
                self.log.critical(
                    "Internal consistency violation",
                    extra={
                        "operation": operation,
                        "failed_component": exc.component,
                        "reason": exc.reason,
                        "details": dict(exc.context),
                        **context,
                    },
                )
                await self._events.publish(
                    ALERT_EVENT,
                    {
                        "operation": operation,
                        "component": exc.component,
                        "reason": exc.reason,
                        "details": dict(exc.context),
                    },
                )
                raise
            except (QuestlineDomainException, QuestlineInfrastructureException) as exc:
                self.log.log(
                    _LOG_LEVELS.get(exc.severity, logging.ERROR),
                    f"Operation {operation} failed: {exc.error_code}",
                    extra={
                        "operation": operation,
                        "error_code": exc.error_code,
                        "is_retryable": exc.is_retryable,
                        **context,
                    },
                )
                return OperationResult.failure(self._errors.format_error(exc))

    # ========================================================================
    # PROGRESSION
    # ========================================================================

    async def apply_experience(self, user_id: str, amount: int, reason: str) -> OperationResult:
        return await self._run(
            "apply_experience",
            lambda: self._progression.apply_experience(user_id, amount, reason),
            user_id=user_id,
        )

    async def get_progression(self, user_id: str) -> OperationResult:
        return await self._run(
            "get_progression",
            lambda: self._progression.get_progression(user_id),
            user_id=user_id,
        )

    async def get_level_history(self, user_id: str, limit: int = 20) -> OperationResult:
        return await self._run(
            "get_level_history",
            lambda: self._progression.get_level_history(user_id, limit),
            user_id=user_id,
        )

    # ========================================================================
    # QUESTS
    # ========================================================================

    async def start_quest(self, user_id: str, quest_id: str, user_level: Optional[int] = None) -> OperationResult:
        return await self._run(
            "start_quest",
            lambda: self._quests.start_quest(user_id, quest_id, user_level),
            user_id=user_id,
            quest_id=quest_id,
        )

    async def record_progress(
        self,
        user_id: str,
        quest_id: str,
        requirement_type: str,
        increment_by: int = 1,
    ) -> OperationResult:
        return await self._run(
            "record_progress",
            lambda: self._quests.record_progress(user_id, quest_id, requirement_type, increment_by),
            user_id=user_id,
            quest_id=quest_id,
        )

    async def abandon_quest(self, user_id: str, quest_id: str) -> OperationResult:
        return await self._run(
            "abandon_quest",
            lambda: self._quests.abandon_quest(user_id, quest_id),
            user_id=user_id,
            quest_id=quest_id,
        )

    async def list_quests(
        self,
        user_id: str,
        filter_type: str = "all",
        user_level: Optional[int] = None,
    ) -> OperationResult:
        return await self._run(
            "list_quests",
            lambda: self._quests.list_quests(user_id, filter_type, user_level),
            user_id=user_id,
        )

    async def get_quest_details(
        self,
        user_id: str,
        quest_id: str,
        user_level: Optional[int] = None,
    ) -> OperationResult:
        return await self._run(
            "get_quest_details",
            lambda: self._quests.get_quest_details(user_id, quest_id, user_level),
            user_id=user_id,
            quest_id=quest_id,
        )

    async def record_action(self, user_id: str, requirement_type: str, amount: int = 1) -> OperationResult:
        return await self._run(
            "record_action",
            lambda: self._quests.record_action(user_id, requirement_type, amount),
            user_id=user_id,
        )

    async def get_reset_status(self, user_id: str) -> OperationResult:
        return await self._run(
            "get_reset_status",
            lambda: self._quests.get_reset_status(user_id),
            user_id=user_id,
        )

    async def retry_completion_reward(self, user_id: str, instance_id: int) -> OperationResult:
        return await self._run(
            "retry_completion_reward",
            lambda: self._quests.retry_completion_reward(user_id, instance_id),
            user_id=user_id,
        )

    async def settle_pending_rewards(self, user_id: str) -> OperationResult:
        return await self._run(
            "settle_pending_rewards",
            lambda: self._quests.settle_pending_rewards(user_id),
            user_id=user_id,
        )
