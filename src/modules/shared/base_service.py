"""
Base Service Foundation

Purpose
-------
Provides the foundational class for the engine services. Services implement
the business operations, own their transactions, enforce business rules
and publish domain events once a transaction has committed.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access patterns
- Event emission helpers (post-commit only)
- Retried transactional units of work with exhaustion mapped to engine
  exceptions
- An injectable clock so expiry rules are testable

What this class does NOT do:
- Open sessions on its own (that is DatabaseService's job)
- Contain progression or quest rules

Usage
-----
    class ProgressionService(BaseService):
        def __init__(self, config_manager, event_bus, logger, **kwargs):
            super().__init__(config_manager, event_bus, logger, **kwargs)

        async def apply_experience(self, user_id, amount, reason):
            async def work():
                async with DatabaseService.get_transaction() as session:
                    ...
            return await self.run_with_retry("progression.apply_experience", work)
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from src.core.database.base import utc_now
from src.core.database.retry_policy import DatabaseRetryPolicy
from src.core.exceptions import ConfigurationError, DatabaseError
from src.modules.shared.exceptions import ConflictError

if TYPE_CHECKING:
    from logging import Logger

    from src.core.config.manager import ConfigManager
    from src.core.event.bus import EventBus
    from src.domain.models.base import DomainEvent

T = TypeVar("T")

Clock = Callable[[], datetime]


class BaseService:
    """
    Base class for all engine services.

    Args:
        config_manager: Configuration manager (class or instance)
        event_bus: Event bus for post-commit notifications
        logger: Structured logger instance
        retry_policy: Retry policy for transactional units of work
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        *,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger
        self._retry_policy = retry_policy or DatabaseRetryPolicy.from_config()
        self._clock: Clock = clock or utc_now

    # ========================================================================
    # CONFIG & CLOCK
    # ========================================================================

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """
        Safely retrieve configuration value.

        Raises:
            ConfigurationError: If required=True and key is missing
        """
        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(key, f"Required configuration key '{key}' is missing")
        return value

    def now(self) -> datetime:
        return self._clock()

    # ========================================================================
    # EVENTS
    # ========================================================================

    async def emit_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Publish one event. Listener failures never reach the caller."""
        await self._events.publish(event_type, data)

    async def publish_domain_events(self, events: Iterable[DomainEvent]) -> None:
        """Publish events collected from aggregates, after the commit."""
        for event in events:
            await self.emit_event(event.event_name, {**event.payload, "occurred_at": event.occurred_at})

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    async def run_with_retry(
        self,
        operation_name: str,
        work: Callable[[], Awaitable[T]],
        *,
        resource_type: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Run ``work`` (one whole transaction) under the retry policy.

        Exhausted optimistic-concurrency retries become a retryable
        ``ConflictError``; exhausted connection failures become a retryable
        ``DatabaseError``. ``IntegrityError`` and engine exceptions pass
        through untouched for the caller to interpret.
        """
        try:
            return await self._retry_policy.execute(
                work,
                operation_name=operation_name,
                context=context,
            )
        except StaleDataError as exc:
            self.log.warning(
                "Concurrent modification persisted through retries",
                extra={"operation": operation_name, "resource_type": resource_type, **(context or {})},
            )
            raise ConflictError(resource_type, "concurrent_update", is_retryable=True) from exc
        except IntegrityError:
            raise
        except DBAPIError as exc:
            self.log_error(operation_name, exc, **(context or {}))
            raise DatabaseError(operation_name, exc) from exc

    # ========================================================================
    # LOGGING
    # ========================================================================

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        self.log.error(
            f"Service error during {operation}: {error}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                **context,
            },
        )
