"""
Database retry policy for transient and optimistic-concurrency failures.

Purpose
-------
Execute an async unit of work (normally one whole transaction) with
automatic retries, exponential backoff and jitter.

Retry Classification
--------------------
- Retriable:
  - ``OperationalError`` and ``DBAPIError``: dropped connections,
    deadlocks, serialization failures.
  - ``StaleDataError``: a versioned row changed between read and flush.
- Non-retriable:
  - ``IntegrityError``: a constraint says the write must not happen, such as
    a duplicate active quest instance. Retrying cannot change that answer.
  - Every other exception, including the domain exceptions.

Backoff Strategy
----------------
``min(initial * 2 ** (attempt - 1), max) + random(0, jitter)``

Transaction Ownership
---------------------
Retry the operation that opens the transaction, never work inside one:

```python
async def operation():
    async with DatabaseService.get_transaction() as session:
        ...

await retry_policy.execute(operation, operation_name="progression.apply_experience")
```

Configuration
-------------
``Config.DATABASE_RETRY_MAX_ATTEMPTS``, ``DATABASE_RETRY_INITIAL_BACKOFF_MS``,
``DATABASE_RETRY_MAX_BACKOFF_MS``, ``DATABASE_RETRY_JITTER_MS``.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from src.core.config.config import Config
from src.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class DatabaseRetryConfig:
    """
    Configuration for database retry behavior.

    Attributes
    ----------
    max_attempts : int
        Maximum number of attempts (including the initial attempt).
    initial_backoff_ms : int
        Backoff before the second attempt.
    max_backoff_ms : int
        Ceiling for the exponential part of the backoff.
    jitter_ms : int
        Maximum random jitter added to every backoff.
    """

    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int
    retriable_exceptions: Tuple[Type[BaseException], ...] = (
        OperationalError,
        DBAPIError,
        StaleDataError,
    )
    non_retriable_exceptions: Tuple[Type[BaseException], ...] = (IntegrityError,)

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        return cls(
            max_attempts=int(Config.DATABASE_RETRY_MAX_ATTEMPTS),
            initial_backoff_ms=int(Config.DATABASE_RETRY_INITIAL_BACKOFF_MS),
            max_backoff_ms=int(Config.DATABASE_RETRY_MAX_BACKOFF_MS),
            jitter_ms=int(Config.DATABASE_RETRY_JITTER_MS),
        )


# ============================================================================
# Retry Policy
# ============================================================================


class DatabaseRetryPolicy:
    """
    Execute async database operations with retry semantics.

    Usage
    -----
    >>> retry_policy = DatabaseRetryPolicy.from_config()
    >>> result = await retry_policy.execute(
    ...     apply_in_transaction,
    ...     operation_name="progression.apply_experience",
    ...     context={"user_id": "u-1", "amount": 150},
    ... )
    """

    def __init__(self, config: DatabaseRetryConfig) -> None:
        self._config = config

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def _is_retriable(self, exc: BaseException) -> bool:
        if isinstance(exc, self._config.non_retriable_exceptions):
            return False
        return isinstance(exc, self._config.retriable_exceptions)

    def _compute_backoff_ms(self, attempt: int) -> int:
        """Exponential backoff for ``attempt`` (1-indexed), capped and jittered."""
        base = self._config.initial_backoff_ms * (2 ** max(attempt - 1, 0))
        capped = min(base, self._config.max_backoff_ms)
        jitter = random.randint(0, self._config.jitter_ms) if self._config.jitter_ms > 0 else 0
        return capped + jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Execute ``operation`` with retry logic for transient failures.

        Raises
        ------
        BaseException
            The last exception once retries are exhausted, or any
            non-retriable exception immediately.
        """
        ctx_extra = dict(context or {})
        ctx_extra["db_operation"] = operation_name

        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if not self._is_retriable(exc):
                    raise

                error_type = type(exc).__name__
                if attempt >= self._config.max_attempts:
                    logger.error(
                        "Database operation retries exhausted",
                        extra={
                            **ctx_extra,
                            "attempt": attempt,
                            "error_type": error_type,
                            "max_attempts": self._config.max_attempts,
                        },
                    )
                    raise

                backoff_ms = self._compute_backoff_ms(attempt)
                logger.warning(
                    "Database operation failed, retrying",
                    extra={
                        **ctx_extra,
                        "attempt": attempt,
                        "error_type": error_type,
                        "error": str(exc),
                        "backoff_ms": backoff_ms,
                    },
                )
                await asyncio.sleep(backoff_ms / 1000.0)
