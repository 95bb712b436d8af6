"""
Database infrastructure for Questline.

Exports the ORM base, the async DatabaseService and the retry policy.
"""

from src.core.database.base import (
    Base,
    BigIntegerType,
    IdMixin,
    JSONType,
    TimestampMixin,
    as_utc,
    utc_now,
)
from src.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from src.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    # ORM Base & Mixins
    "Base",
    "JSONType",
    "BigIntegerType",
    "IdMixin",
    "TimestampMixin",
    "as_utc",
    "utc_now",
    # Main service
    "DatabaseService",
    # Retry
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    # Exceptions
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
