"""
Infrastructure exceptions for Questline.

Purpose
-------
Define the structured exception hierarchy for infrastructure-level concerns:
database failures and configuration errors. Gameplay rule violations live in
``src.modules.shared.exceptions``.

Design Notes
------------
- All infrastructure exceptions inherit from ``QuestlineInfrastructureException``.
- Each exception carries:
  - ``message``: human-readable description
  - ``details``: additional structured context (dict)
  - ``severity``: ``ErrorSeverity`` value for logging/alerting
  - ``is_retryable``: whether the operation can be retried
  - ``error_code``: short, stable identifier for programmatic use
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected, not concerning
    INFO = "info"  # Normal operation (e.g., validation failures)
    WARNING = "warning"  # Concerning but handled (e.g., retryable conflicts)
    ERROR = "error"  # Unexpected errors requiring attention
    CRITICAL = "critical"  # Data or seeding defects requiring immediate action


class QuestlineInfrastructureException(Exception):
    """
    Base exception for all infrastructure-level errors.

    Example:
        >>> raise QuestlineInfrastructureException(
        ...     "Database connection failed",
        ...     {"host": "localhost", "port": 5432}
        ... )
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"


class ConfigurationError(QuestlineInfrastructureException):
    """
    Raised when a configuration key is invalid or missing.

    Args:
        config_key: The configuration key that has issues
        message: Description of the configuration problem
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class DatabaseError(QuestlineInfrastructureException):
    """
    Raised when a database operation fails after the retry policy gave up.

    Args:
        operation: Name of the database operation that failed
        original_error: The underlying database exception
    """

    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Database error during {operation}: {original_error}",
            details={
                "operation": operation,
                "error": str(original_error),
                "error_type": type(original_error).__name__,
            },
            error_code="DATABASE_ERROR",
        )
