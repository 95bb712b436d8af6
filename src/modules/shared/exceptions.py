"""
Domain exceptions for the progression and quest engines.

Purpose
-------
Define the structured exception hierarchy raised by services for business
rule violations. The engine boundary (``EngineGateway``) turns every one of
these into a structured result, except ``InternalConsistencyError``, which
signals a seeding defect and is re-raised after alerting.

Taxonomy
--------
- ``ValidationError``: bad input (non-positive XP, unknown requirement type)
- ``NotFoundError``: unknown user ledger, quest or level
- ``PreconditionFailedError``: level too low, quest already active or
  completed, instance not active
- ``ConflictError``: lost a race (duplicate active instance, exhausted
  optimistic retries)
- ``ExpiredError``: progress recorded against an instance past its deadline
- ``InternalConsistencyError``: level table gap (fatal)

Design Notes
------------
- All domain exceptions inherit from ``QuestlineDomainException`` and carry
  ``message``, ``details``, ``severity``, ``is_retryable`` and ``error_code``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from src.core.exceptions import ErrorSeverity, QuestlineInfrastructureException

__all__ = [
    "ErrorSeverity",
    "QuestlineDomainException",
    "ValidationError",
    "NotFoundError",
    "PreconditionFailedError",
    "ConflictError",
    "ExpiredError",
    "InternalConsistencyError",
]


class QuestlineDomainException(Exception):
    """
    Base exception for all domain-level errors.

    Example:
        >>> raise QuestlineDomainException(
        ...     "Quest cannot be started",
        ...     {"reason": "level too low"}
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

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


class ValidationError(QuestlineDomainException):
    """
    Raised when caller input fails validation.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class NotFoundError(QuestlineDomainException):
    """
    Raised when a ledger, quest, instance or level does not exist.

    Args:
        resource_type: Type of resource (e.g., "Ledger", "Quest")
        identifier: Optional identifier for the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class PreconditionFailedError(QuestlineDomainException):
    """
    Raised when an operation is not allowed in the current state.

    Args:
        action: The attempted action (e.g., "start_quest")
        reason: Machine-readable reason (e.g., "already_active")
        message: Optional human-readable explanation

    Example:
        >>> raise PreconditionFailedError(
        ...     "start_quest", "level_too_low", "Requires level 5"
        ... )
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, action: str, reason: str, message: Optional[str] = None) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            message or f"Cannot {action.replace('_', ' ')}: {reason.replace('_', ' ')}",
            details={"action": action, "reason": reason},
            error_code=f"PRECONDITION_{reason.upper()}",
        )


class ConflictError(QuestlineDomainException):
    """
    Raised when a concurrent writer won the race.

    Args:
        resource_type: Contended resource (e.g., "QuestInstance", "Ledger")
        reason: What collided
        is_retryable: Whether repeating the call may succeed
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, resource_type: str, reason: str, *, is_retryable: bool = False) -> None:
        self.resource_type = resource_type
        self.reason = reason
        super().__init__(
            f"Conflict on {resource_type}: {reason}",
            details={"resource_type": resource_type, "reason": reason},
            is_retryable=is_retryable,
            error_code="CONFLICT",
        )


class ExpiredError(QuestlineDomainException):
    """
    Raised when progress is recorded against an instance past its deadline.

    Kept distinct from ``PreconditionFailedError`` so callers can offer a
    restart rather than a generic failure.
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, quest_id: str, expired_at: Optional[datetime] = None) -> None:
        self.quest_id = quest_id
        self.expired_at = expired_at
        super().__init__(
            f"Quest expired: {quest_id}",
            details={
                "quest_id": quest_id,
                "expired_at": expired_at.isoformat() if expired_at else None,
            },
            error_code="QUEST_EXPIRED",
        )


class InternalConsistencyError(QuestlineDomainException):
    """
    Raised when reference data contradicts itself (e.g., the level table has
    no row for a level the ledger resolved to). Never recovered into a soft
    failure.
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, component: str, reason: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.component = component
        self.reason = reason
        # Caller-supplied facts, without component and reason
        self.context: Dict[str, Any] = dict(details or {})
        super().__init__(
            f"Internal consistency violation in {component}: {reason}",
            details={"component": component, "reason": reason, **self.context},
            error_code="INTERNAL_CONSISTENCY",
        )
