"""
Exception message template registry for Questline.

Purpose
-------
Single source of truth for exception-to-message mappings. Converts engine
exceptions into the short, user-facing texts a caller can show without
knowing the exception hierarchy.

Design Notes
------------
Each template contains:
- title: Short, clear error title
- template: Message template with {placeholder} interpolation from the
  exception's ``details``
- help_text: Optional guidance for the user
- severity: ErrorSeverity level for styling and log level

Some exceptions need a different text per ``reason`` (a duplicate start and
a contended ledger are both ``ConflictError``). ``REASON_TEMPLATES`` is
consulted first, keyed by ``(exception type, reason)``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from src.core.exceptions import (
    ConfigurationError,
    DatabaseError,
    ErrorSeverity,
    QuestlineInfrastructureException,
)
from src.modules.shared.exceptions import (
    ConflictError,
    ExpiredError,
    InternalConsistencyError,
    NotFoundError,
    PreconditionFailedError,
    QuestlineDomainException,
    ValidationError,
)

NO_PROGRESS_MESSAGE = "No progress was recorded. Please try again."
QUEST_EXPIRED_MESSAGE = "Quest expired"
ALREADY_IN_PROGRESS_MESSAGE = "Already in progress"


class ExceptionTemplate:
    """Template for formatting exception messages."""

    def __init__(
        self,
        title: str,
        template: str,
        help_text: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
    ):
        self.title = title
        self.template = template
        self.help_text = help_text
        self.severity = severity

    def format(self, exception: Exception) -> Dict[str, Any]:
        """
        Format exception using template.

        Returns:
            Dict with 'title', 'description', 'help_text', 'severity'
        """
        details: Dict[str, Any] = {}
        if isinstance(exception, (QuestlineDomainException, QuestlineInfrastructureException)):
            details = exception.details.copy()

        try:
            description = self.template.format(**details)
        except (KeyError, IndexError, ValueError):
            # Fallback to exception message if template interpolation fails
            description = str(getattr(exception, "message", exception))

        return {
            "title": self.title,
            "description": description,
            "help_text": self.help_text,
            "severity": self.severity,
        }


# ============================================================================
# EXCEPTION TEMPLATE REGISTRY
# ============================================================================

EXCEPTION_TEMPLATES: Dict[type, ExceptionTemplate] = {
    # Domain Exceptions
    ValidationError: ExceptionTemplate(
        title="Invalid Input",
        template="**{field}**: {validation_message}",
        help_text="Please check your input and try again.",
        severity=ErrorSeverity.INFO,
    ),
    NotFoundError: ExceptionTemplate(
        title="Not Found",
        template="{resource_type} not found.",
        help_text=None,
        severity=ErrorSeverity.INFO,
    ),
    PreconditionFailedError: ExceptionTemplate(
        title="Not Available",
        template="This action is not available right now.",
        help_text=None,
        severity=ErrorSeverity.INFO,
    ),
    ConflictError: ExceptionTemplate(
        title="Try Again",
        template=NO_PROGRESS_MESSAGE,
        help_text=None,
        severity=ErrorSeverity.WARNING,
    ),
    ExpiredError: ExceptionTemplate(
        title=QUEST_EXPIRED_MESSAGE,
        template=QUEST_EXPIRED_MESSAGE,
        help_text="Start the quest again to make a new attempt.",
        severity=ErrorSeverity.INFO,
    ),
    InternalConsistencyError: ExceptionTemplate(
        title="Something Went Wrong",
        template=NO_PROGRESS_MESSAGE,
        help_text="The team has been alerted.",
        severity=ErrorSeverity.CRITICAL,
    ),
    # Infrastructure Exceptions
    ConfigurationError: ExceptionTemplate(
        title="Configuration Error",
        template="A system configuration error occurred. Please contact support.",
        help_text="Error code: CONFIG_ERROR",
        severity=ErrorSeverity.CRITICAL,
    ),
    DatabaseError: ExceptionTemplate(
        title="Try Again",
        template=NO_PROGRESS_MESSAGE,
        help_text="If this persists, contact support.",
        severity=ErrorSeverity.ERROR,
    ),
}

REASON_TEMPLATES: Dict[Tuple[type, str], ExceptionTemplate] = {
    (ConflictError, "duplicate_active_instance"): ExceptionTemplate(
        title=ALREADY_IN_PROGRESS_MESSAGE,
        template=ALREADY_IN_PROGRESS_MESSAGE,
        help_text=None,
        severity=ErrorSeverity.INFO,
    ),
    (PreconditionFailedError, "already_active"): ExceptionTemplate(
        title=ALREADY_IN_PROGRESS_MESSAGE,
        template=ALREADY_IN_PROGRESS_MESSAGE,
        help_text=None,
        severity=ErrorSeverity.INFO,
    ),
    (PreconditionFailedError, "already_completed"): ExceptionTemplate(
        title="Already Completed",
        template="You have already completed this quest.",
        help_text=None,
        severity=ErrorSeverity.INFO,
    ),
    (PreconditionFailedError, "level_too_low"): ExceptionTemplate(
        title="Level Too Low",
        template="Reach a higher level to unlock this quest.",
        help_text=None,
        severity=ErrorSeverity.INFO,
    ),
    (PreconditionFailedError, "quest_inactive"): ExceptionTemplate(
        title="Not Available",
        template="This quest is not available.",
        help_text=None,
        severity=ErrorSeverity.INFO,
    ),
    (PreconditionFailedError, "not_active"): ExceptionTemplate(
        title="Not Active",
        template="You have no active attempt at this quest.",
        help_text="Start the quest first.",
        severity=ErrorSeverity.INFO,
    ),
}


def get_exception_template(exception: Exception) -> Optional[ExceptionTemplate]:
    """
    Get the template for an exception.

    Reason-specific templates win over type templates; subclasses fall back
    to the nearest registered base class.
    """
    reason = getattr(exception, "reason", None)
    for exception_type in type(exception).__mro__:
        if reason is not None and (exception_type, reason) in REASON_TEMPLATES:
            return REASON_TEMPLATES[(exception_type, reason)]
        if exception_type in EXCEPTION_TEMPLATES:
            return EXCEPTION_TEMPLATES[exception_type]
    return None
