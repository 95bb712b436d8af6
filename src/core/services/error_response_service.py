"""
Error Response Service for Questline.

Purpose
-------
Format domain and infrastructure exceptions into the structured error part
of an ``OperationResult``, so callers branch on ``error_code`` and show
``description`` without knowing the exception hierarchy.

Responsibilities
----------------
- Format exceptions using the EXCEPTION_TEMPLATES / REASON_TEMPLATES registry
- Carry the machine-readable fields (error_code, is_retryable, details)
- Provide a fallback for unknown exception types

Non-Responsibilities
--------------------
- Logging (handled by the gateway and services)
- Exception creation or domain logic
"""

from __future__ import annotations

from typing import Any, Dict

from src.core.exceptions import ErrorSeverity, QuestlineInfrastructureException
from src.domain.exceptions.registry import NO_PROGRESS_MESSAGE, get_exception_template
from src.modules.shared.exceptions import QuestlineDomainException


class ErrorResponseService:
    """
    Formats exceptions into user-facing error payloads.

    Example:
        >>> ErrorResponseService().format_error(ExpiredError("daily-share"))
        {'title': 'Quest expired', 'description': 'Quest expired', 'help_text': ...,
         'severity': 'info', 'error_code': 'QUEST_EXPIRED', 'is_retryable': False,
         'details': {...}}
    """

    def format_error(self, error: Exception) -> Dict[str, Any]:
        """
        Format an exception into a user-friendly response structure.

        Returns:
            Dict containing title, description, help_text, severity (value
            string), error_code, is_retryable and details.
        """
        template = get_exception_template(error)
        if template is not None:
            response = template.format(error)
        else:
            response = self._format_fallback_error(error)

        response["severity"] = response["severity"].value
        response.update(self._machine_fields(error))
        return response

    @staticmethod
    def _machine_fields(error: Exception) -> Dict[str, Any]:
        if isinstance(error, (QuestlineDomainException, QuestlineInfrastructureException)):
            return {
                "error_code": error.error_code,
                "is_retryable": error.is_retryable,
                "details": dict(error.details),
            }
        return {"error_code": "UNEXPECTED_ERROR", "is_retryable": False, "details": {}}

    def _format_fallback_error(self, error: Exception) -> Dict[str, Any]:
        """Generic message for exceptions without a registered template."""
        if isinstance(error, QuestlineDomainException):
            severity = error.severity
            description = error.message
        elif isinstance(error, QuestlineInfrastructureException):
            severity = error.severity
            description = NO_PROGRESS_MESSAGE
        else:
            severity = ErrorSeverity.ERROR
            description = "An unexpected error occurred."

        return {
            "title": "Something Went Wrong",
            "description": description,
            "help_text": "The issue has been logged. If this persists, contact support.",
            "severity": severity,
        }
