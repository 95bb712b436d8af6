"""
Domain exceptions package for Questline.

Exports
-------
- All engine exception classes (defined in ``src.modules.shared.exceptions``)
- EXCEPTION_TEMPLATES / REASON_TEMPLATES: user-facing message registry
"""

from src.modules.shared.exceptions import (
    ConflictError,
    ErrorSeverity,
    ExpiredError,
    InternalConsistencyError,
    NotFoundError,
    PreconditionFailedError,
    QuestlineDomainException,
    ValidationError,
)

from .registry import (
    ALREADY_IN_PROGRESS_MESSAGE,
    EXCEPTION_TEMPLATES,
    NO_PROGRESS_MESSAGE,
    QUEST_EXPIRED_MESSAGE,
    REASON_TEMPLATES,
    ExceptionTemplate,
    get_exception_template,
)

__all__ = [
    # Exception classes
    "QuestlineDomainException",
    "ValidationError",
    "NotFoundError",
    "PreconditionFailedError",
    "ConflictError",
    "ExpiredError",
    "InternalConsistencyError",
    "ErrorSeverity",
    # Utilities
    # Registry
    "ExceptionTemplate",
    "EXCEPTION_TEMPLATES",
    "REASON_TEMPLATES",
    "get_exception_template",
    "NO_PROGRESS_MESSAGE",
    "QUEST_EXPIRED_MESSAGE",
    "ALREADY_IN_PROGRESS_MESSAGE",
]
