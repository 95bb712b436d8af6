"""
Questline Shared Module

Purpose
-------
Provides the foundations shared by the engine modules:
- Engine exception hierarchy and error helpers
- Base service and repository patterns

Architecture
------------
- BaseService: Foundation for service classes (logging, config, events,
  retried transactions, clock)
- BaseRepository: Type-safe database access patterns
- Exceptions: ValidationError, NotFoundError, PreconditionFailedError,
  ConflictError, ExpiredError, InternalConsistencyError

Usage
-----
    from src.modules.shared import BaseService, BaseRepository, NotFoundError
"""

from __future__ import annotations

# Exceptions first: the base classes depend on them
from .exceptions import (
    ConflictError,
    ErrorSeverity,
    ExpiredError,
    InternalConsistencyError,
    NotFoundError,
    PreconditionFailedError,
    QuestlineDomainException,
    ValidationError,
)

from .base_repository import BaseRepository
from .base_service import BaseService

__all__ = [
    # Base patterns
    "BaseService",
    "BaseRepository",
    # Exceptions
    "QuestlineDomainException",
    "ErrorSeverity",
    "ValidationError",
    "NotFoundError",
    "PreconditionFailedError",
    "ConflictError",
    "ExpiredError",
    "InternalConsistencyError",
]
