"""
Core infrastructure layer for Questline.

Purpose
-------
Provide a single, well-structured import surface for the core infrastructure
subsystems:

- Configuration management (Config, ConfigManager)
- Database subsystem (DatabaseService, DatabaseRetryPolicy)
- Logging (structured logging, logger factory)
- Validation utilities (InputValidator)
- Infrastructure exceptions

Design Decisions
----------------
- This module is intentionally thin: no logic, no configuration, no I/O.
- Public API is explicit via __all__ to avoid leaking internal symbols.
- Engine modules still import from their own subpackages; this surface is
  for host applications embedding the engine.
"""

from __future__ import annotations

from src.core.config import Config, ConfigManager
from src.core.database import DatabaseRetryPolicy, DatabaseService
from src.core.exceptions import (
    ConfigurationError,
    DatabaseError,
    ErrorSeverity,
    QuestlineInfrastructureException,
)
from src.core.logging import get_logger, setup_logging
from src.core.validation import InputValidator

__all__ = [
    # Configuration
    "Config",
    "ConfigManager",
    # Database
    "DatabaseService",
    "DatabaseRetryPolicy",
    # Logging
    "setup_logging",
    "get_logger",
    # Validation
    "InputValidator",
    # Infrastructure Exceptions
    "QuestlineInfrastructureException",
    "ConfigurationError",
    "DatabaseError",
    "ErrorSeverity",
]
