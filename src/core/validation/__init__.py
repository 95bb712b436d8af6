"""
Validation utilities for Questline.

Purpose
-------
Low-level input validation shared by every engine entry point.

Non-Responsibilities
--------------------
- Business rule enforcement (handled by services and domain models)
- Persistence or transaction management

Design Notes
------------
- Re-exports are explicit via __all__ to keep the public API intentional.
- Package is stateless; all classes are pure validation helpers.
"""

from src.core.validation.input_validator import InputValidator

__all__ = [
    "InputValidator",
]
