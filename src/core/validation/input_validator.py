"""
Input validation for engine entry points.

Purpose
-------
Single source of truth for low-level input validation: user ids, XP amounts,
increments, quest ids and enumerated choices. Every check either returns the
validated (normalized) value or raises ``ValidationError``; nothing is
silently coerced.

Non-Responsibilities
--------------------
- Business rules such as level prerequisites (services)
- Persistence constraints (database)

Observability
-------------
Every failure is logged at debug level with ``field_name``, the ``repr`` of
the raw value and the reason, to aid investigation without polluting
production logs.
"""

from __future__ import annotations

from typing import Any, Iterable, NoReturn, Optional, TypeVar

from src.core.logging.logger import get_logger
from src.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)

E = TypeVar("E")

MAX_ID_LENGTH = 64


def _raise_validation_error(field_name: str, value: Any, message: str) -> NoReturn:
    logger.debug(
        "Input validation failed",
        extra={"field_name": field_name, "raw_value": repr(value), "reason": message},
    )
    raise ValidationError(field_name, message)


class InputValidator:
    """
    Stateless validation helpers.

    Integers must be real ``int`` values: ``bool``, ``float`` and numeric
    strings are rejected so a caller bug like ``apply_experience(u, 1.5)``
    surfaces as a validation error instead of a truncated grant.
    """

    # =========================================================================
    # INTEGER VALIDATION
    # =========================================================================

    @staticmethod
    def validate_integer(
        value: Any,
        field_name: str,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
    ) -> int:
        if value is None:
            _raise_validation_error(field_name, value, "Value is required")

        if isinstance(value, bool) or not isinstance(value, int):
            _raise_validation_error(
                field_name, value, f"Must be a whole number, got {type(value).__name__}"
            )

        if min_value is not None and value < min_value:
            _raise_validation_error(field_name, value, f"Must be at least {min_value}, got {value}")

        if max_value is not None and value > max_value:
            _raise_validation_error(field_name, value, f"Cannot exceed {max_value}, got {value}")

        return value

    @staticmethod
    def validate_positive_integer(
        value: Any,
        field_name: str,
        max_value: Optional[int] = None,
    ) -> int:
        """Strictly positive integer (>= 1)."""
        return InputValidator.validate_integer(value, field_name, min_value=1, max_value=max_value)

    # =========================================================================
    # IDENTIFIERS & STRINGS
    # =========================================================================

    @staticmethod
    def validate_string(
        value: Any,
        field_name: str,
        min_length: int = 1,
        max_length: Optional[int] = None,
        allowed_chars: Optional[str] = None,
    ) -> str:
        """Validate and strip a string."""
        if not isinstance(value, str):
            _raise_validation_error(field_name, value, "Must be text")

        stripped = value.strip()
        if len(stripped) < min_length:
            _raise_validation_error(
                field_name, value, f"Must be at least {min_length} character(s) long"
            )

        if max_length is not None and len(stripped) > max_length:
            _raise_validation_error(field_name, value, f"Cannot exceed {max_length} characters")

        if allowed_chars is not None:
            invalid = sorted({ch for ch in stripped if ch not in allowed_chars})
            if invalid:
                _raise_validation_error(
                    field_name, value, f"Contains invalid characters: {''.join(invalid)}"
                )

        return stripped

    @staticmethod
    def validate_user_id(value: Any, field_name: str = "user_id") -> str:
        """User ids are opaque strings supplied by the identity collaborator."""
        return InputValidator.validate_string(value, field_name, max_length=MAX_ID_LENGTH)

    @staticmethod
    def validate_quest_id(value: Any, field_name: str = "quest_id") -> str:
        """Quest ids are catalog slugs: lowercase letters, digits, dash and underscore."""
        return InputValidator.validate_string(
            value,
            field_name,
            max_length=MAX_ID_LENGTH,
            allowed_chars="abcdefghijklmnopqrstuvwxyz0123456789_-",
        )

    # =========================================================================
    # CHOICES
    # =========================================================================

    @staticmethod
    def validate_choice(value: Any, field_name: str, choices: Iterable[str]) -> str:
        allowed = list(choices)
        if value not in allowed:
            _raise_validation_error(
                field_name, value, f"Invalid choice '{value}'. Must be one of: {', '.join(allowed)}"
            )
        return value

    @staticmethod
    def validate_enum(value: Any, field_name: str, enum_cls: type[E]) -> E:
        """Accept an enum member or its value; return the member."""
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(value)  # type: ignore[call-arg]
        except ValueError:
            allowed = ", ".join(str(member.value) for member in enum_cls)  # type: ignore[attr-defined]
            _raise_validation_error(
                field_name, value, f"Invalid value '{value}'. Must be one of: {allowed}"
            )
