"""
Base domain model classes for Questline.

Purpose
-------
Provide the foundational abstractions for the rich domain models that
encapsulate progression and quest rules: identity, aggregate boundaries,
domain events and invariant validation.

Responsibilities
----------------
- Define base Entity class with identity and equality semantics
- Define base AggregateRoot class for consistency boundaries
- Track domain events raised by state transitions
- Provide small validation helpers for business invariants

Non-Responsibilities
--------------------
- Persistence (handled by services through the ORM models)
- Database schema (handled by SQLAlchemy models)
- Event delivery (handled by the EventBus once a transaction commits)

Design Notes
------------
Domain models never touch the database or the event bus. Services load ORM
rows, build the domain model, call its business methods, write the resulting
state back and publish the pending events only after the commit succeeded.

Usage Example
-------------
>>> class Ledger(AggregateRoot):
...     def __init__(self, user_id: str, xp: int):
...         super().__init__(user_id)
...         self.xp = xp
...
...     def gain(self, amount: int) -> None:
...         validate_positive(amount, "amount")
...         self.xp += amount
...         self.add_domain_event("ledger.gained", {"user_id": self.id, "xp": self.xp})
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Hashable, List, Optional


# ============================================================================
# DOMAIN EVENTS
# ============================================================================


@dataclass
class DomainEvent:
    """
    Represents a domain event that has occurred.

    Attributes
    ----------
    event_name : str
        Event name (e.g., "progression.level_up")
    payload : Dict[str, Any]
        Event payload with relevant data
    occurred_at : datetime
        When the event occurred (UTC)
    """

    event_name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# ENTITY
# ============================================================================


class Entity(ABC):
    """
    Base class for entities with identity.

    Entities are defined by their identity, not their attributes. Two
    entities with the same id are the same entity even if their attributes
    differ.

    Usage
    -----
    Subclasses should:
    1. Call super().__init__(entity_id) in constructor
    2. Define business methods that modify state
    3. Emit domain events for significant state changes
    """

    def __init__(self, entity_id: Hashable) -> None:
        self._id = entity_id
        self._domain_events: List[DomainEvent] = []

    @property
    def id(self) -> Any:
        """Entity id (immutable)."""
        return self._id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity) or type(other) is not type(self):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def add_domain_event(self, event_name: str, payload: Dict[str, Any]) -> None:
        """
        Record a domain event to be published after persistence.

        Parameters
        ----------
        event_name : str
            Event name (e.g., "quest.completed")
        payload : Dict[str, Any]
            Event payload with relevant data
        """
        self._domain_events.append(DomainEvent(event_name=event_name, payload=payload))

    def clear_domain_events(self) -> List[DomainEvent]:
        """Clear and return all pending domain events."""
        events = self._domain_events.copy()
        self._domain_events.clear()
        return events

    def get_pending_events(self) -> List[DomainEvent]:
        """Pending domain events without clearing them."""
        return self._domain_events.copy()


# ============================================================================
# AGGREGATE ROOT
# ============================================================================


class AggregateRoot(Entity):
    """
    Base class for aggregate roots.

    An aggregate is a cluster of domain state that changes as one unit. The
    aggregate root is the only entry point for those changes, so its
    invariants hold whenever a method returns.

    Characteristics
    ---------------
    - Consistency Boundary: one user's ledger, one quest attempt
    - Transactional: all changes to the aggregate are persisted atomically
    - Event Source: publishes domain events for state transitions
    """


# ============================================================================
# DOMAIN MODEL VALIDATION
# ============================================================================


class DomainValidationError(Exception):
    """
    Raised when a domain invariant would be violated.

    Services translate it into the matching engine exception; it never
    crosses the engine boundary on its own.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


def validate_positive(value: int, field_name: str) -> None:
    """
    Validate that a value is a positive integer.

    Raises
    ------
    DomainValidationError
        If value is not positive
    """
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise DomainValidationError(
            f"{field_name} must be a positive integer, got {value!r}",
            field=field_name,
        )
