"""
Reservation status state machine.

    pending   -> confirmed | cancelled
    confirmed -> completed | cancelled
    cancelled -> (terminal)
    completed -> (terminal)
"""

from app.core.exceptions import InvalidTransition
from app.models.reservation import (
    STATUS_PENDING, STATUS_CONFIRMED, STATUS_CANCELLED, STATUS_COMPLETED,
)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_CONFIRMED, STATUS_CANCELLED}),
    STATUS_CONFIRMED: frozenset({STATUS_COMPLETED, STATUS_CANCELLED}),
    STATUS_CANCELLED: frozenset(),
    STATUS_COMPLETED: frozenset(),
}


def can_transition(current: str, requested: str) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(current: str, requested: str) -> None:
    if not can_transition(current, requested):
        raise InvalidTransition(current, requested)


def is_terminal(status: str) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)
