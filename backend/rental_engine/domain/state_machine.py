"""
Booking state machine.

LEGAL_TRANSITIONS is the single authority on which status may follow which.
Every status change in the engine goes through transition(); callers never
assign `booking.status` directly.

transition() appends exactly one status-history entry per accepted change and
does nothing else: vehicle, session and payment updates belong to the
handlers that call it.
"""

from datetime import datetime
from typing import Iterable, Optional, Union

from rental_engine.core.clock import utcnow
from rental_engine.core.exceptions import InvalidTransition
from rental_engine.core.metrics import record_transition
from rental_engine.models.booking import BookingStatusHistory
from rental_engine.models.enums import BookingStatus

S = BookingStatus

LEGAL_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    S.PENDING: frozenset({S.PENDING_PAYMENT, S.LICENSE_REQUIRED, S.VERIFICATION_PENDING, S.CANCELLED}),
    S.LICENSE_REQUIRED: frozenset({S.VERIFICATION_PENDING, S.PENDING_PAYMENT, S.CANCELLED}),
    S.VERIFICATION_PENDING: frozenset({S.PENDING_PAYMENT, S.LICENSE_REQUIRED, S.CANCELLED}),
    S.PENDING_PAYMENT: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.ACTIVE, S.IN_PROGRESS, S.CANCELLED, S.NO_SHOW}),
    S.ACTIVE: frozenset({S.IN_PROGRESS, S.COMPLETED, S.OVERDUE}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.OVERDUE}),
    S.OVERDUE: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
}

TERMINAL_STATES = frozenset(status for status, successors in LEGAL_TRANSITIONS.items() if not successors)

INITIAL_STATES = frozenset({S.PENDING, S.LICENSE_REQUIRED, S.VERIFICATION_PENDING, S.PENDING_PAYMENT})

# Statuses a renter can still cancel from
CANCELLABLE_STATES = frozenset(s for s, successors in LEGAL_TRANSITIONS.items() if S.CANCELLED in successors)

StatusLike = Union[BookingStatus, str]


def can_transition(current: StatusLike, target: StatusLike) -> bool:
    current, target = BookingStatus(current), BookingStatus(target)
    return current == target or target in LEGAL_TRANSITIONS[current]


def is_terminal(status: StatusLike) -> bool:
    return BookingStatus(status) in TERMINAL_STATES


def _append_history(booking, status: BookingStatus, actor, note: str, at: Optional[datetime]) -> None:
    booking.status_history.append(
        BookingStatusHistory(
            status=status,
            changed_by=str(actor),
            notes=note or "",
            timestamp=at or utcnow(),
        )
    )


def initialize(booking, status: StatusLike, actor, note: str = "Booking created", at: Optional[datetime] = None) -> None:
    """Set the creation status and write the first history entry."""
    status = BookingStatus(status)
    if status not in INITIAL_STATES:
        raise InvalidTransition("(new)", status)
    if booking.status_history:
        raise InvalidTransition(booking.status, status)
    booking.status = status
    _append_history(booking, status, actor, note, at)
    record_transition(status.value)


def transition(booking, target: StatusLike, actor, note: str = "", at: Optional[datetime] = None) -> bool:
    """
    Move `booking` to `target`.

    Returns:
        True if the status changed, False for a same-status request (no-op,
        safe for callers to retry)

    Raises:
        InvalidTransition: `target` is not a legal successor of the current status
    """
    target = BookingStatus(target)
    current = BookingStatus(booking.status)

    if current == target:
        return False
    if target not in LEGAL_TRANSITIONS[current]:
        raise InvalidTransition(current, target)

    booking.status = target
    _append_history(booking, target, actor, note, at)
    record_transition(target.value)
    return True


def replay(statuses: Iterable[StatusLike]) -> BookingStatus:
    """
    Validate a recorded status sequence and return the status it ends in.

    The first entry must be a legal initial status; each following entry must
    be a legal successor of (or equal to) the one before it.
    """
    current: Optional[BookingStatus] = None
    for status in statuses:
        status = BookingStatus(status)
        if current is None:
            if status not in INITIAL_STATES:
                raise InvalidTransition("(new)", status)
        elif not can_transition(current, status):
            raise InvalidTransition(current, status)
        current = status

    if current is None:
        raise ValueError("Cannot replay an empty status history")
    return current
