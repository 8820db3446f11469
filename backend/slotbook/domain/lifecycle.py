"""Booking status state machine.

Every status change in the system goes through ``check_transition``; the
table below is the only place legal transitions are defined.
"""

from __future__ import annotations

from enum import Enum

from ..models import BookingStatus
from .errors import InvalidState, InvalidTransition


class SideEffect(str, Enum):
    NONE = "none"
    RELEASE_CAPACITY = "release_capacity"
    GENERATE_RECEIPT = "generate_receipt"


TRANSITIONS: dict[tuple[BookingStatus, BookingStatus], SideEffect] = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED): SideEffect.NONE,
    (BookingStatus.PENDING, BookingStatus.CANCELLED): SideEffect.RELEASE_CAPACITY,
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED): SideEffect.RELEASE_CAPACITY,
    (BookingStatus.PENDING, BookingStatus.COMPLETED): SideEffect.GENERATE_RECEIPT,
    (BookingStatus.CONFIRMED, BookingStatus.COMPLETED): SideEffect.GENERATE_RECEIPT,
}

TERMINAL_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})
STAFF_ASSIGNABLE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


def initial_status(*, auto_confirm: bool) -> BookingStatus:
    return BookingStatus.CONFIRMED if auto_confirm else BookingStatus.PENDING


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL_STATUSES


def check_transition(current: BookingStatus, target: BookingStatus) -> SideEffect:
    """Return the side effect of moving ``current`` to ``target``.

    Raises InvalidTransition when the pair is not in the table. Callers check
    ``is_repeat`` first; any other request for the status a booking already
    holds is rejected here like every other move out of a terminal state.
    """
    try:
        return TRANSITIONS[(current, target)]
    except KeyError:
        raise InvalidTransition(f"cannot move booking from {current.value} to {target.value}") from None


def is_repeat(current: BookingStatus, target: BookingStatus) -> bool:
    """True when the request asks for the status the booking already holds.

    A repeated cancellation is a client retry and answers with the booking
    as it is. A completed booking stays closed: completing it again is an
    invalid transition, not a repeat.
    """
    return current == target and current is not BookingStatus.COMPLETED


def ensure_staff_assignable(status: BookingStatus) -> None:
    if status not in STAFF_ASSIGNABLE_STATUSES:
        raise InvalidState(f"cannot assign staff to a {status.value} booking")


def ensure_editable(status: BookingStatus) -> None:
    if is_terminal(status):
        raise InvalidState(f"cannot edit a {status.value} booking")
