from __future__ import annotations

from enum import Enum

from .errors import StateTransitionError, ValidationError
from .roles import Action


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: "str | BookingStatus") -> "BookingStatus":
        if isinstance(value, BookingStatus):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as error:
            raise ValidationError(f"Unknown booking status: {value!r}") from error


INITIAL_STATUS = BookingStatus.PENDING

# Only these statuses take part in the non-overlap check.
BLOCKING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.APPROVED})

TRANSITION_ACTIONS = (Action.APPROVE, Action.REJECT, Action.COMPLETE, Action.CANCEL)

_TRANSITIONS: dict[BookingStatus, dict[Action, BookingStatus]] = {
    BookingStatus.PENDING: {
        Action.APPROVE: BookingStatus.APPROVED,
        Action.REJECT: BookingStatus.REJECTED,
        Action.CANCEL: BookingStatus.CANCELLED,
    },
    BookingStatus.APPROVED: {
        Action.COMPLETE: BookingStatus.COMPLETED,
        Action.CANCEL: BookingStatus.CANCELLED,
    },
    BookingStatus.REJECTED: {},
    BookingStatus.COMPLETED: {},
    BookingStatus.CANCELLED: {},
}


def is_terminal(status: BookingStatus) -> bool:
    return not _TRANSITIONS[status]


def allowed_actions(status: BookingStatus) -> list[Action]:
    return list(_TRANSITIONS[status])


def next_status(current: BookingStatus, action: Action) -> BookingStatus:
    """Return the status ``action`` moves ``current`` to.

    Raises StateTransitionError for any move outside the transition table,
    including moves into the status the booking already has.
    """
    if action not in TRANSITION_ACTIONS:
        raise ValidationError(f"{action.value} is not a status transition.")

    target = _TRANSITIONS[current].get(action)
    if target is None or target == current:
        raise StateTransitionError(current=current.value, action=action.value)
    return target

