"""Booking and session lifecycles plus the field rules enforced at the boundary.

Bookings move ``pending -> confirmed -> completed`` and sessions move
``scheduled -> in_progress -> completed``. Either may be cancelled from any
non-terminal state. ``completed`` and ``cancelled`` are terminal in both.
"""

from __future__ import annotations

import datetime as dt
from typing import Any

from .errors import InvalidTransitionError, ValidationError
from .models import (
    BookingStatus,
    BookingType,
    ConsultType,
    SessionStatus,
    TrainingLevel,
    coerce,
)

RATING_MIN = 1
RATING_MAX = 5

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SCHEDULED: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.CANCELLED}),
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}


def is_terminal_booking(status: str | BookingStatus) -> bool:
    return not BOOKING_TRANSITIONS[coerce(BookingStatus, status)]


def is_terminal_session(status: str | SessionStatus) -> bool:
    return not SESSION_TRANSITIONS[coerce(SessionStatus, status)]


def check_booking_transition(current: str | BookingStatus, target: str | BookingStatus) -> bool:
    """Validate a booking status change.

    Returns ``False`` when ``target`` equals ``current`` (nothing to do) and
    ``True`` for a legal move. Raises ``InvalidTransitionError`` otherwise.
    """

    current_status = coerce(BookingStatus, current)
    target_status = coerce(BookingStatus, target)
    if current_status is target_status:
        return False
    if target_status not in BOOKING_TRANSITIONS[current_status]:
        raise InvalidTransitionError("booking", current_status.value, target_status.value)
    return True


def check_session_transition(current: str | SessionStatus, target: str | SessionStatus) -> bool:
    """Session counterpart of :func:`check_booking_transition`."""

    current_status = coerce(SessionStatus, current)
    target_status = coerce(SessionStatus, target)
    if current_status is target_status:
        return False
    if target_status not in SESSION_TRANSITIONS[current_status]:
        raise InvalidTransitionError("session", current_status.value, target_status.value)
    return True


def validate_rating(value: Any, field: str = "rating") -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be a whole number between {RATING_MIN} and {RATING_MAX}")
    if not RATING_MIN <= value <= RATING_MAX:
        raise ValidationError(f"{field} must be between {RATING_MIN} and {RATING_MAX}")
    return value


def parse_timestamp(value: str | dt.datetime, field: str = "time") -> dt.datetime:
    if isinstance(value, dt.datetime):
        return value
    if not value:
        raise ValidationError(f"{field} is required")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return dt.datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 timestamp") from None


def validate_time_range(
    start_time: str | dt.datetime, end_time: str | dt.datetime
) -> tuple[dt.datetime, dt.datetime]:
    start = parse_timestamp(start_time, "start_time")
    end = parse_timestamp(end_time, "end_time")
    try:
        ordered = end > start
    except TypeError:
        raise ValidationError("start_time and end_time must both carry a UTC offset or neither") from None
    if not ordered:
        raise ValidationError("End time must be after start time")
    return start, end


def validate_booking_details(
    booking_type: str | BookingType,
    training_level: str | TrainingLevel | None = None,
    consult_type: str | ConsultType | None = None,
) -> dict[str, str | None]:
    """Check the type-specific booking fields and return them normalised."""

    kind = coerce(BookingType, booking_type)
    level = None
    consult = None
    if training_level:
        if kind is not BookingType.DOG_TRAINING:
            raise ValidationError("training_level only applies to dog_training bookings")
        level = coerce(TrainingLevel, training_level).value
    if consult_type:
        if kind is not BookingType.CONSULT:
            raise ValidationError("consult_type only applies to consult bookings")
        consult = coerce(ConsultType, consult_type).value
    return {"booking_type": kind.value, "training_level": level, "consult_type": consult}
