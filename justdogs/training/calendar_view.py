"""Projection of bookings and sessions onto calendar days.

Events are derived on every call from the current records and are never
stored. Each event id is ``"<type>-<entity id>"`` so the calendar can resolve
a clicked event back to the booking or session behind it.
"""

from __future__ import annotations

import calendar
import datetime as dt
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from .errors import ValidationError
from .lifecycle import parse_timestamp
from .models import BookingStatus, SessionStatus

ALL = "all"
BOOKING = "booking"
SESSION = "session"
DEFAULT_MAX_PER_DAY = 3

NEUTRAL_COLOR = "bg-gray-100 text-gray-800 border-l-2 border-gray-500"

BOOKING_COLORS: dict[str, str] = {
    BookingStatus.PENDING.value: "bg-yellow-100 text-yellow-800 border-l-2 border-yellow-500",
    BookingStatus.CONFIRMED.value: "bg-blue-100 text-blue-800 border-l-2 border-blue-500",
    BookingStatus.COMPLETED.value: "bg-green-100 text-green-800 border-l-2 border-green-500",
    BookingStatus.CANCELLED.value: "bg-red-100 text-red-800 border-l-2 border-red-500",
}

SESSION_COLORS: dict[str, str] = {
    SessionStatus.SCHEDULED.value: "bg-[rgb(0_32_96)] bg-opacity-10 text-[rgb(0_32_96)] border-l-2 border-[rgb(0_32_96)]",
    SessionStatus.IN_PROGRESS.value: "bg-[rgb(0_32_96)] text-white border-l-2 border-[rgb(0_24_72)]",
    SessionStatus.COMPLETED.value: "bg-green-100 text-green-800 border-l-2 border-green-500",
    SessionStatus.CANCELLED.value: "bg-red-100 text-red-800 border-l-2 border-red-500",
}

STATUS_FILTERS = frozenset(
    {ALL} | {status.value for status in BookingStatus} | {status.value for status in SessionStatus}
)

_TYPE_ORDER = {BOOKING: 0, SESSION: 1}


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    date: dt.date
    type: str
    status: str
    time: str
    color: str
    start: dt.datetime
    entity_id: int

    def sort_key(self) -> tuple:
        return (self.date, self.start.time(), _TYPE_ORDER[self.type], self.entity_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date.isoformat(),
            "type": self.type,
            "status": self.status,
            "time": self.time,
            "color": self.color,
            "start": self.start.isoformat(),
        }


@dataclass
class DayCell:
    date: dt.date
    in_month: bool
    events: list[CalendarEvent] = field(default_factory=list)
    hidden_count: int = 0

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "in_month": self.in_month,
            "events": [event.to_dict() for event in self.events],
            "hidden_count": self.hidden_count,
        }


def booking_color(status: str) -> str:
    return BOOKING_COLORS.get(status, NEUTRAL_COLOR)


def session_color(status: str) -> str:
    return SESSION_COLORS.get(status, NEUTRAL_COLOR)


def format_event_time(moment: dt.datetime) -> str:
    return moment.strftime("%I:%M %p")


def humanize_booking_type(booking_type: str) -> str:
    return booking_type.replace("_", " ").title()


def validate_status_filter(status_filter: str | None) -> str:
    value = status_filter or ALL
    if value not in STATUS_FILTERS:
        raise ValidationError(f"Unknown status filter '{value}'")
    return value


def _wanted(status: str, status_filter: str) -> bool:
    return status_filter == ALL or status == status_filter


def build_calendar_events(
    bookings: Iterable[Mapping],
    sessions: Iterable[Mapping],
    status_filter: str = ALL,
    dog_names: Mapping[int, str] | None = None,
) -> list[CalendarEvent]:
    """Return one event per booking and session passing ``status_filter``.

    The filter compares status strings exactly, so ``completed`` and
    ``cancelled`` select from both collections while ``pending`` only ever
    selects bookings.
    """

    status_filter = validate_status_filter(status_filter)
    dog_names = dog_names or {}
    events: list[CalendarEvent] = []
    for booking in bookings:
        if not _wanted(booking["status"], status_filter):
            continue
        start = parse_timestamp(booking["start_time"], "start_time")
        dog = dog_names.get(booking["dog_id"], "Unknown Dog")
        events.append(
            CalendarEvent(
                id=f"{BOOKING}-{booking['id']}",
                title=f"{dog} - {humanize_booking_type(booking['booking_type'])}",
                date=start.date(),
                type=BOOKING,
                status=booking["status"],
                time=format_event_time(start),
                color=booking_color(booking["status"]),
                start=start,
                entity_id=booking["id"],
            )
        )
    for session in sessions:
        if not _wanted(session["status"], status_filter):
            continue
        start = parse_timestamp(session["start_time"], "start_time")
        dog = dog_names.get(session["dog_id"], "Unknown Dog")
        events.append(
            CalendarEvent(
                id=f"{SESSION}-{session['id']}",
                title=f"{dog} - Session",
                date=start.date(),
                type=SESSION,
                status=session["status"],
                time=format_event_time(start),
                color=session_color(session["status"]),
                start=start,
                entity_id=session["id"],
            )
        )
    events.sort(key=CalendarEvent.sort_key)
    return events


def events_by_day(events: Iterable[CalendarEvent]) -> dict[dt.date, list[CalendarEvent]]:
    schedule: dict[dt.date, list[CalendarEvent]] = defaultdict(list)
    for event in sorted(events, key=CalendarEvent.sort_key):
        schedule[event.date].append(event)
    return dict(schedule)


def month_view(
    year: int,
    month: int,
    events: Iterable[CalendarEvent],
    *,
    max_per_day: int = DEFAULT_MAX_PER_DAY,
    first_weekday: int = calendar.SUNDAY,
) -> list[list[DayCell]]:
    """Lay ``events`` out as the weeks of a month grid.

    Each cell keeps at most ``max_per_day`` events and reports the rest in
    ``hidden_count``. Days without events still get a cell.
    """

    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    if max_per_day < 0:
        raise ValidationError("max_per_day cannot be negative")
    schedule = events_by_day(events)
    weeks: list[list[DayCell]] = []
    for week in calendar.Calendar(firstweekday=first_weekday).monthdatescalendar(year, month):
        row = []
        for day in week:
            day_events = schedule.get(day, [])
            row.append(
                DayCell(
                    date=day,
                    in_month=day.month == month,
                    events=day_events[:max_per_day],
                    hidden_count=max(len(day_events) - max_per_day, 0),
                )
            )
        weeks.append(row)
    return weeks


def split_event_id(event_id: str) -> tuple[str, int]:
    kind, _, raw_id = event_id.partition("-")
    if kind not in _TYPE_ORDER or not raw_id.isdigit():
        raise ValidationError(f"Malformed calendar event id '{event_id}'")
    return kind, int(raw_id)
