from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta, timezone, tzinfo
from typing import Any

import holidays as pyholidays

from .errors import ValidationError
from .roles import Action, Actor, authorize, is_allowed
from .yaml_store import BookingRecord, FleetYamlRepository

DEFAULT_MAX_DAYS = 92
_HOLIDAY_CACHE: dict[tuple[str, int], dict[date, str]] = {}


@dataclass(frozen=True)
class CalendarEntry:
    booking_id: str
    vehicle_id: str
    title: str
    start: str
    end: str
    status: str
    reason: str | None
    destination: str | None
    requester_id: str
    is_own: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "vehicle_id": self.vehicle_id,
            "title": self.title,
            "start": self.start,
            "end": self.end,
            "status": self.status,
            "reason": self.reason,
            "destination": self.destination,
            "requester_id": self.requester_id,
            "is_own": self.is_own,
        }


@dataclass(frozen=True)
class CalendarDay:
    day: date
    holiday: str | None = None
    entries: list[CalendarEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "holiday": self.holiday,
            "bookings": [entry.to_dict() for entry in self.entries],
        }


def project_calendar(
    repository: FleetYamlRepository,
    actor: Actor,
    range_start: date,
    range_end: date,
    requester_filter: str | None = None,
    tz: tzinfo = timezone.utc,
    holiday_country: str | None = None,
    max_days: int = DEFAULT_MAX_DAYS,
) -> list[CalendarDay]:
    """Bucket the caller's visible bookings into one entry per day of the range.

    A booking spanning several days is listed under every day from its start
    date to its end date, both inclusive, in the ``tz`` calendar. The range
    itself is inclusive on both ends.
    """
    if range_start > range_end:
        raise ValidationError("start must not be after end.")
    span = (range_end - range_start).days + 1
    if span > max_days:
        raise ValidationError(f"Calendar range may cover at most {max_days} days.")

    can_view_all = is_allowed(actor, Action.VIEW_ALL)
    if requester_filter and requester_filter != actor.actor_id and not can_view_all:
        authorize(actor, Action.VIEW_ALL)
    if not can_view_all:
        requester_filter = actor.actor_id

    titles = {vehicle.vehicle_id: vehicle.title for vehicle in repository.get_vehicles(actor.organization_id)}

    spans: list[tuple[date, date, BookingRecord]] = []
    for record in repository.get_bookings(actor.organization_id):
        if requester_filter and record.requester_id != requester_filter:
            continue
        first_day = record.start.astimezone(tz).date()
        last_day = record.end.astimezone(tz).date()
        if first_day > range_end or last_day < range_start:
            continue
        spans.append((first_day, last_day, record))
    spans.sort(key=lambda item: (item[2].start, item[2].booking_id))

    holiday_names = _holiday_names(holiday_country, range_start, range_end)
    days: list[CalendarDay] = []
    for offset in range(span):
        current = range_start + timedelta(days=offset)
        entries = [
            _to_entry(record, titles.get(record.vehicle_id, record.vehicle_id), actor)
            for first_day, last_day, record in spans
            if first_day <= current <= last_day
        ]
        days.append(CalendarDay(day=current, holiday=holiday_names.get(current), entries=entries))
    return days


def _to_entry(record: BookingRecord, title: str, actor: Actor) -> CalendarEntry:
    payload = record.to_dict()
    return CalendarEntry(
        booking_id=record.booking_id,
        vehicle_id=record.vehicle_id,
        title=title,
        start=payload["start"],
        end=payload["end"],
        status=record.status.value,
        reason=record.reason,
        destination=record.destination,
        requester_id=record.requester_id,
        is_own=record.requester_id == actor.actor_id,
    )


def check_holiday_country(country: str | None) -> None:
    """Raise ValidationError if the holidays package has no calendar for ``country``."""
    if country:
        _country_holidays(country, date.today().year)


def _holiday_names(country: str | None, range_start: date, range_end: date) -> dict[date, str]:
    if not country:
        return {}

    names: dict[date, str] = {}
    for year in range(range_start.year, range_end.year + 1):
        key = (country.upper(), year)
        if key not in _HOLIDAY_CACHE:
            _HOLIDAY_CACHE[key] = _country_holidays(country, year)
        names.update(_HOLIDAY_CACHE[key])
    return names


def _country_holidays(country: str, year: int) -> dict[date, str]:
    try:
        holiday_map = pyholidays.country_holidays(country.upper(), years=[year])
    except NotImplementedError as error:
        raise ValidationError(f"Unsupported holiday country: {country}") from error
    return dict(holiday_map.items())
