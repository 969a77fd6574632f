from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Protocol, TypeVar

from .errors import ValidationError


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError("Booking times must carry a timezone offset.")
        start = _floor_to_second(self.start)
        end = _floor_to_second(self.end)
        if start >= end:
            raise ValidationError("End time must be after start time.")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    def overlaps(self, other: "TimeWindow") -> bool:
        return has_time_overlap(self.start, self.end, other.start, other.end)


class Windowed(Protocol):
    start: datetime
    end: datetime


def has_time_overlap(new_start: datetime, new_end: datetime, exist_start: datetime, exist_end: datetime) -> bool:
    """Return True when two time intervals share any instant.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap
    and a vehicle can be handed straight to the next driver.
    """
    if new_start >= new_end:
        raise ValidationError("new_start must be earlier than new_end.")
    if exist_start >= exist_end:
        raise ValidationError("exist_start must be earlier than exist_end.")

    return new_start < exist_end and exist_start < new_end


T = TypeVar("T", bound=Windowed)


def find_conflicts(window: TimeWindow, existing: Iterable[T]) -> list[T]:
    """Return every item of ``existing`` whose window overlaps ``window``."""
    return [item for item in existing if has_time_overlap(window.start, window.end, item.start, item.end)]


def can_reserve(window: TimeWindow, existing: Iterable[Windowed]) -> bool:
    """Return True if the requested window does not overlap any existing one."""
    return not find_conflicts(window, existing)


def parse_instant(value: object, field: str) -> datetime:
    """Parse an ISO-8601 timestamp that must carry an offset."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise ValidationError(f"{field} is required.")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as error:
            raise ValidationError(f"{field} is not a valid ISO-8601 timestamp.") from error

    if parsed.tzinfo is None:
        raise ValidationError(f"{field} must include a timezone offset.")
    return parsed.astimezone(timezone.utc)


def _floor_to_second(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(microsecond=0)
