from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping
import threading
from uuid import uuid4

from . import fleet
from .availability import AvailabilityResult, check_availability, get_tenant_vehicle
from .booking import TimeWindow, has_time_overlap, parse_instant
from .errors import ConflictError, NotFoundError, ValidationError
from .lifecycle import BLOCKING_STATUSES, INITIAL_STATUS, BookingStatus, next_status
from .roles import Action, Actor, authorize, is_allowed
from .yaml_store import BookingRecord, FleetYamlRepository, VehicleRecord

DEFAULT_MAX_PASSENGERS = 50
EDITABLE_FIELDS = ("start", "end", "reason", "destination", "passenger_count", "notes")
PROTECTED_FIELDS = ("status", "status_changed_by", "status_changed_at")
LIST_FILTERS = ("all", "upcoming", "past")

_TRANSITION_EVENTS = {
    Action.APPROVE: "BOOKING_APPROVED",
    Action.REJECT: "BOOKING_REJECTED",
    Action.COMPLETE: "BOOKING_COMPLETED",
    Action.CANCEL: "BOOKING_CANCELLED",
}


@dataclass(frozen=True)
class BookingMetadata:
    reason: str | None = None
    destination: str | None = None
    passenger_count: int = 1
    notes: str | None = None

    @staticmethod
    def from_payload(payload: Mapping[str, Any], max_passengers: int = DEFAULT_MAX_PASSENGERS) -> "BookingMetadata":
        return BookingMetadata(
            reason=_clean_text(payload.get("reason")),
            destination=_clean_text(payload.get("destination")),
            passenger_count=_parse_passenger_count(payload.get("passenger_count"), max_passengers),
            notes=_clean_text(payload.get("notes")),
        )


@dataclass(frozen=True)
class BookingOutcome:
    booking: BookingRecord
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BookingPage:
    items: list[BookingRecord]
    page: int
    limit: int
    total: int


class VehicleLocks:
    """One mutex per vehicle id; the sequential point for check-and-commit."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, vehicle_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(vehicle_id, threading.Lock())
        with lock:
            yield


class BookingCoordinator:
    def __init__(
        self,
        repository: FleetYamlRepository,
        now_provider: Callable[[], datetime] | None = None,
        max_passengers: int = DEFAULT_MAX_PASSENGERS,
    ) -> None:
        self.repository = repository
        self.max_passengers = max_passengers
        self._clock = now_provider or (lambda: datetime.now(timezone.utc))
        self._locks = VehicleLocks()

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            raise ValidationError("now_provider must return timezone-aware datetimes.")
        return now.astimezone(timezone.utc)

    # Reads

    def preview_availability(
        self,
        actor: Actor,
        vehicle_id: str,
        window: TimeWindow,
        exclude_booking_id: str | None = None,
    ) -> AvailabilityResult:
        return check_availability(self.repository, actor, vehicle_id, window, exclude_booking_id)

    def get_reservation(self, actor: Actor, booking_id: str) -> BookingRecord:
        record = self._get_tenant_booking(actor, booking_id)
        if record.requester_id != actor.actor_id and not is_allowed(actor, Action.VIEW_ALL):
            raise NotFoundError("Booking not found.")
        return record

    def list_reservations(
        self,
        actor: Actor,
        *,
        status: str | None = None,
        vehicle_id: str | None = None,
        requester_id: str | None = None,
        when: str = "all",
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        limit: int = 50,
        max_limit: int = 100,
    ) -> BookingPage:
        if when not in LIST_FILTERS:
            raise ValidationError(f"filter must be one of {', '.join(LIST_FILTERS)}.")

        can_view_all = is_allowed(actor, Action.VIEW_ALL)
        if requester_id and requester_id != actor.actor_id and not can_view_all:
            authorize(actor, Action.VIEW_ALL)
        if not can_view_all:
            requester_id = actor.actor_id

        wanted_status = BookingStatus.parse(status) if status else None
        now = self._now()

        records = self.repository.get_bookings(actor.organization_id)
        if requester_id:
            records = [record for record in records if record.requester_id == requester_id]
        if vehicle_id:
            records = [record for record in records if record.vehicle_id == vehicle_id]
        if wanted_status is not None:
            records = [record for record in records if record.status == wanted_status]

        if start is not None and end is not None:
            window = TimeWindow(start, end)
            records = [record for record in records if has_time_overlap(window.start, window.end, record.start, record.end)]
        else:
            if start is not None:
                records = [record for record in records if record.start >= start]
            if end is not None:
                records = [record for record in records if record.end <= end]

        if when == "upcoming":
            records = [record for record in records if record.start >= now]
        elif when == "past":
            records = [record for record in records if record.end < now]

        records.sort(key=lambda record: record.start, reverse=True)
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), max_limit)
        offset = (page - 1) * limit
        return BookingPage(items=records[offset : offset + limit], page=page, limit=limit, total=len(records))

    # Writes

    def create_reservation(
        self,
        actor: Actor,
        vehicle_id: str,
        window: TimeWindow,
        metadata: BookingMetadata | None = None,
    ) -> BookingOutcome:
        authorize(actor, Action.CREATE)
        metadata = metadata or BookingMetadata()
        _check_passenger_count(metadata.passenger_count, self.max_passengers)

        now = self._now()
        if window.start < now:
            raise ValidationError("Cannot book in the past.")

        get_tenant_vehicle(self.repository, actor, vehicle_id)
        with self._locks.hold(vehicle_id):
            vehicle = get_tenant_vehicle(self.repository, actor, vehicle_id)
            if not vehicle.is_bookable:
                raise ValidationError(f"Vehicle is not available for booking (status: {vehicle.status}).")

            result = check_availability(self.repository, actor, vehicle_id, window)
            if result.conflicts:
                raise _conflict(result)

            record = BookingRecord(
                booking_id=str(uuid4()),
                vehicle_id=vehicle.vehicle_id,
                requester_id=actor.actor_id,
                organization_id=vehicle.organization_id,
                start=window.start,
                end=window.end,
                status=INITIAL_STATUS,
                created_at=now,
                updated_at=now,
                reason=metadata.reason,
                destination=metadata.destination,
                passenger_count=metadata.passenger_count,
                notes=metadata.notes,
            )
            self.repository.insert_booking(record)

        self.repository.log_event(
            "BOOKING_CREATED",
            {
                "booking_id": record.booking_id,
                "vehicle_id": record.vehicle_id,
                "actor_id": actor.actor_id,
                "start": record.to_dict()["start"],
                "end": record.to_dict()["end"],
            },
            now,
        )
        return BookingOutcome(booking=record, warnings=_seat_warnings(vehicle, record.passenger_count))

    def update_reservation(self, actor: Actor, booking_id: str, changes: Mapping[str, Any]) -> BookingOutcome:
        """Edit non-status fields; a changed window is re-checked under the vehicle lock."""
        protected = [name for name in PROTECTED_FIELDS if name in changes]
        if protected:
            raise ValidationError(
                "Status changes must use the approve, reject, complete or cancel operations, not an edit."
            )

        existing = self._get_tenant_booking(actor, booking_id)
        now = self._now()
        with self._locks.hold(existing.vehicle_id):
            current = self._get_tenant_booking(actor, booking_id)
            is_owner = current.requester_id == actor.actor_id and current.status in BLOCKING_STATUSES
            authorize(actor, Action.EDIT, is_owner=is_owner)

            start = parse_instant(changes["start"], "start_time") if changes.get("start") is not None else current.start
            end = parse_instant(changes["end"], "end_time") if changes.get("end") is not None else current.end
            window = TimeWindow(start, end)
            window_changed = (window.start, window.end) != (current.start, current.end)

            if window_changed and window.start != current.start and window.start < now:
                raise ValidationError("Cannot move a booking into the past.")
            if window_changed and current.is_blocking:
                result = check_availability(self.repository, actor, current.vehicle_id, window, current.booking_id)
                if result.conflicts:
                    raise _conflict(result)

            updates: dict[str, Any] = {"start": window.start, "end": window.end, "updated_at": now}
            for name in ("reason", "destination", "notes"):
                if name in changes:
                    updates[name] = _clean_text(changes[name])
            if "passenger_count" in changes:
                updates["passenger_count"] = _parse_passenger_count(changes["passenger_count"], self.max_passengers)

            updated = replace(current, **updates)
            self.repository.save_booking(updated)

        self.repository.log_event(
            "BOOKING_UPDATED",
            {
                "booking_id": booking_id,
                "actor_id": actor.actor_id,
                "fields": sorted(name for name in EDITABLE_FIELDS if name in changes),
                "start": updated.to_dict()["start"],
                "end": updated.to_dict()["end"],
            },
            now,
        )
        vehicle = self.repository.get_vehicle(updated.vehicle_id)
        warnings = _seat_warnings(vehicle, updated.passenger_count) if vehicle else []
        return BookingOutcome(booking=updated, warnings=warnings)

    def transition_reservation(
        self,
        actor: Actor,
        booking_id: str,
        action: Action,
        reason: str | None = None,
    ) -> BookingRecord:
        existing = self._get_tenant_booking(actor, booking_id)
        now = self._now()
        with self._locks.hold(existing.vehicle_id):
            current = self._get_tenant_booking(actor, booking_id)
            authorize(actor, action, is_owner=current.requester_id == actor.actor_id)
            target = next_status(current.status, action)

            updates: dict[str, Any] = {
                "status": target,
                "status_changed_by": actor.actor_id,
                "status_changed_at": now,
                "updated_at": now,
            }
            reason = _clean_text(reason)
            if action is Action.REJECT and reason:
                updates["notes"] = f"Rejection reason: {reason}"

            updated = replace(current, **updates)
            self.repository.save_booking(updated)

        self.repository.log_event(
            _TRANSITION_EVENTS[action],
            {
                "booking_id": booking_id,
                "actor_id": actor.actor_id,
                "from_status": current.status.value,
                "to_status": target.value,
                "reason": reason,
            },
            now,
        )
        return updated

    def approve(self, actor: Actor, booking_id: str) -> BookingRecord:
        return self.transition_reservation(actor, booking_id, Action.APPROVE)

    def reject(self, actor: Actor, booking_id: str, reason: str | None = None) -> BookingRecord:
        return self.transition_reservation(actor, booking_id, Action.REJECT, reason=reason)

    def complete(self, actor: Actor, booking_id: str) -> BookingRecord:
        return self.transition_reservation(actor, booking_id, Action.COMPLETE)

    def cancel(self, actor: Actor, booking_id: str) -> BookingRecord:
        return self.transition_reservation(actor, booking_id, Action.CANCEL)

    # Vehicle changes that can make a vehicle unbookable share the vehicle lock
    # with booking writes.

    def update_vehicle(self, actor: Actor, vehicle_id: str, payload: Mapping[str, Any]) -> VehicleRecord:
        with self._locks.hold(vehicle_id):
            return fleet.update_vehicle(self.repository, actor, vehicle_id, payload, now=self._now())

    def change_vehicle_status(self, actor: Actor, vehicle_id: str, status: str) -> VehicleRecord:
        with self._locks.hold(vehicle_id):
            return fleet.set_vehicle_status(self.repository, actor, vehicle_id, status, now=self._now())

    def retire_vehicle(self, actor: Actor, vehicle_id: str) -> VehicleRecord:
        with self._locks.hold(vehicle_id):
            return fleet.retire_vehicle(self.repository, actor, vehicle_id, now=self._now())

    def _get_tenant_booking(self, actor: Actor, booking_id: str) -> BookingRecord:
        record = self.repository.get_booking(booking_id)
        if record is None or record.organization_id != actor.organization_id:
            raise NotFoundError("Booking not found.")
        return record


def _conflict(result: AvailabilityResult) -> ConflictError:
    return ConflictError(
        "Vehicle is already booked during this time period.",
        conflicts=[record.to_summary() for record in result.conflicts],
    )


def _seat_warnings(vehicle: VehicleRecord, passenger_count: int) -> list[str]:
    if passenger_count > vehicle.seats:
        return [f"Passenger count ({passenger_count}) exceeds the {vehicle.seats} seats of {vehicle.title}."]
    return []


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_passenger_count(value: Any, max_passengers: int) -> int:
    if value is None or value == "":
        return 1
    if isinstance(value, bool):
        raise ValidationError("passenger_count must be a whole number.")
    try:
        count = int(value)
    except (TypeError, ValueError) as error:
        raise ValidationError("passenger_count must be a whole number.") from error
    _check_passenger_count(count, max_passengers)
    return count


def _check_passenger_count(count: int, max_passengers: int) -> None:
    if count < 1 or count > max_passengers:
        raise ValidationError(f"passenger_count must be between 1 and {max_passengers}.")
