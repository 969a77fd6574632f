from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import uuid4

from .availability import get_tenant_vehicle
from .errors import ConflictError, ValidationError
from .lifecycle import BookingStatus
from .roles import Action, Actor, authorize
from .yaml_store import UNBOOKABLE_VEHICLE_STATUSES, VEHICLE_STATUSES, FleetYamlRepository, VehicleRecord

MAX_SEATS = 50
EDITABLE_VEHICLE_FIELDS = ("make", "model", "license_plate", "seats", "status")


@dataclass(frozen=True)
class FleetStatistics:
    total_vehicles: int
    vehicles_by_status: dict[str, int]
    month_start: datetime
    monthly_bookings: int
    bookings_by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_vehicles": self.total_vehicles,
            "vehicles_by_status": self.vehicles_by_status,
            "month_start": self.month_start.isoformat(timespec="seconds"),
            "monthly_bookings": self.monthly_bookings,
            "bookings_by_status": self.bookings_by_status,
        }


def list_vehicles(repository: FleetYamlRepository, actor: Actor, status: str | None = None) -> list[VehicleRecord]:
    vehicles = repository.get_vehicles(actor.organization_id)
    if status:
        vehicles = [record for record in vehicles if record.status == status]
    return sorted(vehicles, key=lambda record: (record.make, record.model, record.license_plate))


def get_vehicle(repository: FleetYamlRepository, actor: Actor, vehicle_id: str) -> VehicleRecord:
    return get_tenant_vehicle(repository, actor, vehicle_id)


def register_vehicle(
    repository: FleetYamlRepository,
    actor: Actor,
    payload: Mapping[str, Any],
    now: datetime,
) -> VehicleRecord:
    """Add a vehicle to the actor's organization.

    Vehicle ids are always generated here; a client-supplied id is ignored so
    that one organization can never learn which ids another one uses.
    """
    authorize(actor, Action.MANAGE_FLEET)

    make = _required_text(payload, "make")
    model = _required_text(payload, "model")
    plate = _normalize_plate(payload.get("license_plate"))
    if not make or not model or not plate:
        raise ValidationError("Missing required fields: make, model, license_plate, seats")
    seats = _check_seats(payload.get("seats"))
    status = _check_status(payload.get("status") or "available")

    with repository.lock:
        existing = repository.get_vehicles(actor.organization_id)
        _check_unique_plate(existing, plate)

        organization = repository.get_organization(actor.organization_id) or {}
        limit = organization.get("max_vehicles")
        if limit is not None and len(existing) >= int(limit):
            raise ValidationError(f"Your plan allows at most {limit} vehicles.")

        record = VehicleRecord(
            vehicle_id=str(uuid4()),
            organization_id=actor.organization_id,
            make=make,
            model=model,
            license_plate=plate,
            seats=seats,
            status=status,
            created_at=now,
            updated_at=now,
        )
        repository.add_vehicle(record)

    repository.log_event(
        "VEHICLE_REGISTERED",
        {"vehicle_id": record.vehicle_id, "actor_id": actor.actor_id, "license_plate": plate},
        now,
    )
    return record


def update_vehicle(
    repository: FleetYamlRepository,
    actor: Actor,
    vehicle_id: str,
    payload: Mapping[str, Any],
    now: datetime,
) -> VehicleRecord:
    """Edit make, model, plate, seats or status; other keys are ignored."""
    authorize(actor, Action.MANAGE_FLEET)

    updates: dict[str, Any] = {}
    if "make" in payload:
        updates["make"] = _required_text(payload, "make") or _missing("make")
    if "model" in payload:
        updates["model"] = _required_text(payload, "model") or _missing("model")
    if "license_plate" in payload:
        updates["license_plate"] = _normalize_plate(payload["license_plate"]) or _missing("license_plate")
    if "seats" in payload:
        updates["seats"] = _check_seats(payload["seats"])
    if "status" in payload:
        updates["status"] = _check_status(payload["status"])

    with repository.lock:
        vehicle = get_tenant_vehicle(repository, actor, vehicle_id)
        if "license_plate" in updates and updates["license_plate"] != vehicle.license_plate:
            others = [record for record in repository.get_vehicles(actor.organization_id) if record.vehicle_id != vehicle_id]
            _check_unique_plate(others, updates["license_plate"])
        if "status" in updates:
            _check_no_active_bookings(repository, vehicle, updates["status"], now)

        updated = replace(vehicle, updated_at=now, **updates)
        repository.save_vehicle(updated)

    repository.log_event(
        "VEHICLE_UPDATED",
        {"vehicle_id": vehicle_id, "actor_id": actor.actor_id, "fields": sorted(updates)},
        now,
    )
    return updated


def set_vehicle_status(
    repository: FleetYamlRepository,
    actor: Actor,
    vehicle_id: str,
    status: str,
    now: datetime,
) -> VehicleRecord:
    """Change the vehicle's own status; bookings are never touched here.

    Moving to a status that cannot be booked is refused while the vehicle
    still has pending or approved bookings that have not ended.
    """
    authorize(actor, Action.MANAGE_FLEET)
    return _change_status(repository, actor, vehicle_id, _check_status(status), now)


def retire_vehicle(repository: FleetYamlRepository, actor: Actor, vehicle_id: str, now: datetime) -> VehicleRecord:
    authorize(actor, Action.RETIRE_VEHICLE)
    return _change_status(repository, actor, vehicle_id, "retired", now)


def fleet_statistics(repository: FleetYamlRepository, actor: Actor, now: datetime) -> FleetStatistics:
    """Vehicle counts by status and this month's bookings by status."""
    authorize(actor, Action.MANAGE_FLEET)

    vehicles = repository.get_vehicles(actor.organization_id)
    vehicles_by_status = {status: 0 for status in VEHICLE_STATUSES}
    for record in vehicles:
        vehicles_by_status[record.status] = vehicles_by_status.get(record.status, 0) + 1

    month_start = now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    bookings = [record for record in repository.get_bookings(actor.organization_id) if record.created_at >= month_start]
    bookings_by_status = {status.value: 0 for status in BookingStatus}
    for record in bookings:
        bookings_by_status[record.status.value] += 1

    return FleetStatistics(
        total_vehicles=len(vehicles),
        vehicles_by_status=vehicles_by_status,
        month_start=month_start,
        monthly_bookings=len(bookings),
        bookings_by_status=bookings_by_status,
    )


def _change_status(
    repository: FleetYamlRepository,
    actor: Actor,
    vehicle_id: str,
    status: str,
    now: datetime,
) -> VehicleRecord:
    with repository.lock:
        vehicle = get_tenant_vehicle(repository, actor, vehicle_id)
        _check_no_active_bookings(repository, vehicle, status, now)
        updated = replace(vehicle, status=status, updated_at=now)
        repository.save_vehicle(updated)

    repository.log_event(
        "VEHICLE_STATUS_CHANGED",
        {"vehicle_id": vehicle_id, "actor_id": actor.actor_id, "from_status": vehicle.status, "to_status": status},
        now,
    )
    return updated


def _check_no_active_bookings(repository: FleetYamlRepository, vehicle: VehicleRecord, status: str, now: datetime) -> None:
    if status not in UNBOOKABLE_VEHICLE_STATUSES:
        return
    active = sorted(
        (record for record in repository.get_blocking_bookings(vehicle.vehicle_id) if record.end > now),
        key=lambda record: record.start,
    )
    if active:
        raise ConflictError(
            f"Cannot set vehicle to {status} while it has active bookings. Cancel them first.",
            conflicts=[record.to_summary() for record in active],
        )


def _check_unique_plate(vehicles: list[VehicleRecord], plate: str) -> None:
    if any(record.license_plate == plate for record in vehicles):
        raise ConflictError(f"License plate {plate} is already registered.")


def _required_text(payload: Mapping[str, Any], name: str) -> str:
    return str(payload.get(name) or "").strip()


def _normalize_plate(value: Any) -> str:
    return str(value or "").strip().upper()


def _missing(name: str) -> str:
    raise ValidationError(f"{name} must not be empty.")


def _check_seats(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("seats must be a whole number.")
    try:
        seats = int(value)
    except (TypeError, ValueError) as error:
        raise ValidationError("seats must be a whole number.") from error
    if seats < 1 or seats > MAX_SEATS:
        raise ValidationError(f"seats must be between 1 and {MAX_SEATS}.")
    return seats


def _check_status(value: Any) -> str:
    status = str(value).strip().lower()
    if status not in VEHICLE_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(VEHICLE_STATUSES)}.")
    return status
