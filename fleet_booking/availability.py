from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .booking import TimeWindow, find_conflicts
from .errors import NotFoundError
from .roles import Actor
from .yaml_store import BookingRecord, FleetYamlRepository, VehicleRecord


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    conflicts: list[BookingRecord] = field(default_factory=list)
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "reason": self.reason,
            "conflicts": [record.to_summary() for record in self.conflicts],
        }


def get_tenant_vehicle(repository: FleetYamlRepository, actor: Actor, vehicle_id: str) -> VehicleRecord:
    """Return the vehicle if it belongs to the actor's organization."""
    vehicle = repository.get_vehicle(vehicle_id)
    if vehicle is None or vehicle.organization_id != actor.organization_id:
        raise NotFoundError("Vehicle not found.")
    return vehicle


def check_availability(
    repository: FleetYamlRepository,
    actor: Actor,
    vehicle_id: str,
    window: TimeWindow,
    exclude_booking_id: str | None = None,
) -> AvailabilityResult:
    """Classify ``window`` as free or conflicting for one vehicle.

    Outside the coordinator's per-vehicle lock the answer is only a preview;
    the coordinator repeats this check before committing.
    """
    vehicle = get_tenant_vehicle(repository, actor, vehicle_id)

    blocking = [
        record
        for record in repository.get_blocking_bookings(vehicle.vehicle_id, exclude_booking_id)
        if record.organization_id == actor.organization_id
    ]
    conflicts = sorted(find_conflicts(window, blocking), key=lambda record: record.start)
    if conflicts:
        return AvailabilityResult(
            available=False,
            conflicts=conflicts,
            reason="Vehicle is already booked during this time period.",
        )
    if not vehicle.is_bookable:
        return AvailabilityResult(available=False, reason=f"Vehicle is {vehicle.status}.")
    return AvailabilityResult(available=True)
