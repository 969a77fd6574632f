from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar
import shutil
import threading
from uuid import uuid4

import yaml

from .errors import StorageError
from .lifecycle import BLOCKING_STATUSES, BookingStatus

VEHICLE_STATUSES = ("available", "reserved", "maintenance", "out_of_service", "retired")
T = TypeVar("T")

UNBOOKABLE_VEHICLE_STATUSES = frozenset({"maintenance", "out_of_service", "retired"})

DEMO_ORGANIZATION_ID = "org-demo"


def _format_instant(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def _parse_instant(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _required_instant(value: Any) -> datetime:
    parsed = _parse_instant(value)
    if parsed is None:
        raise ValueError("timestamp is empty")
    return parsed


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None


@dataclass(frozen=True)
class VehicleRecord:
    vehicle_id: str
    organization_id: str
    make: str
    model: str
    license_plate: str
    seats: int
    status: str
    created_at: datetime
    updated_at: datetime

    @property
    def title(self) -> str:
        return f"{self.make} {self.model}".strip()

    @property
    def is_bookable(self) -> bool:
        return self.status not in UNBOOKABLE_VEHICLE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "vehicle_id": self.vehicle_id,
            "organization_id": self.organization_id,
            "make": self.make,
            "model": self.model,
            "license_plate": self.license_plate,
            "seats": self.seats,
            "status": self.status,
            "created_at": _format_instant(self.created_at),
            "updated_at": _format_instant(self.updated_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "VehicleRecord":
        return VehicleRecord(
            vehicle_id=str(data["vehicle_id"]),
            organization_id=str(data["organization_id"]),
            make=str(data.get("make", "")),
            model=str(data.get("model", "")),
            license_plate=str(data.get("license_plate", "")),
            seats=int(data.get("seats", 1)),
            status=str(data.get("status", "available")),
            created_at=_required_instant(data["created_at"]),
            updated_at=_required_instant(data["updated_at"]),
        )


@dataclass(frozen=True)
class BookingRecord:
    booking_id: str
    vehicle_id: str
    requester_id: str
    organization_id: str
    start: datetime
    end: datetime
    status: BookingStatus
    created_at: datetime
    updated_at: datetime
    reason: str | None = None
    destination: str | None = None
    passenger_count: int = 1
    notes: str | None = None
    status_changed_by: str | None = None
    status_changed_at: datetime | None = None

    @property
    def is_blocking(self) -> bool:
        return self.status in BLOCKING_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "vehicle_id": self.vehicle_id,
            "requester_id": self.requester_id,
            "organization_id": self.organization_id,
            "start": _format_instant(self.start),
            "end": _format_instant(self.end),
            "status": self.status.value,
            "reason": self.reason,
            "destination": self.destination,
            "passenger_count": self.passenger_count,
            "notes": self.notes,
            "status_changed_by": self.status_changed_by,
            "status_changed_at": _format_instant(self.status_changed_at),
            "created_at": _format_instant(self.created_at),
            "updated_at": _format_instant(self.updated_at),
        }

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.booking_id,
            "status": self.status.value,
            "start_time": _format_instant(self.start),
            "end_time": _format_instant(self.end),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "BookingRecord":
        return BookingRecord(
            booking_id=str(data["booking_id"]),
            vehicle_id=str(data["vehicle_id"]),
            requester_id=str(data["requester_id"]),
            organization_id=str(data["organization_id"]),
            start=_required_instant(data["start"]),
            end=_required_instant(data["end"]),
            status=BookingStatus.parse(data.get("status", BookingStatus.PENDING.value)),
            reason=_optional_str(data.get("reason")),
            destination=_optional_str(data.get("destination")),
            passenger_count=int(data.get("passenger_count") or 1),
            notes=_optional_str(data.get("notes")),
            status_changed_by=_optional_str(data.get("status_changed_by")),
            status_changed_at=_parse_instant(data.get("status_changed_at")),
            created_at=_required_instant(data["created_at"]),
            updated_at=_required_instant(data["updated_at"]),
        )


class FleetYamlRepository:
    """YAML-file backed store for vehicles, bookings and the event log.

    The repository knows nothing about roles or lifecycle rules; it only
    guarantees that each file update is atomic on disk and, through
    ``self.lock``, inside the process.
    """

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.organizations_file = self.base_dir / "organizations.yaml"
        self.vehicles_file = self.base_dir / "vehicles.yaml"
        self.bookings_file = self.base_dir / "bookings.yaml"
        self.log_file = self.base_dir / "booking_events.yaml"
        self.lock = threading.RLock()
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.organizations_file, self.vehicles_file, self.bookings_file, self.log_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path != self.log_file:
                self.log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise StorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            pass

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self.log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = _format_instant(event_time or datetime.now(timezone.utc))
        with self.lock:
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)

    def get_events(self) -> list[dict[str, Any]]:
        return self._read_yaml_list(self.log_file)

    def _load_records(self, path: Path, loader: Callable[[dict[str, Any]], T]) -> list[T]:
        records: list[T] = []
        for row in self._read_yaml_list(path):
            try:
                records.append(loader(row))
            except (KeyError, TypeError, ValueError) as error:
                self.log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "row": {str(key): str(value) for key, value in row.items()},
                        "reason": f"invalid record: {error!r}",
                    },
                )
        return records

    # Organizations

    def get_organization(self, organization_id: str) -> dict[str, Any] | None:
        for row in self._read_yaml_list(self.organizations_file):
            if str(row.get("organization_id")) == organization_id:
                return row
        return None

    def save_organization(self, organization_id: str, name: str, max_vehicles: int | None = None) -> dict[str, Any]:
        entry = {"organization_id": organization_id, "name": name, "max_vehicles": max_vehicles}
        with self.lock:
            rows = [row for row in self._read_yaml_list(self.organizations_file) if str(row.get("organization_id")) != organization_id]
            rows.append(entry)
            self._write_yaml_list(self.organizations_file, rows)
        return entry

    # Vehicles

    def get_vehicles(self, organization_id: str | None = None) -> list[VehicleRecord]:
        records = self._load_records(self.vehicles_file, VehicleRecord.from_dict)
        if organization_id is None:
            return records
        return [record for record in records if record.organization_id == organization_id]

    def get_vehicle(self, vehicle_id: str) -> VehicleRecord | None:
        return next((record for record in self.get_vehicles() if record.vehicle_id == vehicle_id), None)

    def add_vehicle(self, record: VehicleRecord) -> VehicleRecord:
        with self.lock:
            rows = self._read_yaml_list(self.vehicles_file)
            rows.append(record.to_dict())
            self._write_yaml_list(self.vehicles_file, rows)
        return record

    def save_vehicle(self, record: VehicleRecord) -> VehicleRecord:
        with self.lock:
            rows = self._read_yaml_list(self.vehicles_file)
            index = _find_index(rows, "vehicle_id", record.vehicle_id)
            if index < 0:
                raise StorageError(f"vehicle {record.vehicle_id} is not stored")
            rows[index] = record.to_dict()
            self._write_yaml_list(self.vehicles_file, rows)
        return record

    # Bookings

    def get_bookings(self, organization_id: str | None = None) -> list[BookingRecord]:
        records = self._load_records(self.bookings_file, BookingRecord.from_dict)
        if organization_id is None:
            return records
        return [record for record in records if record.organization_id == organization_id]

    def get_booking(self, booking_id: str) -> BookingRecord | None:
        return next((record for record in self.get_bookings() if record.booking_id == booking_id), None)

    def get_blocking_bookings(self, vehicle_id: str, exclude_booking_id: str | None = None) -> list[BookingRecord]:
        return [
            record
            for record in self.get_bookings()
            if record.vehicle_id == vehicle_id and record.is_blocking and record.booking_id != exclude_booking_id
        ]

    def insert_booking(self, record: BookingRecord) -> BookingRecord:
        with self.lock:
            rows = self._read_yaml_list(self.bookings_file)
            if _find_index(rows, "booking_id", record.booking_id) >= 0:
                raise StorageError(f"booking {record.booking_id} already exists")
            rows.append(record.to_dict())
            self._write_yaml_list(self.bookings_file, rows)
        return record

    def save_booking(self, record: BookingRecord) -> BookingRecord:
        with self.lock:
            rows = self._read_yaml_list(self.bookings_file)
            index = _find_index(rows, "booking_id", record.booking_id)
            if index < 0:
                raise StorageError(f"booking {record.booking_id} is not stored")
            rows[index] = record.to_dict()
            self._write_yaml_list(self.bookings_file, rows)
        return record

    def seed_demo_fleet(self, now: datetime | None = None, overwrite: bool = True) -> list[VehicleRecord]:
        """Write a small deterministic organization with vehicles and bookings."""
        effective_now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(microsecond=0)
        vehicles = generate_demo_vehicles(DEMO_ORGANIZATION_ID, effective_now)
        bookings = generate_demo_bookings(vehicles, effective_now)

        with self.lock:
            if overwrite:
                self._write_yaml_list(self.vehicles_file, [])
                self._write_yaml_list(self.bookings_file, [])
            self.save_organization(DEMO_ORGANIZATION_ID, "Demo Fleet", max_vehicles=10)

            vehicle_rows = self._read_yaml_list(self.vehicles_file)
            vehicle_rows.extend(record.to_dict() for record in vehicles)
            self._write_yaml_list(self.vehicles_file, vehicle_rows)

            booking_rows = self._read_yaml_list(self.bookings_file)
            booking_rows.extend(record.to_dict() for record in bookings)
            self._write_yaml_list(self.bookings_file, booking_rows)

        self.log_event(
            "TEST_DATA_GENERATED",
            {
                "organization_id": DEMO_ORGANIZATION_ID,
                "vehicles": len(vehicles),
                "bookings": len(bookings),
                "overwrite": overwrite,
            },
            effective_now,
        )
        return vehicles


def generate_demo_vehicles(organization_id: str, now: datetime) -> list[VehicleRecord]:
    catalogue = [
        ("car-1", "Toyota", "Corolla", "1-ABC-123", 5, "available"),
        ("car-2", "Volkswagen", "Golf", "1-DEF-456", 5, "available"),
        ("van-1", "Ford", "Transit", "1-GHI-789", 9, "available"),
        ("car-3", "Renault", "Zoe", "1-JKL-012", 4, "maintenance"),
    ]
    return [
        VehicleRecord(
            vehicle_id=vehicle_id,
            organization_id=organization_id,
            make=make,
            model=model,
            license_plate=plate,
            seats=seats,
            status=status,
            created_at=now,
            updated_at=now,
        )
        for vehicle_id, make, model, plate, seats, status in catalogue
    ]


def generate_demo_bookings(vehicles: Iterable[VehicleRecord], now: datetime) -> list[BookingRecord]:
    day = now.replace(hour=0, minute=0, second=0) + timedelta(days=1)
    bookings: list[BookingRecord] = []
    for offset, vehicle in enumerate(record for record in vehicles if record.is_bookable):
        start = day + timedelta(days=offset, hours=9)
        record = BookingRecord(
            booking_id=str(uuid4()),
            vehicle_id=vehicle.vehicle_id,
            requester_id="demo-driver",
            organization_id=vehicle.organization_id,
            start=start,
            end=start + timedelta(hours=3),
            status=BookingStatus.PENDING,
            created_at=now,
            updated_at=now,
            reason="Client visit",
        )
        if offset % 2 == 0:
            record = replace(
                record,
                status=BookingStatus.APPROVED,
                status_changed_by="demo-manager",
                status_changed_at=now,
            )
        bookings.append(record)
    return bookings


def _find_index(rows: list[dict[str, Any]], key: str, value: str) -> int:
    for index, row in enumerate(rows):
        if str(row.get(key)) == value:
            return index
    return -1
