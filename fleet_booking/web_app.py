from __future__ import annotations

from datetime import date, datetime, timezone
import os
from pathlib import Path
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import Flask, jsonify, request

from .booking import TimeWindow, parse_instant
from .calendar_projection import check_holiday_country, project_calendar
from .coordinator import BookingCoordinator, BookingMetadata
from .errors import AuthenticationError, BookingError, ValidationError
from .fleet import fleet_statistics, get_vehicle, list_vehicles, register_vehicle
from .roles import Actor, Role
from .yaml_store import BookingRecord, FleetYamlRepository, VehicleRecord

DEFAULT_CONFIG: dict[str, Any] = {
    "HOLIDAY_COUNTRY": "BE",
    "CALENDAR_TIMEZONE": "UTC",
    "CALENDAR_MAX_DAYS": 92,
    "MAX_PASSENGERS": 50,
    "DEFAULT_PAGE_SIZE": 50,
    "MAX_PAGE_SIZE": 100,
}

ACTOR_ID_HEADER = "X-Actor-Id"
ORGANIZATION_HEADER = "X-Organization-Id"
ROLE_HEADER = "X-Actor-Role"


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
    config: Mapping[str, Any] | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config.update(DEFAULT_CONFIG)
    app.config.from_prefixed_env("FLEET")
    if config:
        app.config.update(config)
    check_holiday_country(str(app.config["HOLIDAY_COUNTRY"] or "") or None)

    repository = FleetYamlRepository(data_dir)
    clock: Callable[[], datetime] = now_provider or (lambda: datetime.now(timezone.utc))
    coordinator = BookingCoordinator(
        repository,
        now_provider=clock,
        max_passengers=int(app.config["MAX_PASSENGERS"]),
    )
    app.extensions["fleet_booking"] = coordinator

    def _current_actor() -> Actor:
        actor_id = request.headers.get(ACTOR_ID_HEADER, "").strip()
        organization_id = request.headers.get(ORGANIZATION_HEADER, "").strip()
        role = request.headers.get(ROLE_HEADER, "").strip()
        if not actor_id or not organization_id or not role:
            raise AuthenticationError("Authenticated actor headers are missing.")
        try:
            return Actor(actor_id=actor_id, organization_id=organization_id, role=Role.parse(role))
        except ValidationError as error:
            raise AuthenticationError(str(error)) from error

    def _payload() -> dict[str, Any]:
        payload = request.get_json(silent=True)
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object.")
        return payload

    @app.errorhandler(BookingError)
    def handle_booking_error(error: BookingError) -> Any:
        if error.status_code >= 500:
            app.logger.error("booking engine failure: %s", error.message, exc_info=error)
        return jsonify(error.to_dict()), error.status_code

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = (
            f"Content-Type,{ACTOR_ID_HEADER},{ORGANIZATION_HEADER},{ROLE_HEADER}"
        )
        return response

    @app.get("/health")
    def health() -> Any:
        return jsonify({"ok": True, "time": _iso(clock())})

    @app.get("/vehicles")
    def get_vehicles() -> Any:
        actor = _current_actor()
        vehicles = list_vehicles(repository, actor, status=request.args.get("status") or None)
        return jsonify({"ok": True, "vehicles": [_serialize_vehicle(record) for record in vehicles]})

    @app.post("/vehicles")
    def post_vehicle() -> Any:
        actor = _current_actor()
        created = register_vehicle(repository, actor, _payload(), now=clock())
        return jsonify({"ok": True, "vehicle": _serialize_vehicle(created)}), 201

    @app.get("/vehicles/stats")
    def get_vehicle_stats() -> Any:
        stats = fleet_statistics(repository, _current_actor(), now=clock())
        return jsonify({"ok": True, "stats": stats.to_dict()})

    @app.get("/vehicles/<vehicle_id>")
    def get_vehicle_detail(vehicle_id: str) -> Any:
        vehicle = get_vehicle(repository, _current_actor(), vehicle_id)
        return jsonify({"ok": True, "vehicle": _serialize_vehicle(vehicle)})

    @app.put("/vehicles/<vehicle_id>")
    def put_vehicle(vehicle_id: str) -> Any:
        actor = _current_actor()
        updated = coordinator.update_vehicle(actor, vehicle_id, _payload())
        return jsonify({"ok": True, "vehicle": _serialize_vehicle(updated), "message": "Vehicle updated successfully"})

    @app.delete("/vehicles/<vehicle_id>")
    def delete_vehicle(vehicle_id: str) -> Any:
        retired = coordinator.retire_vehicle(_current_actor(), vehicle_id)
        return jsonify({"ok": True, "vehicle": _serialize_vehicle(retired), "message": "Vehicle retired successfully"})

    @app.post("/vehicles/<vehicle_id>/status")
    def post_vehicle_status(vehicle_id: str) -> Any:
        actor = _current_actor()
        status = str(_payload().get("status", "")).strip()
        updated = coordinator.change_vehicle_status(actor, vehicle_id, status)
        return jsonify({"ok": True, "vehicle": _serialize_vehicle(updated)})

    @app.post("/bookings")
    def create_booking() -> Any:
        actor = _current_actor()
        payload = _payload()
        missing = [name for name in ("resource_id", "start_time", "end_time") if not payload.get(name)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        window = TimeWindow(
            parse_instant(payload["start_time"], "start_time"),
            parse_instant(payload["end_time"], "end_time"),
        )
        metadata = BookingMetadata.from_payload(payload, max_passengers=int(app.config["MAX_PASSENGERS"]))
        outcome = coordinator.create_reservation(actor, str(payload["resource_id"]), window, metadata)
        return (
            jsonify(
                {
                    "ok": True,
                    "booking": _serialize_booking(outcome.booking),
                    "warnings": outcome.warnings,
                    "message": "Booking created successfully",
                }
            ),
            201,
        )

    @app.get("/bookings")
    def get_bookings() -> Any:
        actor = _current_actor()
        args = request.args
        result = coordinator.list_reservations(
            actor,
            status=args.get("status") or None,
            vehicle_id=args.get("resource_id") or None,
            requester_id=args.get("requester_id") or None,
            when=args.get("filter", "all"),
            start=parse_instant(args["start"], "start") if args.get("start") else None,
            end=parse_instant(args["end"], "end") if args.get("end") else None,
            page=_int_arg("page", 1),
            limit=_int_arg("limit", int(app.config["DEFAULT_PAGE_SIZE"])),
            max_limit=int(app.config["MAX_PAGE_SIZE"]),
        )
        return jsonify(
            {
                "ok": True,
                "bookings": [_serialize_booking(record) for record in result.items],
                "pagination": {"page": result.page, "limit": result.limit, "total": result.total},
            }
        )

    @app.get("/bookings/availability/<resource_id>")
    def get_availability(resource_id: str) -> Any:
        actor = _current_actor()
        window = TimeWindow(
            parse_instant(request.args.get("start_time"), "start_time"),
            parse_instant(request.args.get("end_time"), "end_time"),
        )
        result = coordinator.preview_availability(
            actor,
            resource_id,
            window,
            exclude_booking_id=request.args.get("exclude_booking_id") or None,
        )
        return jsonify(result.to_dict())

    @app.get("/bookings/calendar")
    def get_calendar() -> Any:
        actor = _current_actor()
        range_start = _parse_day(request.args.get("start"), "start")
        range_end = _parse_day(request.args.get("end"), "end")
        tz = _timezone(request.args.get("tz") or str(app.config["CALENDAR_TIMEZONE"]))
        days = project_calendar(
            repository,
            actor,
            range_start,
            range_end,
            requester_filter=request.args.get("requester_id") or None,
            tz=tz,
            holiday_country=str(app.config["HOLIDAY_COUNTRY"] or "") or None,
            max_days=int(app.config["CALENDAR_MAX_DAYS"]),
        )
        return jsonify({"ok": True, "days": [day.to_dict() for day in days]})

    @app.get("/bookings/<booking_id>")
    def get_booking(booking_id: str) -> Any:
        actor = _current_actor()
        record = coordinator.get_reservation(actor, booking_id)
        return jsonify({"ok": True, "booking": _serialize_booking(record)})

    @app.put("/bookings/<booking_id>")
    def update_booking(booking_id: str) -> Any:
        actor = _current_actor()
        payload = _payload()
        changes = {_EDIT_FIELD_NAMES.get(name, name): value for name, value in payload.items()}
        outcome = coordinator.update_reservation(actor, booking_id, changes)
        return jsonify(
            {
                "ok": True,
                "booking": _serialize_booking(outcome.booking),
                "warnings": outcome.warnings,
                "message": "Booking updated successfully",
            }
        )

    @app.post("/bookings/<booking_id>/approve")
    def approve_booking(booking_id: str) -> Any:
        record = coordinator.approve(_current_actor(), booking_id)
        return jsonify({"ok": True, "booking": _serialize_booking(record), "message": "Booking approved successfully"})

    @app.post("/bookings/<booking_id>/reject")
    def reject_booking(booking_id: str) -> Any:
        actor = _current_actor()
        reason = _payload().get("reason")
        record = coordinator.reject(actor, booking_id, reason=reason)
        return jsonify({"ok": True, "booking": _serialize_booking(record), "message": "Booking rejected successfully"})

    @app.post("/bookings/<booking_id>/complete")
    def complete_booking(booking_id: str) -> Any:
        record = coordinator.complete(_current_actor(), booking_id)
        return jsonify({"ok": True, "booking": _serialize_booking(record), "message": "Booking completed successfully"})

    @app.delete("/bookings/<booking_id>")
    def cancel_booking(booking_id: str) -> Any:
        record = coordinator.cancel(_current_actor(), booking_id)
        return jsonify({"ok": True, "booking": _serialize_booking(record), "message": "Booking cancelled successfully"})

    return app


_EDIT_FIELD_NAMES = {"start_time": "start", "end_time": "end"}


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def _serialize_booking(record: BookingRecord) -> dict[str, Any]:
    return {
        "id": record.booking_id,
        "resource_id": record.vehicle_id,
        "requester_id": record.requester_id,
        "organization_id": record.organization_id,
        "start_time": _iso(record.start),
        "end_time": _iso(record.end),
        "status": record.status.value,
        "reason": record.reason,
        "destination": record.destination,
        "passenger_count": record.passenger_count,
        "notes": record.notes,
        "status_changed_by": record.status_changed_by,
        "status_changed_at": _iso(record.status_changed_at),
        "created_at": _iso(record.created_at),
        "updated_at": _iso(record.updated_at),
    }


def _serialize_vehicle(record: VehicleRecord) -> dict[str, Any]:
    payload = record.to_dict()
    payload["id"] = payload.pop("vehicle_id")
    payload["title"] = record.title
    return payload


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValidationError(f"{name} must be a whole number.") from error


def _parse_day(value: str | None, field: str) -> date:
    text = (value or "").strip()
    if not text:
        raise ValidationError("Start and end dates are required.")
    try:
        return date.fromisoformat(text)
    except ValueError:
        return parse_instant(text, field).date()


def _timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as error:
        raise ValidationError(f"Unknown timezone: {name}") from error


if __name__ == "__main__":
    app = create_app(os.environ.get("FLEET_DATA_DIR", "data"))
    app.run(host="127.0.0.1", port=5000, debug=False)
