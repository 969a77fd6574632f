from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from fleet_booking import Actor, BookingCoordinator, BookingMetadata, FleetYamlRepository, TimeWindow, list_vehicles, parse_instant
from fleet_booking.yaml_store import DEMO_ORGANIZATION_ID

mcp = FastMCP(
    "Fleet Booking MCP Server",
    instructions="Expose fleet vehicles, availability checks and booking requests from the fleet_booking engine.",
    json_response=True,
)

DATA_DIR = Path(os.environ.get("FLEET_DATA_DIR", Path(__file__).parent / "data"))
REPOSITORY = FleetYamlRepository(DATA_DIR)
COORDINATOR = BookingCoordinator(REPOSITORY)
ACTOR = Actor(
    actor_id=os.environ.get("FLEET_MCP_ACTOR_ID", "demo-driver"),
    organization_id=os.environ.get("FLEET_MCP_ORGANIZATION_ID", DEMO_ORGANIZATION_ID),
    role=os.environ.get("FLEET_MCP_ROLE", "driver"),
)


@mcp.resource("fleet://vehicles")
async def vehicle_catalogue() -> list[dict[str, Any]]:
    """List the vehicles of the configured organization."""
    return [record.to_dict() for record in list_vehicles(REPOSITORY, ACTOR)]


@mcp.tool()
def check_vehicle_availability(vehicle_id: str, start_iso: str, end_iso: str) -> dict[str, Any]:
    """Preview whether a vehicle is free for an ISO-8601 window (with offset)."""
    window = TimeWindow(parse_instant(start_iso, "start_iso"), parse_instant(end_iso, "end_iso"))
    return COORDINATOR.preview_availability(ACTOR, vehicle_id, window).to_dict()


@mcp.tool()
def request_booking(
    vehicle_id: str,
    start_iso: str,
    end_iso: str,
    reason: str = "MCP booking",
    passenger_count: int = 1,
) -> dict[str, Any]:
    """Request a vehicle; the booking starts pending until a fleet manager approves it."""
    window = TimeWindow(parse_instant(start_iso, "start_iso"), parse_instant(end_iso, "end_iso"))
    metadata = BookingMetadata(reason=reason, passenger_count=passenger_count)
    outcome = COORDINATOR.create_reservation(ACTOR, vehicle_id, window, metadata)
    return {"booking": outcome.booking.to_dict(), "warnings": outcome.warnings}


@mcp.tool()
def my_bookings(when: str = "upcoming") -> list[dict[str, Any]]:
    """Return the configured actor's bookings (upcoming, past or all)."""
    result = COORDINATOR.list_reservations(ACTOR, when=when, limit=100)
    return [record.to_dict() for record in result.items]


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
