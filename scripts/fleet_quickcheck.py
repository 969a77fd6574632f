from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import traceback

from fleet_booking import Actor, BookingCoordinator, ConflictError, FleetYamlRepository, TimeWindow
from fleet_booking.yaml_store import DEMO_ORGANIZATION_ID


def main() -> int:
    print("[INFO] Fleet Booking Quick Check")
    print("[INFO] Seeding demo fleet...")

    repo = FleetYamlRepository("data")
    now = datetime.now(timezone.utc).replace(microsecond=0)
    vehicles = repo.seed_demo_fleet(now=now, overwrite=True)
    print(f"[OK] Demo vehicles: {len(vehicles)}")

    coordinator = BookingCoordinator(repo, now_provider=lambda: now)
    manager = Actor("demo-manager", DEMO_ORGANIZATION_ID, "fleet_manager")
    driver = Actor("quickcheck-driver", DEMO_ORGANIZATION_ID, "driver")

    day = (now + timedelta(days=30)).replace(hour=0, minute=0, second=0)
    existing = coordinator.create_reservation(manager, "car-1", TimeWindow(day.replace(hour=9), day.replace(hour=12)))
    coordinator.approve(manager, existing.booking.booking_id)
    print(f"[OK] Approved booking: {existing.booking.booking_id} 09:00-12:00")

    try:
        coordinator.create_reservation(driver, "car-1", TimeWindow(day.replace(hour=11), day.replace(hour=13)))
        print("[ERROR] Overlapping request was accepted.")
        return 1
    except ConflictError as error:
        print(f"[OK] Overlapping request refused with {len(error.conflicts)} conflict(s)")

    handoff = coordinator.create_reservation(driver, "car-1", TimeWindow(day.replace(hour=12), day.replace(hour=13)))
    print(f"[OK] Back-to-back request created in status: {handoff.booking.status.value}")

    print(f"[OK] Vehicles YAML: {Path('data/vehicles.yaml').resolve()}")
    print(f"[OK] Bookings YAML: {Path('data/bookings.yaml').resolve()}")
    print(f"[OK] Event Log YAML: {Path('data/booking_events.yaml').resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
