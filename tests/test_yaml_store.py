import tempfile
import unittest
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from fleet_booking import BookingRecord, BookingStatus, FleetYamlRepository, VehicleRecord
from fleet_booking.yaml_store import DEMO_ORGANIZATION_ID

NOW = datetime(2024, 1, 5, 8, 0, tzinfo=timezone.utc)


def _vehicle(vehicle_id: str = "car-1", organization_id: str = "org-a") -> VehicleRecord:
    return VehicleRecord(
        vehicle_id=vehicle_id,
        organization_id=organization_id,
        make="Toyota",
        model="Corolla",
        license_plate=f"PLATE-{vehicle_id}",
        seats=5,
        status="available",
        created_at=NOW,
        updated_at=NOW,
    )


def _booking(booking_id: str, status: BookingStatus = BookingStatus.PENDING) -> BookingRecord:
    return BookingRecord(
        booking_id=booking_id,
        vehicle_id="car-1",
        requester_id="driver-1",
        organization_id="org-a",
        start=datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc),
        end=datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc),
        status=status,
        created_at=NOW,
        updated_at=NOW,
        destination="Antwerp",
        passenger_count=3,
    )


class TestFleetYamlRepository(unittest.TestCase):
    def test_booking_rows_survive_a_reload(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            FleetYamlRepository(data_dir).insert_booking(_booking("b-1"))

            reloaded = FleetYamlRepository(data_dir).get_booking("b-1")

            self.assertIsNotNone(reloaded)
            self.assertEqual(reloaded, _booking("b-1"))
            self.assertEqual(reloaded.start.tzinfo, timezone.utc)

    def test_blocking_query_skips_terminal_and_excluded_rows(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = FleetYamlRepository(Path(temp_dir) / "data")
            repo.insert_booking(_booking("pending"))
            repo.insert_booking(_booking("approved", BookingStatus.APPROVED))
            repo.insert_booking(_booking("cancelled", BookingStatus.CANCELLED))
            repo.insert_booking(_booking("rejected", BookingStatus.REJECTED))

            blocking = {record.booking_id for record in repo.get_blocking_bookings("car-1")}
            self.assertEqual(blocking, {"pending", "approved"})

            excluded = {record.booking_id for record in repo.get_blocking_bookings("car-1", exclude_booking_id="pending")}
            self.assertEqual(excluded, {"approved"})

    def test_vehicles_are_filtered_by_organization(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = FleetYamlRepository(Path(temp_dir) / "data")
            repo.add_vehicle(_vehicle("car-1", "org-a"))
            repo.add_vehicle(_vehicle("car-9", "org-b"))

            self.assertEqual([record.vehicle_id for record in repo.get_vehicles("org-a")], ["car-1"])
            self.assertEqual(len(repo.get_vehicles()), 2)

    def test_corrupted_yaml_is_backed_up_and_reset(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = FleetYamlRepository(data_dir)
            repo.bookings_file.write_text("- [unclosed\n", encoding="utf-8")

            self.assertEqual(repo.get_bookings(), [])

            backups = list(data_dir.glob("bookings.corrupt.*.yaml"))
            self.assertEqual(len(backups), 1)
            self.assertIn("YAML_RECOVERED", repo.log_file.read_text(encoding="utf-8"))

    def test_non_mapping_rows_are_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = FleetYamlRepository(Path(temp_dir) / "data")
            repo.insert_booking(_booking("b-1"))
            contents = repo.bookings_file.read_text(encoding="utf-8")
            repo.bookings_file.write_text(contents + "- just a string\n", encoding="utf-8")

            self.assertEqual([record.booking_id for record in repo.get_bookings()], ["b-1"])
            event_types = [event["event_type"] for event in repo.get_events()]
            self.assertIn("YAML_ROW_SKIPPED", event_types)

    def test_rows_with_missing_or_bad_fields_are_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = FleetYamlRepository(Path(temp_dir) / "data")
            repo.insert_booking(_booking("b-1"))
            repo.add_vehicle(_vehicle("car-1"))
            bookings = repo.bookings_file.read_text(encoding="utf-8")
            repo.bookings_file.write_text(
                bookings
                + "- {booking_id: b-x}\n"
                + "- {booking_id: b-2, vehicle_id: car-1, requester_id: d, organization_id: org-a,"
                + " start: soon, end: later, created_at: now, updated_at: now}\n",
                encoding="utf-8",
            )
            vehicles = repo.vehicles_file.read_text(encoding="utf-8")
            repo.vehicles_file.write_text(vehicles + "- {vehicle_id: broken, organization_id: org-a, seats: many}\n", encoding="utf-8")

            self.assertEqual([record.booking_id for record in repo.get_bookings()], ["b-1"])
            self.assertIsNone(repo.get_booking("b-x"))
            self.assertEqual([record.vehicle_id for record in repo.get_vehicles("org-a")], ["car-1"])

            skipped = [event for event in repo.get_events() if event["event_type"] == "YAML_ROW_SKIPPED"]
            self.assertTrue(any(event["payload"]["row"].get("booking_id") == "b-2" for event in skipped))
            self.assertTrue(any(event["payload"]["row"].get("vehicle_id") == "broken" for event in skipped))

    def test_save_booking_replaces_existing_row(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = FleetYamlRepository(Path(temp_dir) / "data")
            original = repo.insert_booking(_booking("b-1"))

            repo.save_booking(replace(original, status=BookingStatus.APPROVED))

            self.assertEqual(len(repo.get_bookings()), 1)
            self.assertEqual(repo.get_booking("b-1").status, BookingStatus.APPROVED)

    def test_seed_demo_fleet_writes_consistent_data(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = FleetYamlRepository(Path(temp_dir) / "data")
            vehicles = repo.seed_demo_fleet(now=NOW, overwrite=True)

            self.assertEqual(len(repo.get_vehicles(DEMO_ORGANIZATION_ID)), len(vehicles))
            self.assertEqual(repo.get_organization(DEMO_ORGANIZATION_ID)["max_vehicles"], 10)

            bookings = repo.get_bookings(DEMO_ORGANIZATION_ID)
            bookable = {record.vehicle_id for record in vehicles if record.is_bookable}
            self.assertEqual({record.vehicle_id for record in bookings}, bookable)
            for record in bookings:
                self.assertLess(record.start, record.end)
                if record.status == BookingStatus.APPROVED:
                    self.assertIsNotNone(record.status_changed_by)

            event_types = [event["event_type"] for event in repo.get_events()]
            self.assertIn("TEST_DATA_GENERATED", event_types)


if __name__ == "__main__":
    unittest.main()
