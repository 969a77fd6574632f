from .availability import AvailabilityResult, check_availability
from .booking import TimeWindow, can_reserve, find_conflicts, has_time_overlap, parse_instant
from .calendar_projection import CalendarDay, CalendarEntry, project_calendar
from .coordinator import BookingCoordinator, BookingMetadata, BookingOutcome, BookingPage
from .errors import (
	AuthenticationError,
	BookingError,
	ConflictError,
	NotFoundError,
	PermissionDenied,
	StateTransitionError,
	StorageError,
	ValidationError,
)
from .fleet import (
	FleetStatistics,
	fleet_statistics,
	get_vehicle,
	list_vehicles,
	register_vehicle,
	retire_vehicle,
	set_vehicle_status,
	update_vehicle,
)
from .lifecycle import BLOCKING_STATUSES, BookingStatus, next_status
from .roles import Action, Actor, Role, authorize
from .yaml_store import BookingRecord, FleetYamlRepository, VehicleRecord

__all__ = [
	"TimeWindow",
	"has_time_overlap",
	"find_conflicts",
	"can_reserve",
	"parse_instant",
	"AvailabilityResult",
	"check_availability",
	"Role",
	"Actor",
	"Action",
	"authorize",
	"BookingStatus",
	"BLOCKING_STATUSES",
	"next_status",
	"BookingCoordinator",
	"BookingMetadata",
	"BookingOutcome",
	"BookingPage",
	"CalendarDay",
	"CalendarEntry",
	"project_calendar",
	"list_vehicles",
	"register_vehicle",
	"set_vehicle_status",
	"get_vehicle",
	"update_vehicle",
	"retire_vehicle",
	"fleet_statistics",
	"FleetStatistics",
	"BookingRecord",
	"VehicleRecord",
	"FleetYamlRepository",
	"BookingError",
	"ValidationError",
	"PermissionDenied",
	"NotFoundError",
	"ConflictError",
	"StateTransitionError",
	"StorageError",
	"AuthenticationError",
]
