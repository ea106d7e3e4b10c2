from enum import Enum

from errors import InvalidTransition


class VehicleType(str, Enum):
    TRUCK = "Truck"
    VAN = "Van"
    BIKE = "Bike"


class VehicleStatus(str, Enum):
    AVAILABLE = "Available"
    ON_TRIP = "OnTrip"
    IN_SHOP = "InShop"
    RETIRED = "Retired"


class DriverStatus(str, Enum):
    ON_DUTY = "OnDuty"
    OFF_DUTY = "OffDuty"
    SUSPENDED = "Suspended"
    BANNED = "Banned"


class TripStatus(str, Enum):
    DRAFT = "Draft"
    DISPATCHED = "Dispatched"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class TripEvent(str, Enum):
    DISPATCH = "dispatch"
    COMPLETE = "complete"
    CANCEL = "cancel"


class MaintenanceStatus(str, Enum):
    OPEN = "Open"
    COMPLETED = "Completed"


class ServiceType(str, Enum):
    OIL_CHANGE = "Oil Change"
    TIRE_REPLACEMENT = "Tire Replacement"
    ENGINE_REPAIR = "Engine Repair"
    BRAKE_SERVICE = "Brake Service"
    GENERAL_INSPECTION = "General Inspection"
    BATTERY_REPLACEMENT = "Battery Replacement"
    TRANSMISSION = "Transmission"
    OTHER = "Other"


class ExpenseStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    RECORDED = "Recorded"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class EntityType(str, Enum):
    VEHICLE = "vehicle"
    DRIVER = "driver"
    TRIP = "trip"
    MAINTENANCE = "maintenance"


class AlertKind(str, Enum):
    TRIP_DISPATCHED = "trip_dispatched"
    TRIP_COMPLETED = "trip_completed"
    TRIP_CANCELLED = "trip_cancelled"
    DISPATCH_BLOCKED = "dispatch_blocked"
    CARGO_OVERWEIGHT = "cargo_overweight"
    VEHICLE_IN_SHOP = "vehicle_in_shop"
    MAINTENANCE_COMPLETED = "maintenance_completed"
    MAINTENANCE_DUE = "maintenance_due"
    LICENSE_EXPIRED = "license_expired"
    LOW_SAFETY_SCORE = "low_safety_score"
    DISCIPLINE_SUSPENSION = "discipline_suspension"
    # Computed on read, never stored.
    VEHICLE_IN_SHOP_ASSIGNED = "vehicle_in_shop_assigned"
    TRIP_UNASSIGNED_DEADLINE = "trip_unassigned_deadline"


TRIP_TRANSITIONS = {
    (TripStatus.DRAFT, TripEvent.DISPATCH): TripStatus.DISPATCHED,
    (TripStatus.DRAFT, TripEvent.CANCEL): TripStatus.CANCELLED,
    (TripStatus.DISPATCHED, TripEvent.COMPLETE): TripStatus.COMPLETED,
    (TripStatus.DISPATCHED, TripEvent.CANCEL): TripStatus.CANCELLED,
}

MAINTENANCE_TRANSITIONS = {
    (MaintenanceStatus.OPEN, "complete"): MaintenanceStatus.COMPLETED,
}

# Banned has no outgoing edge.
DRIVER_TRANSITIONS = {
    (DriverStatus.ON_DUTY, "suspend"): DriverStatus.SUSPENDED,
    (DriverStatus.OFF_DUTY, "suspend"): DriverStatus.SUSPENDED,
    (DriverStatus.ON_DUTY, "ban"): DriverStatus.BANNED,
    (DriverStatus.OFF_DUTY, "ban"): DriverStatus.BANNED,
    (DriverStatus.SUSPENDED, "ban"): DriverStatus.BANNED,
    (DriverStatus.SUSPENDED, "reinstate"): DriverStatus.OFF_DUTY,
    (DriverStatus.OFF_DUTY, "clock_in"): DriverStatus.ON_DUTY,
    (DriverStatus.ON_DUTY, "clock_out"): DriverStatus.OFF_DUTY,
}

UNSELECTABLE_DRIVER_STATUSES = frozenset({DriverStatus.SUSPENDED.value, DriverStatus.BANNED.value})


def _advance(table, entity, enum_type, current, event):
    event_name = getattr(event, "value", event)
    try:
        current_status = enum_type(current)
    except ValueError:
        raise InvalidTransition(entity, current, event_name) from None
    try:
        return table[(current_status, event)]
    except KeyError:
        raise InvalidTransition(entity, current_status.value, event_name) from None


def advance_trip(current, event):
    return _advance(TRIP_TRANSITIONS, "trip", TripStatus, current, TripEvent(event))


def advance_maintenance(current, event="complete"):
    return _advance(
        MAINTENANCE_TRANSITIONS, "maintenance record", MaintenanceStatus, current, event
    )


def advance_driver(current, action):
    return _advance(DRIVER_TRANSITIONS, "driver", DriverStatus, current, action)


def derive_vehicle_status(current, open_maintenance_exists, active_dispatch_exists):
    # Open maintenance wins over an active dispatch; the feed reports that conflict.
    if VehicleStatus(current) is VehicleStatus.RETIRED:
        return VehicleStatus.RETIRED
    if open_maintenance_exists:
        return VehicleStatus.IN_SHOP
    if active_dispatch_exists:
        return VehicleStatus.ON_TRIP
    return VehicleStatus.AVAILABLE
