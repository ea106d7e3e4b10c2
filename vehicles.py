import logging
import sqlite3

from db import atomic, current_time, format_timestamp
from errors import EntityNotFound, ValidationFailed
from statuses import (
    MaintenanceStatus,
    TripStatus,
    VehicleStatus,
    VehicleType,
    derive_vehicle_status,
)

logger = logging.getLogger(__name__)


def get_vehicle(conn, vehicle_id):
    vehicle = conn.execute("SELECT * FROM vehicles WHERE id = ?", (vehicle_id,)).fetchone()
    if vehicle is None:
        raise EntityNotFound("vehicle", vehicle_id)
    return vehicle


def find_vehicle(conn, vehicle_id):
    return conn.execute("SELECT * FROM vehicles WHERE id = ?", (vehicle_id,)).fetchone()


def list_vehicles(conn, status=None):
    if status:
        return conn.execute(
            "SELECT * FROM vehicles WHERE status = ? ORDER BY id DESC", (status,)
        ).fetchall()
    return conn.execute("SELECT * FROM vehicles ORDER BY id DESC").fetchall()


def list_available_vehicles(conn):
    return conn.execute(
        "SELECT * FROM vehicles WHERE status = ? ORDER BY license_plate",
        (VehicleStatus.AVAILABLE.value,),
    ).fetchall()


def has_open_maintenance(conn, vehicle_id):
    return (
        conn.execute(
            "SELECT 1 FROM maintenance_logs WHERE vehicle_id = ? AND status = ? LIMIT 1",
            (vehicle_id, MaintenanceStatus.OPEN.value),
        ).fetchone()
        is not None
    )


def find_active_trip(conn, vehicle_id):
    return conn.execute(
        "SELECT * FROM trips WHERE assigned_vehicle = ? AND status = ? ORDER BY id LIMIT 1",
        (vehicle_id, TripStatus.DISPATCHED.value),
    ).fetchone()


def release_vehicle(conn, vehicle_id):
    """Re-derive a vehicle's status from its open maintenance and dispatched trips."""
    with atomic(conn):
        vehicle = find_vehicle(conn, vehicle_id)
        if vehicle is None:
            return None
        derived = derive_vehicle_status(
            vehicle["status"],
            has_open_maintenance(conn, vehicle_id),
            find_active_trip(conn, vehicle_id) is not None,
        )
        if derived.value != vehicle["status"]:
            conn.execute(
                "UPDATE vehicles SET status = ? WHERE id = ?", (derived.value, vehicle_id)
            )
            logger.info(
                "Vehicle %s status %s -> %s", vehicle["license_plate"], vehicle["status"], derived.value
            )
        return derived


def create_vehicle(conn, data, now=None):
    errors = []
    name_model = (data.get("name_model") or "").strip()
    license_plate = (data.get("license_plate") or "").strip().upper()
    vehicle_type = data.get("type")
    max_capacity_kg = data.get("max_capacity_kg")
    odometer_km = data.get("odometer_km", 0) or 0
    acquisition_cost = data.get("acquisition_cost", 0) or 0

    if not name_model or not license_plate:
        errors.append("Model name and license plate are required.")
    if vehicle_type not in {t.value for t in VehicleType}:
        errors.append("Vehicle type must be one of Truck, Van or Bike.")
    if not isinstance(max_capacity_kg, (int, float)) or max_capacity_kg <= 0:
        errors.append("Max capacity must be a positive number.")
    if not isinstance(odometer_km, (int, float)) or odometer_km < 0:
        errors.append("Odometer must be zero or greater.")
    if not isinstance(acquisition_cost, (int, float)) or acquisition_cost < 0:
        errors.append("Acquisition cost must be zero or greater.")
    if errors:
        raise ValidationFailed(errors, message="Vehicle validation failed.")

    with atomic(conn):
        try:
            cursor = conn.execute(
                """
                INSERT INTO vehicles (name_model, license_plate, type, max_capacity_kg, odometer_km,
                                      status, acquisition_cost, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name_model,
                    license_plate,
                    vehicle_type,
                    max_capacity_kg,
                    odometer_km,
                    VehicleStatus.AVAILABLE.value,
                    acquisition_cost,
                    format_timestamp(current_time(now)),
                ),
            )
        except sqlite3.IntegrityError:
            raise ValidationFailed(["License plate must be unique."]) from None
        return get_vehicle(conn, cursor.lastrowid)


def update_vehicle(conn, vehicle_id, data):
    """Update descriptive fields and odometer; status is never set here."""
    editable = ("name_model", "max_capacity_kg", "odometer_km", "acquisition_cost")
    with atomic(conn):
        vehicle = get_vehicle(conn, vehicle_id)
        changes = {key: data[key] for key in editable if key in data}
        errors = []
        if "odometer_km" in changes:
            odometer = changes["odometer_km"]
            if not isinstance(odometer, (int, float)) or odometer < 0:
                errors.append("Odometer must be zero or greater.")
            elif odometer < vehicle["odometer_km"]:
                errors.append("Odometer cannot be rolled back.")
        if "max_capacity_kg" in changes:
            capacity = changes["max_capacity_kg"]
            if not isinstance(capacity, (int, float)) or capacity <= 0:
                errors.append("Max capacity must be a positive number.")
        if errors:
            raise ValidationFailed(errors, message="Vehicle validation failed.")
        if changes:
            assignments = ", ".join(f"{key} = ?" for key in changes)
            conn.execute(
                f"UPDATE vehicles SET {assignments} WHERE id = ?",
                (*changes.values(), vehicle_id),
            )
        return get_vehicle(conn, vehicle_id)


def retire_vehicle(conn, vehicle_id):
    with atomic(conn):
        vehicle = get_vehicle(conn, vehicle_id)
        if vehicle["status"] == VehicleStatus.ON_TRIP:
            raise ValidationFailed(
                [f"Vehicle '{vehicle['license_plate']}' is currently OnTrip and cannot be retired."]
            )
        conn.execute(
            "UPDATE vehicles SET status = ? WHERE id = ?",
            (VehicleStatus.RETIRED.value, vehicle_id),
        )
        logger.info("Vehicle %s retired", vehicle["license_plate"])
        return get_vehicle(conn, vehicle_id)


def unretire_vehicle(conn, vehicle_id):
    with atomic(conn):
        vehicle = get_vehicle(conn, vehicle_id)
        if vehicle["status"] != VehicleStatus.RETIRED:
            raise ValidationFailed([f"Vehicle '{vehicle['license_plate']}' is not Retired."])
        # Available is a placeholder; release_vehicle derives the real status.
        conn.execute(
            "UPDATE vehicles SET status = ? WHERE id = ?",
            (VehicleStatus.AVAILABLE.value, vehicle_id),
        )
        release_vehicle(conn, vehicle_id)
        return get_vehicle(conn, vehicle_id)


def delete_vehicle(conn, vehicle_id):
    with atomic(conn):
        vehicle = get_vehicle(conn, vehicle_id)
        in_use = conn.execute(
            "SELECT 1 FROM trips WHERE assigned_vehicle = ? LIMIT 1", (vehicle_id,)
        ).fetchone()
        if in_use:
            raise ValidationFailed(["Vehicle cannot be deleted because it has trip records."])
        serviced = conn.execute(
            "SELECT 1 FROM maintenance_logs WHERE vehicle_id = ? LIMIT 1", (vehicle_id,)
        ).fetchone()
        if serviced:
            raise ValidationFailed(["Vehicle cannot be deleted because it has service records."])
        conn.execute("DELETE FROM vehicles WHERE id = ?", (vehicle_id,))
        logger.info("Vehicle %s deleted", vehicle["license_plate"])
        return vehicle
