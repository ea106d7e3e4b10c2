import logging

from alerts import emit_alert
from db import atomic, current_time, format_timestamp, parse_timestamp
from errors import EntityNotFound, ValidationFailed
from statuses import (
    AlertKind,
    EntityType,
    MaintenanceStatus,
    ServiceType,
    Severity,
    VehicleStatus,
    advance_maintenance,
)
from vehicles import get_vehicle, release_vehicle

logger = logging.getLogger(__name__)

ON_TRIP_MAINTENANCE_ERROR = (
    "Cannot open maintenance while vehicle is OnTrip. Mark trip Completed or Cancelled first."
)


def get_maintenance(conn, maintenance_id):
    record = conn.execute(
        "SELECT * FROM maintenance_logs WHERE id = ?", (maintenance_id,)
    ).fetchone()
    if record is None:
        raise EntityNotFound("service log", maintenance_id)
    return record


def list_maintenance(conn, vehicle_id=None, status=None):
    clauses = []
    params = []
    if vehicle_id is not None:
        clauses.append("m.vehicle_id = ?")
        params.append(vehicle_id)
    if status:
        clauses.append("m.status = ?")
        params.append(status)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return conn.execute(
        f"""
        SELECT m.*, v.license_plate
        FROM maintenance_logs m
        JOIN vehicles v ON m.vehicle_id = v.id
        {where}
        ORDER BY m.service_date DESC, m.id DESC
        """,
        params,
    ).fetchall()


def _validate_record(data):
    errors = []
    if data.get("vehicle_id") is None:
        errors.append("Vehicle is required.")
    if data.get("service_type") not in {service.value for service in ServiceType}:
        errors.append("Unknown service type.")
    cost = data.get("cost", 0) or 0
    if not isinstance(cost, (int, float)) or cost < 0:
        errors.append("Cost must be zero or greater.")
    odometer = data.get("odometer_at_service")
    if odometer is not None and (not isinstance(odometer, (int, float)) or odometer < 0):
        errors.append("Odometer at service must be zero or greater.")
    status = data.get("status", MaintenanceStatus.OPEN.value)
    if status not in {MaintenanceStatus.OPEN.value, MaintenanceStatus.COMPLETED.value}:
        errors.append("Maintenance status must be Open or Completed.")
    if data.get("service_date"):
        try:
            parse_timestamp(data["service_date"])
        except ValueError:
            errors.append("Invalid service date.")
    return errors


def open_maintenance(conn, data, now=None):
    """Open records send the vehicle to the shop; Completed ones are logged as history."""
    errors = _validate_record(data)
    if errors:
        raise ValidationFailed(errors, message="Maintenance validation failed.")

    now = current_time(now)
    status = MaintenanceStatus(data.get("status", MaintenanceStatus.OPEN.value))
    service_date = format_timestamp(parse_timestamp(data.get("service_date")) or now)

    with atomic(conn):
        vehicle = get_vehicle(conn, data["vehicle_id"])
        if vehicle["status"] == VehicleStatus.RETIRED:
            raise ValidationFailed([f"Vehicle '{vehicle['license_plate']}' is Retired."])
        if status is MaintenanceStatus.OPEN and vehicle["status"] == VehicleStatus.ON_TRIP:
            logger.warning("Maintenance blocked for %s: vehicle is OnTrip", vehicle["license_plate"])
            raise ValidationFailed([ON_TRIP_MAINTENANCE_ERROR], message=ON_TRIP_MAINTENANCE_ERROR)

        odometer = data.get("odometer_at_service")
        if odometer is None:
            odometer = vehicle["odometer_km"]
        cursor = conn.execute(
            """
            INSERT INTO maintenance_logs (vehicle_id, service_type, service_date, odometer_at_service,
                                          description, cost, status, completed_date, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                vehicle["id"],
                data["service_type"],
                service_date,
                odometer,
                (data.get("description") or "").strip() or None,
                data.get("cost", 0) or 0,
                status.value,
                service_date if status is MaintenanceStatus.COMPLETED else None,
                format_timestamp(now),
            ),
        )
        maintenance_id = cursor.lastrowid

        if status is MaintenanceStatus.OPEN:
            release_vehicle(conn, vehicle["id"])
            emit_alert(
                conn,
                "Vehicle In Shop",
                f"Vehicle {vehicle['license_plate']} is in shop for {data['service_type']}.",
                severity=Severity.WARNING,
                entity_type=EntityType.VEHICLE,
                entity_id=vehicle["id"],
                kind=AlertKind.VEHICLE_IN_SHOP,
                now=now,
            )
        return get_maintenance(conn, maintenance_id)


def update_maintenance(conn, maintenance_id, data):
    """Edit the details of a service log. Status only changes through completion."""
    editable = ("service_type", "service_date", "odometer_at_service", "description", "cost")
    changes = {key: data[key] for key in editable if key in data}

    with atomic(conn):
        record = get_maintenance(conn, maintenance_id)
        errors = _validate_record({**dict(record), **changes})
        if "service_date" in changes and not changes["service_date"]:
            errors.append("Service date is required.")
        if errors:
            raise ValidationFailed(errors, message="Maintenance validation failed.")
        if "service_date" in changes:
            changes["service_date"] = format_timestamp(parse_timestamp(changes["service_date"]))
        if "description" in changes:
            changes["description"] = (changes["description"] or "").strip() or None
        if changes:
            assignments = ", ".join(f"{key} = ?" for key in changes)
            conn.execute(
                f"UPDATE maintenance_logs SET {assignments} WHERE id = ?",
                (*changes.values(), maintenance_id),
            )
        return get_maintenance(conn, maintenance_id)


def complete_maintenance(conn, maintenance_id, now=None):
    now = current_time(now)
    with atomic(conn):
        record = get_maintenance(conn, maintenance_id)
        new_status = advance_maintenance(record["status"], "complete")
        conn.execute(
            "UPDATE maintenance_logs SET status = ?, completed_date = ? WHERE id = ?",
            (new_status.value, format_timestamp(now), maintenance_id),
        )
        vehicle_status = release_vehicle(conn, record["vehicle_id"])
        vehicle = get_vehicle(conn, record["vehicle_id"])
        logger.info(
            "Maintenance %s completed; vehicle %s is %s",
            maintenance_id,
            vehicle["license_plate"],
            vehicle_status.value if vehicle_status else vehicle["status"],
        )
        emit_alert(
            conn,
            "Maintenance Completed",
            f"Maintenance completed for {vehicle['license_plate']}. "
            f"Cost: {record['cost']}, Odometer: {record['odometer_at_service']} km.",
            severity=Severity.INFO,
            entity_type=EntityType.VEHICLE,
            entity_id=vehicle["id"],
            kind=AlertKind.MAINTENANCE_COMPLETED,
            now=now,
        )
        return get_maintenance(conn, maintenance_id)


def delete_maintenance(conn, maintenance_id):
    with atomic(conn):
        record = get_maintenance(conn, maintenance_id)
        conn.execute("DELETE FROM maintenance_logs WHERE id = ?", (maintenance_id,))
        release_vehicle(conn, record["vehicle_id"])
        return record
