import logging

from alerts import emit_alert
from db import atomic, claim_vehicle, current_time, format_timestamp, parse_timestamp
from drivers import (
    find_driver,
    get_driver,
    has_other_dispatched_trip,
    is_license_expired,
    set_driver_status,
    suspend_for_expired_license,
)
from errors import EntityNotFound, ValidationFailed
from statuses import (
    AlertKind,
    DriverStatus,
    EntityType,
    Severity,
    TripEvent,
    TripStatus,
    UNSELECTABLE_DRIVER_STATUSES,
    VehicleStatus,
    advance_trip,
)
from vehicles import find_vehicle, get_vehicle, release_vehicle

logger = logging.getLogger(__name__)

ASSIGNMENT_FIELDS = ("assigned_vehicle", "assigned_driver", "cargo_weight_kg")
EDITABLE_FIELDS = (
    "pickup_location",
    "delivery_location",
    "cargo_weight_kg",
    "assigned_vehicle",
    "assigned_driver",
    "expected_start_date",
    "expected_delivery_date",
    "distance_km",
    "revenue",
    "estimated_fuel_cost",
)


def get_trip(conn, trip_id):
    trip = conn.execute("SELECT * FROM trips WHERE id = ?", (trip_id,)).fetchone()
    if trip is None:
        raise EntityNotFound("trip", trip_id)
    return trip


def list_trips(conn, status=None):
    query = """
        SELECT t.*, v.license_plate, d.name AS driver_name
        FROM trips t
        LEFT JOIN vehicles v ON t.assigned_vehicle = v.id
        LEFT JOIN drivers d ON t.assigned_driver = d.id
    """
    if status:
        return conn.execute(query + " WHERE t.status = ? ORDER BY t.id DESC", (status,)).fetchall()
    return conn.execute(query + " ORDER BY t.id DESC").fetchall()


def _format_kg(value):
    return f"{value:.0f}" if float(value).is_integer() else str(value)


def _parse_optional(value):
    # Malformed dates are reported by _trip_fields, not here.
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def generate_trip_code(conn, now=None):
    date_str = current_time(now).strftime("%Y%m%d")
    # The AUTOINCREMENT sequence never goes back, so codes survive deletions.
    row = conn.execute("SELECT seq FROM sqlite_sequence WHERE name = 'trips'").fetchone()
    count = row["seq"] if row else 0
    return f"T-{date_str}-{count + 1:03d}"


def _date_order_errors(draft):
    start = _parse_optional(draft.get("expected_start_date"))
    delivery = _parse_optional(draft.get("expected_delivery_date"))
    if start and delivery and delivery < start:
        return ["Delivery date must be same or after start date."]
    return []


def _valid_cargo(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0


def validate_trip(conn, draft, now=None):
    """Collect every assignment error. Overweight alerts and license suspensions persist."""
    now = current_time(now)
    errors = _date_order_errors(draft)

    cargo = draft.get("cargo_weight_kg") or 0
    if not _valid_cargo(cargo):
        errors.append("Cargo weight must be zero or greater.")
        cargo = None

    with atomic(conn):
        vehicle_id = draft.get("assigned_vehicle")
        if vehicle_id:
            vehicle = find_vehicle(conn, vehicle_id)
            if vehicle is None:
                errors.append("Vehicle not found.")
            else:
                if vehicle["status"] != VehicleStatus.AVAILABLE:
                    errors.append(
                        f"Vehicle '{vehicle['license_plate']}' is currently {vehicle['status']} "
                        "and cannot be selected."
                    )
                if cargo is not None and cargo > vehicle["max_capacity_kg"]:
                    errors.append(
                        f"Overweight: selected vehicle capacity is {_format_kg(vehicle['max_capacity_kg'])} kg. "
                        "Reduce cargo or choose a larger vehicle."
                    )
                    emit_alert(
                        conn,
                        "Cargo Overweight Attempt",
                        f"Attempted to assign {_format_kg(cargo)} kg to vehicle {vehicle['license_plate']} "
                        f"(capacity {_format_kg(vehicle['max_capacity_kg'])} kg).",
                        severity=Severity.CRITICAL,
                        entity_type=EntityType.VEHICLE,
                        entity_id=vehicle["id"],
                        kind=AlertKind.CARGO_OVERWEIGHT,
                        now=now,
                    )

        driver_id = draft.get("assigned_driver")
        if driver_id:
            driver = find_driver(conn, driver_id)
            if driver is None:
                errors.append("Driver not found.")
            else:
                if driver["status"] in UNSELECTABLE_DRIVER_STATUSES:
                    errors.append(
                        f"Driver '{driver['name']}' is {driver['status']} and cannot be selected."
                    )
                if is_license_expired(driver["license_expiry_date"], now.date()):
                    suspend_for_expired_license(conn, driver, now=now)
                    errors.append(
                        f"Driver '{driver['name']}' license expired on {driver['license_expiry_date']}. "
                        "Update license to assign."
                    )

    return errors


def _trip_fields(data):
    errors = []
    if not (data.get("pickup_location") or "").strip():
        errors.append("Pickup location is required.")
    if not (data.get("delivery_location") or "").strip():
        errors.append("Delivery location is required.")
    if not _valid_cargo(data.get("cargo_weight_kg")):
        errors.append("Cargo weight must be zero or greater.")
    for key in ("distance_km", "revenue", "estimated_fuel_cost"):
        value = data.get(key, 0) or 0
        if not isinstance(value, (int, float)) or value < 0:
            errors.append(f"{key.replace('_', ' ').capitalize()} must be zero or greater.")
    for key in ("expected_start_date", "expected_delivery_date"):
        try:
            parse_timestamp(data.get(key))
        except ValueError:
            errors.append(f"Invalid {key.replace('_', ' ')}.")
    return errors


def create_trip(conn, data, now=None):
    now = current_time(now)
    errors = _trip_fields(data)
    if errors:
        raise ValidationFailed(errors, message="Trip validation failed.")

    with atomic(conn):
        errors = validate_trip(conn, data, now=now)
        if errors:
            raise ValidationFailed(errors, message="Trip validation failed.")
        cursor = conn.execute(
            """
            INSERT INTO trips (trip_code, pickup_location, delivery_location, cargo_weight_kg,
                               assigned_vehicle, assigned_driver, expected_start_date,
                               expected_delivery_date, status, distance_km, revenue,
                               estimated_fuel_cost, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                generate_trip_code(conn, now),
                data["pickup_location"].strip(),
                data["delivery_location"].strip(),
                data["cargo_weight_kg"],
                data.get("assigned_vehicle") or None,
                data.get("assigned_driver") or None,
                format_timestamp(parse_timestamp(data.get("expected_start_date"))),
                format_timestamp(parse_timestamp(data.get("expected_delivery_date"))),
                TripStatus.DRAFT.value,
                data.get("distance_km", 0) or 0,
                data.get("revenue", 0) or 0,
                data.get("estimated_fuel_cost", 0) or 0,
                format_timestamp(now),
            ),
        )
        trip = get_trip(conn, cursor.lastrowid)
        logger.info("Trip %s created", trip["trip_code"])
        return trip


def update_trip(conn, trip_id, data, now=None):
    """Edit a trip. Assignment and cargo may only change while it is a Draft."""
    now = current_time(now)
    changes = {key: data[key] for key in EDITABLE_FIELDS if key in data}

    with atomic(conn):
        trip = get_trip(conn, trip_id)
        merged = {**dict(trip), **changes}
        errors = _trip_fields(merged)
        if errors:
            raise ValidationFailed(errors, message="Trip validation failed.")

        touches_assignment = any(
            key in changes and changes[key] != trip[key] for key in ASSIGNMENT_FIELDS
        )
        if touches_assignment:
            if trip["status"] != TripStatus.DRAFT:
                raise ValidationFailed(
                    [f'Cannot change the assignment of a trip with status "{trip["status"]}".'],
                    message="Trip validation failed.",
                )
            errors = validate_trip(conn, merged, now=now)
        else:
            errors = _date_order_errors(merged)
        if errors:
            raise ValidationFailed(errors, message="Trip validation failed.")

        for key in ("expected_start_date", "expected_delivery_date"):
            if key in changes:
                changes[key] = format_timestamp(parse_timestamp(changes[key]))
        if changes:
            assignments = ", ".join(f"{key} = ?" for key in changes)
            conn.execute(
                f"UPDATE trips SET {assignments} WHERE id = ?", (*changes.values(), trip_id)
            )
        return get_trip(conn, trip_id)


def dispatch_trip(conn, trip_id, now=None):
    now = current_time(now)
    with atomic(conn):
        trip = get_trip(conn, trip_id)
        new_status = advance_trip(trip["status"], TripEvent.DISPATCH)
        if not trip["assigned_vehicle"] or not trip["assigned_driver"]:
            raise ValidationFailed(
                ["Vehicle and driver must be assigned before dispatch."],
                message="Cannot dispatch, validation failed.",
            )

        errors = validate_trip(conn, dict(trip), now=now)
        if errors:
            raise ValidationFailed(errors, message="Cannot dispatch, validation failed.")

        if not claim_vehicle(conn, trip["assigned_vehicle"]):
            vehicle = get_vehicle(conn, trip["assigned_vehicle"])
            logger.warning(
                "Dispatch of %s blocked: vehicle %s is %s",
                trip["trip_code"],
                vehicle["license_plate"],
                vehicle["status"],
            )
            emit_alert(
                conn,
                "Dispatch Blocked",
                f"Attempted to dispatch with vehicle {vehicle['license_plate']} in {vehicle['status']}.",
                severity=Severity.CRITICAL,
                entity_type=EntityType.TRIP,
                entity_id=trip_id,
                kind=AlertKind.DISPATCH_BLOCKED,
                now=now,
            )
            raise ValidationFailed(
                [f"Vehicle '{vehicle['license_plate']}' is currently {vehicle['status']} "
                 "and cannot be dispatched."],
                message="Cannot dispatch, validation failed.",
            )

        conn.execute(
            """
            UPDATE drivers
            SET total_trips_assigned = total_trips_assigned + 1, status = ?
            WHERE id = ?
            """,
            (DriverStatus.ON_DUTY.value, trip["assigned_driver"]),
        )
        conn.execute(
            "UPDATE trips SET status = ?, actual_start_date = ? WHERE id = ?",
            (new_status.value, format_timestamp(now), trip_id),
        )
        logger.info("Trip %s dispatched", trip["trip_code"])
        emit_alert(
            conn,
            "Trip Dispatched",
            f"Trip {trip['trip_code']} has been dispatched.",
            severity=Severity.INFO,
            entity_type=EntityType.TRIP,
            entity_id=trip_id,
            kind=AlertKind.TRIP_DISPATCHED,
            now=now,
        )
        return get_trip(conn, trip_id)


def complete_trip(conn, trip_id, now=None):
    now = current_time(now)
    with atomic(conn):
        trip = get_trip(conn, trip_id)
        new_status = advance_trip(trip["status"], TripEvent.COMPLETE)
        conn.execute(
            "UPDATE trips SET status = ?, actual_delivery_date = ? WHERE id = ?",
            (new_status.value, format_timestamp(now), trip_id),
        )
        if trip["assigned_driver"]:
            conn.execute(
                "UPDATE drivers SET trips_completed = trips_completed + 1 WHERE id = ?",
                (trip["assigned_driver"],),
            )
        if trip["assigned_vehicle"]:
            release_vehicle(conn, trip["assigned_vehicle"])
        logger.info("Trip %s completed", trip["trip_code"])
        emit_alert(
            conn,
            "Trip Completed",
            f"Trip {trip['trip_code']} has been completed successfully.",
            severity=Severity.INFO,
            entity_type=EntityType.TRIP,
            entity_id=trip_id,
            kind=AlertKind.TRIP_COMPLETED,
            now=now,
        )
        return get_trip(conn, trip_id)


def cancel_trip(conn, trip_id, now=None):
    now = current_time(now)
    with atomic(conn):
        trip = get_trip(conn, trip_id)
        new_status = advance_trip(trip["status"], TripEvent.CANCEL)
        conn.execute("UPDATE trips SET status = ? WHERE id = ?", (new_status.value, trip_id))
        if trip["assigned_vehicle"]:
            release_vehicle(conn, trip["assigned_vehicle"])
        if trip["assigned_driver"]:
            driver = get_driver(conn, trip["assigned_driver"])
            if driver["status"] == DriverStatus.ON_DUTY and not has_other_dispatched_trip(
                conn, driver["id"], trip_id
            ):
                set_driver_status(conn, driver["id"], DriverStatus.OFF_DUTY)
        logger.info("Trip %s cancelled from %s", trip["trip_code"], trip["status"])
        emit_alert(
            conn,
            "Trip Cancelled",
            f"Trip {trip['trip_code']} has been cancelled.",
            severity=Severity.INFO,
            entity_type=EntityType.TRIP,
            entity_id=trip_id,
            kind=AlertKind.TRIP_CANCELLED,
            now=now,
        )
        return get_trip(conn, trip_id)


def delete_trip(conn, trip_id):
    with atomic(conn):
        trip = get_trip(conn, trip_id)
        if trip["status"] == TripStatus.DISPATCHED:
            raise ValidationFailed(["Cannot delete an active trip. Cancel it first."])
        if conn.execute("SELECT 1 FROM expenses WHERE trip_id = ? LIMIT 1", (trip_id,)).fetchone():
            raise ValidationFailed(["Trip cannot be deleted because it has expense records."])
        conn.execute("DELETE FROM trips WHERE id = ?", (trip_id,))
        logger.info("Trip %s deleted", trip["trip_code"])
        return trip
