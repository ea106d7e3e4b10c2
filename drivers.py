from datetime import date, datetime
import logging
import sqlite3

from alerts import emit_alert_once
from db import atomic, current_time, format_timestamp
from errors import EntityNotFound, ValidationFailed
from statuses import (
    AlertKind,
    DriverStatus,
    EntityType,
    Severity,
    TripStatus,
    UNSELECTABLE_DRIVER_STATUSES,
    advance_driver,
)

logger = logging.getLogger(__name__)

LICENSED_ACTIONS = {"reinstate": "reinstate", "clock_in": "go on duty"}


def parse_license_date(expiry_date_text):
    return datetime.strptime(expiry_date_text, "%Y-%m-%d").date()


def is_license_expired(expiry_date_text, today=None):
    if not expiry_date_text:
        return True
    return parse_license_date(expiry_date_text) < (today or date.today())


def completion_rate(driver):
    if driver["total_trips_assigned"] == 0:
        return 100.0
    return driver["trips_completed"] / driver["total_trips_assigned"] * 100


def serialize_driver(row):
    driver = dict(row)
    driver["completion_rate"] = round(completion_rate(row))
    return driver


def get_driver(conn, driver_id):
    driver = conn.execute("SELECT * FROM drivers WHERE id = ?", (driver_id,)).fetchone()
    if driver is None:
        raise EntityNotFound("driver", driver_id)
    return driver


def find_driver(conn, driver_id):
    return conn.execute("SELECT * FROM drivers WHERE id = ?", (driver_id,)).fetchone()


def list_drivers(conn, status=None):
    if status:
        return conn.execute(
            "SELECT * FROM drivers WHERE status = ? ORDER BY id DESC", (status,)
        ).fetchall()
    return conn.execute("SELECT * FROM drivers ORDER BY id DESC").fetchall()


def list_eligible_drivers(conn, today=None):
    """OnDuty drivers whose license is still valid today."""
    today = today or date.today()
    return conn.execute(
        """
        SELECT *
        FROM drivers
        WHERE status = ? AND license_expiry_date >= ?
        ORDER BY name
        """,
        (DriverStatus.ON_DUTY.value, today.isoformat()),
    ).fetchall()


def has_other_dispatched_trip(conn, driver_id, exclude_trip_id=None):
    return (
        conn.execute(
            "SELECT 1 FROM trips WHERE assigned_driver = ? AND status = ? AND id IS NOT ? LIMIT 1",
            (driver_id, TripStatus.DISPATCHED.value, exclude_trip_id),
        ).fetchone()
        is not None
    )


def set_driver_status(conn, driver_id, status):
    conn.execute(
        "UPDATE drivers SET status = ? WHERE id = ?", (DriverStatus(status).value, driver_id)
    )


def suspend_for_expired_license(conn, driver, now=None):
    """Returns the new alert id, or None when the driver was already out of service."""
    if driver["status"] in UNSELECTABLE_DRIVER_STATUSES:
        return None
    with atomic(conn):
        set_driver_status(conn, driver["id"], DriverStatus.SUSPENDED)
        logger.warning(
            "Driver %s suspended: license expired on %s", driver["name"], driver["license_expiry_date"]
        )
        return emit_alert_once(
            conn,
            "Driver License Expired",
            f"Driver {driver['name']}'s license expired on {driver['license_expiry_date']} "
            "and has been suspended.",
            entity_type=EntityType.DRIVER,
            entity_id=driver["id"],
            kind=AlertKind.LICENSE_EXPIRED,
            severity=Severity.WARNING,
            now=now,
        )


def _validate_profile(data, errors, partial=False):
    if not partial or "name" in data:
        if not (data.get("name") or "").strip():
            errors.append("Driver name is required.")
    if not partial or "license_number" in data:
        if not (data.get("license_number") or "").strip():
            errors.append("License number is required.")
    if not partial or "license_expiry_date" in data:
        try:
            parse_license_date(data.get("license_expiry_date") or "")
        except ValueError:
            errors.append("Invalid license expiry date.")
    if "safety_score_pct" in data:
        score = data["safety_score_pct"]
        if not isinstance(score, (int, float)) or score < 0 or score > 100:
            errors.append("Safety score must be between 0 and 100.")
    if "incidents" in data:
        incidents = data["incidents"]
        if not isinstance(incidents, int) or incidents < 0:
            errors.append("Incidents must be zero or greater.")


def create_driver(conn, data, now=None):
    errors = []
    _validate_profile(data, errors)
    if errors:
        raise ValidationFailed(errors, message="Driver validation failed.")

    with atomic(conn):
        try:
            cursor = conn.execute(
                """
                INSERT INTO drivers (name, license_number, license_expiry_date, contact, status,
                                     safety_score_pct, incidents, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["name"].strip(),
                    data["license_number"].strip().upper(),
                    data["license_expiry_date"],
                    (data.get("contact") or "").strip() or None,
                    DriverStatus.OFF_DUTY.value,
                    data.get("safety_score_pct", 100),
                    data.get("incidents", 0),
                    format_timestamp(current_time(now)),
                ),
            )
        except sqlite3.IntegrityError:
            raise ValidationFailed(["License number must be unique."]) from None
        return get_driver(conn, cursor.lastrowid)


def update_driver(conn, driver_id, data):
    """Update profile fields; status changes go through apply_driver_action."""
    editable = (
        "name",
        "license_number",
        "license_expiry_date",
        "contact",
        "safety_score_pct",
        "incidents",
    )
    changes = {key: data[key] for key in editable if key in data}
    errors = []
    _validate_profile(changes, errors, partial=True)
    if errors:
        raise ValidationFailed(errors, message="Driver validation failed.")
    if "license_number" in changes:
        changes["license_number"] = changes["license_number"].strip().upper()

    with atomic(conn):
        get_driver(conn, driver_id)
        if changes:
            assignments = ", ".join(f"{key} = ?" for key in changes)
            try:
                conn.execute(
                    f"UPDATE drivers SET {assignments} WHERE id = ?",
                    (*changes.values(), driver_id),
                )
            except sqlite3.IntegrityError:
                raise ValidationFailed(["License number must be unique."]) from None
        return get_driver(conn, driver_id)


def apply_driver_action(conn, driver_id, action, now=None):
    """Apply a manual suspend, ban, reinstate, clock_in or clock_out action."""
    with atomic(conn):
        driver = get_driver(conn, driver_id)
        new_status = advance_driver(driver["status"], action)
        if action in LICENSED_ACTIONS and is_license_expired(
            driver["license_expiry_date"], current_time(now).date()
        ):
            raise ValidationFailed(
                [f"Driver '{driver['name']}' license expired on {driver['license_expiry_date']}. "
                 f"Update license to {LICENSED_ACTIONS[action]}."]
            )
        if action == "clock_out" and has_other_dispatched_trip(conn, driver_id):
            raise ValidationFailed(
                [f"Driver '{driver['name']}' has a dispatched trip and cannot clock out."]
            )
        set_driver_status(conn, driver_id, new_status)
        logger.info("Driver %s %s: %s -> %s", driver["name"], action, driver["status"], new_status.value)
        return get_driver(conn, driver_id)


def delete_driver(conn, driver_id):
    with atomic(conn):
        driver = get_driver(conn, driver_id)
        in_use = conn.execute(
            "SELECT 1 FROM trips WHERE assigned_driver = ? LIMIT 1", (driver_id,)
        ).fetchone()
        if in_use:
            raise ValidationFailed(["Driver cannot be deleted because they have trip records."])
        conn.execute("DELETE FROM drivers WHERE id = ?", (driver_id,))
        logger.info("Driver %s deleted", driver["name"])
        return driver
