from datetime import timedelta

from alerts import serialize_alert
from db import current_time, format_timestamp, parse_timestamp
from scheduler import run_scheduled_checks
from statuses import AlertKind, EntityType, Severity, TripStatus, VehicleStatus

DEADLINE_WINDOW = timedelta(days=2)


def _feed_entry(alert):
    return {
        "id": alert["id"],
        "type": alert["kind"] or alert["title"].lower().replace(" ", "_"),
        "title": alert["title"],
        "severity": alert["severity"],
        "entity": alert["entity_type"],
        "entity_id": alert["entity_id"],
        "message": alert["message"],
        "created_at": alert["created_at"],
        "ephemeral": False,
    }


def _ephemeral_entry(kind, title, severity, entity, entity_id, message, now):
    return {
        "id": None,
        "type": kind.value,
        "title": title,
        "severity": severity.value,
        "entity": entity.value,
        "entity_id": entity_id,
        "message": message,
        "created_at": format_timestamp(now),
        "ephemeral": True,
    }


def ephemeral_alerts(conn, now=None):
    """Compute feed entries that describe live state and are never stored."""
    now = current_time(now)
    live = []

    conflicts = conn.execute(
        """
        SELECT v.id, v.name_model, v.license_plate, t.trip_code
        FROM vehicles v
        JOIN trips t ON t.assigned_vehicle = v.id
        WHERE v.status = ? AND t.status = ?
        ORDER BY v.id, t.id
        """,
        (VehicleStatus.IN_SHOP.value, TripStatus.DISPATCHED.value),
    ).fetchall()
    for row in conflicts:
        live.append(
            _ephemeral_entry(
                AlertKind.VEHICLE_IN_SHOP_ASSIGNED,
                "Vehicle In Shop On Active Trip",
                Severity.CRITICAL,
                EntityType.VEHICLE,
                row["id"],
                f"{row['name_model']} ({row['license_plate']}) is In Shop but assigned to trip "
                f"{row['trip_code']}",
                now,
            )
        )

    unassigned = conn.execute(
        """
        SELECT *
        FROM trips
        WHERE status = ? AND expected_delivery_date IS NOT NULL
          AND (assigned_vehicle IS NULL OR assigned_driver IS NULL)
        ORDER BY expected_delivery_date, id
        """,
        (TripStatus.DRAFT.value,),
    ).fetchall()
    deadline = now + DEADLINE_WINDOW
    for trip in unassigned:
        due = parse_timestamp(trip["expected_delivery_date"])
        if now <= due <= deadline:
            live.append(
                _ephemeral_entry(
                    AlertKind.TRIP_UNASSIGNED_DEADLINE,
                    "Trip Unassigned Near Deadline",
                    Severity.WARNING,
                    EntityType.TRIP,
                    trip["id"],
                    f"Trip {trip['trip_code']} is approaching deadline but still unassigned",
                    now,
                )
            )
    return live


def get_feed(conn, limit=50, run_checks=False, now=None):
    """Unresolved persisted alerts, newest first, then the live ones."""
    now = current_time(now)
    if run_checks:
        run_scheduled_checks(conn, now=now)

    rows = conn.execute(
        "SELECT * FROM alerts WHERE resolved = 0 ORDER BY created_at DESC, id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    persisted = [_feed_entry(serialize_alert(row)) for row in rows]
    return persisted + ephemeral_alerts(conn, now)
