from typing import NamedTuple
import logging

from alerts import emit_alert_once
from db import atomic, current_time, parse_timestamp
from statuses import AlertKind, EntityType, MaintenanceStatus, ServiceType, Severity, VehicleStatus

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30


class DuePolicy(NamedTuple):
    km_interval: float
    month_interval: float


DUE_POLICIES = {
    ServiceType.OIL_CHANGE: DuePolicy(5000, 3),
    ServiceType.TIRE_REPLACEMENT: DuePolicy(10000, 6),
    ServiceType.GENERAL_INSPECTION: DuePolicy(10000, 6),
    ServiceType.ENGINE_REPAIR: DuePolicy(15000, 12),
    ServiceType.BRAKE_SERVICE: DuePolicy(8000, 4),
}


def last_completed_service(conn, vehicle_id, service_type):
    return conn.execute(
        """
        SELECT *
        FROM maintenance_logs
        WHERE vehicle_id = ? AND service_type = ? AND status = ?
        ORDER BY service_date DESC, id DESC
        LIMIT 1
        """,
        (vehicle_id, ServiceType(service_type).value, MaintenanceStatus.COMPLETED.value),
    ).fetchone()


def due_reason(odometer_km, service_type, policy, last_service, now):
    """Return why a service is due, or None when it is not."""
    name = ServiceType(service_type).value
    if last_service is None:
        if odometer_km >= policy.km_interval:
            return f"{odometer_km:,.0f} km with no {name} record"
        return None

    km_since = odometer_km - (last_service["odometer_at_service"] or 0)
    if km_since >= policy.km_interval:
        return f"{km_since:,.0f} km driven since last {name}"
    serviced_on = parse_timestamp(last_service["service_date"])
    months_since = (now - serviced_on).total_seconds() / 86400 / DAYS_PER_MONTH
    if months_since >= policy.month_interval:
        return f"{round(months_since)} months since last {name}"
    return None


def check_maintenance_due(conn, now=None):
    now = current_time(now)
    vehicles = conn.execute(
        "SELECT * FROM vehicles WHERE status != ? ORDER BY id", (VehicleStatus.RETIRED.value,)
    ).fetchall()
    created = []
    for vehicle in vehicles:
        with atomic(conn):
            for service_type, policy in DUE_POLICIES.items():
                last_service = last_completed_service(conn, vehicle["id"], service_type)
                reason = due_reason(vehicle["odometer_km"], service_type, policy, last_service, now)
                if reason is None:
                    continue
                alert_id = emit_alert_once(
                    conn,
                    "Maintenance Due",
                    f"Vehicle {vehicle['license_plate']}: {service_type.value} due ({reason}).",
                    entity_type=EntityType.VEHICLE,
                    entity_id=vehicle["id"],
                    kind=AlertKind.MAINTENANCE_DUE,
                    subject=service_type.value,
                    severity=Severity.WARNING,
                    now=now,
                )
                if alert_id:
                    created.append(alert_id)
    if created:
        logger.info("Maintenance due scan raised %s alert(s)", len(created))
    return created
