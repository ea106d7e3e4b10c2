import logging

from alerts import emit_alert, emit_alert_once
from db import atomic, current_time
from drivers import completion_rate, is_license_expired, set_driver_status, suspend_for_expired_license
from statuses import AlertKind, DriverStatus, EntityType, Severity, UNSELECTABLE_DRIVER_STATUSES

logger = logging.getLogger(__name__)

SAFETY_SCORE_THRESHOLD = 75
COMPLETION_RATE_THRESHOLD = 80
DISCIPLINE_MIN_TRIPS = 5
WARNINGS_BEFORE_SUSPENSION = 3


def needs_discipline(driver):
    if driver["total_trips_assigned"] < DISCIPLINE_MIN_TRIPS:
        return False
    return (
        completion_rate(driver) < COMPLETION_RATE_THRESHOLD
        or driver["safety_score_pct"] < SAFETY_SCORE_THRESHOLD
    )


def _evaluate_driver(conn, driver_id, now):
    created = []
    with atomic(conn):
        driver = conn.execute("SELECT * FROM drivers WHERE id = ?", (driver_id,)).fetchone()
        if driver is None or driver["status"] == DriverStatus.BANNED:
            return created

        if is_license_expired(driver["license_expiry_date"], now.date()):
            alert_id = suspend_for_expired_license(conn, driver, now=now)
            if alert_id:
                created.append(alert_id)
            driver = conn.execute("SELECT * FROM drivers WHERE id = ?", (driver_id,)).fetchone()

        if (
            driver["safety_score_pct"] < SAFETY_SCORE_THRESHOLD
            and driver["status"] != DriverStatus.SUSPENDED
        ):
            alert_id = emit_alert_once(
                conn,
                "Low Safety Score",
                f"{driver['name']} safety score is critically low: {driver['safety_score_pct']:g}%",
                entity_type=EntityType.DRIVER,
                entity_id=driver_id,
                kind=AlertKind.LOW_SAFETY_SCORE,
                severity=Severity.WARNING,
                now=now,
            )
            if alert_id:
                created.append(alert_id)

        # Each qualifying evaluation adds one warning; see DESIGN.md on cadence.
        if needs_discipline(driver) and driver["status"] not in UNSELECTABLE_DRIVER_STATUSES:
            warnings = driver["warnings"] + 1
            conn.execute("UPDATE drivers SET warnings = ? WHERE id = ?", (warnings, driver_id))
            logger.info("Driver %s received performance warning %s", driver["name"], warnings)
            if warnings >= WARNINGS_BEFORE_SUSPENSION:
                set_driver_status(conn, driver_id, DriverStatus.SUSPENDED)
                logger.warning("Driver %s suspended after %s warnings", driver["name"], warnings)
                alert_id = emit_alert(
                    conn,
                    "Driver Suspended: 3 Warnings",
                    f"{driver['name']} has been suspended after {warnings} performance warnings.",
                    severity=Severity.CRITICAL,
                    entity_type=EntityType.DRIVER,
                    entity_id=driver_id,
                    kind=AlertKind.DISCIPLINE_SUSPENSION,
                    now=now,
                )
                if alert_id:
                    created.append(alert_id)
    return created


def check_driver_compliance(conn, now=None):
    # One short transaction per driver.
    now = current_time(now)
    driver_ids = [
        row["id"]
        for row in conn.execute(
            "SELECT id FROM drivers WHERE status != ? ORDER BY id", (DriverStatus.BANNED.value,)
        ).fetchall()
    ]
    created = []
    for driver_id in driver_ids:
        created.extend(_evaluate_driver(conn, driver_id, now))
    if created:
        logger.info("Compliance scan raised %s alert(s)", len(created))
    return created
