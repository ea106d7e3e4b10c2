from pathlib import Path
import logging
import sqlite3

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

import db
from alerts import list_alerts, resolve_alert, unresolve_alert
from drivers import (
    apply_driver_action,
    create_driver,
    delete_driver,
    get_driver,
    list_drivers,
    list_eligible_drivers,
    serialize_driver,
    update_driver,
)
from errors import EngineError, EntityNotFound, ValidationFailed
from expenses import delete_expense, get_expense, list_expenses, record_expense, serialize_expense, update_expense
from feed import get_feed
from maintenance import (
    complete_maintenance,
    delete_maintenance,
    get_maintenance,
    list_maintenance,
    open_maintenance,
    update_maintenance,
)
from scheduler import ComplianceScheduler, run_scheduled_checks
from trips import (
    cancel_trip,
    complete_trip,
    create_trip,
    delete_trip,
    dispatch_trip,
    get_trip,
    list_trips,
    update_trip,
    validate_trip,
)
from vehicles import (
    create_vehicle,
    delete_vehicle,
    get_vehicle,
    list_available_vehicles,
    list_vehicles,
    retire_vehicle,
    unretire_vehicle,
    update_vehicle,
)

BASE_DIR = Path(__file__).resolve().parent
DATABASE = BASE_DIR / "fleetflow.db"

app = Flask(__name__)
app.config.from_mapping(
    SECRET_KEY="fleetflow-dev-secret",
    DATABASE=str(DATABASE),
    FEED_LIMIT=50,
    SCAN_ON_FEED_READ=False,
    SCAN_INTERVAL_SECONDS=3600,
    LOG_LEVEL="INFO",
)
app.config.from_prefixed_env("FLEETFLOW")

logging.basicConfig(
    level=app.config["LOG_LEVEL"],
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Set by start_scheduler; the feed scans on read while it is not running.
scheduler = None


# ------------------------
# Database helpers
# ------------------------
def get_db_connection():
    if "db" not in g:
        g.db = db.get_db_connection(app.config["DATABASE"])
    return g.db


@app.teardown_appcontext
def close_db_connection(exception=None):
    conn = g.pop("db", None)
    if conn is not None:
        conn.close()


def initialize_database():
    conn = db.get_db_connection(app.config["DATABASE"])
    try:
        db.initialize_database(conn)
    finally:
        conn.close()


def payload():
    return request.get_json(silent=True) or {}


def ok(data=None, message=None, status=200):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def rows(items, serializer=dict):
    return [serializer(item) for item in items]


# ------------------------
# Error handlers
# ------------------------
@app.errorhandler(ValidationFailed)
def handle_validation_failed(error):
    return jsonify({"success": False, "message": error.message, "errors": error.errors}), 400


@app.errorhandler(EntityNotFound)
def handle_not_found(error):
    return jsonify({"success": False, "message": error.message}), 404


@app.errorhandler(EngineError)
def handle_engine_error(error):
    return jsonify({"success": False, "message": error.message}), 500


@app.errorhandler(sqlite3.Error)
def handle_storage_error(error):
    logger.exception("Unhandled storage error")
    return jsonify({"success": False, "message": EngineError.message}), 500


@app.errorhandler(HTTPException)
def handle_http_exception(error):
    return jsonify({"success": False, "message": error.description}), error.code


# ------------------------
# Vehicles
# ------------------------
@app.route("/api/vehicles", methods=["GET", "POST"])
def vehicles():
    conn = get_db_connection()
    if request.method == "POST":
        return ok(dict(create_vehicle(conn, payload())), status=201)
    return ok(rows(list_vehicles(conn, status=request.args.get("status"))))


@app.route("/api/vehicles/available")
def vehicles_available():
    return ok(rows(list_available_vehicles(get_db_connection())))


@app.route("/api/vehicles/<int:vehicle_id>", methods=["GET", "PATCH", "DELETE"])
def vehicle_detail(vehicle_id):
    conn = get_db_connection()
    if request.method == "DELETE":
        delete_vehicle(conn, vehicle_id)
        return ok(message="Vehicle deleted.")
    if request.method == "PATCH":
        return ok(dict(update_vehicle(conn, vehicle_id, payload())))
    return ok(dict(get_vehicle(conn, vehicle_id)))


@app.route("/api/vehicles/<int:vehicle_id>/retire", methods=["POST"])
def retire(vehicle_id):
    return ok(dict(retire_vehicle(get_db_connection(), vehicle_id)), message="Vehicle retired.")


@app.route("/api/vehicles/<int:vehicle_id>/unretire", methods=["POST"])
def unretire(vehicle_id):
    return ok(dict(unretire_vehicle(get_db_connection(), vehicle_id)), message="Vehicle back in service.")


# ------------------------
# Drivers
# ------------------------
@app.route("/api/drivers", methods=["GET", "POST"])
def drivers():
    conn = get_db_connection()
    if request.method == "POST":
        return ok(serialize_driver(create_driver(conn, payload())), status=201)
    return ok(rows(list_drivers(conn, status=request.args.get("status")), serialize_driver))


@app.route("/api/drivers/eligible")
def drivers_eligible():
    return ok(rows(list_eligible_drivers(get_db_connection()), serialize_driver))


@app.route("/api/drivers/<int:driver_id>", methods=["GET", "PATCH", "DELETE"])
def driver_detail(driver_id):
    conn = get_db_connection()
    if request.method == "DELETE":
        delete_driver(conn, driver_id)
        return ok(message="Driver deleted.")
    if request.method == "PATCH":
        return ok(serialize_driver(update_driver(conn, driver_id, payload())))
    return ok(serialize_driver(get_driver(conn, driver_id)))


@app.route(
    "/api/drivers/<int:driver_id>/<any(suspend, ban, reinstate, clock_in, clock_out):action>",
    methods=["POST"],
)
def driver_action(driver_id, action):
    driver = apply_driver_action(get_db_connection(), driver_id, action)
    return ok(serialize_driver(driver), message=f"Driver is now {driver['status']}.")


# ------------------------
# Trips
# ------------------------
@app.route("/api/trips", methods=["GET", "POST"])
def trips():
    conn = get_db_connection()
    if request.method == "POST":
        return ok(dict(create_trip(conn, payload())), status=201)
    return ok(rows(list_trips(conn, status=request.args.get("status"))))


@app.route("/api/trips/validate", methods=["POST"])
def validate_trip_draft():
    errors = validate_trip(get_db_connection(), payload())
    return ok({"valid": not errors, "errors": errors})


@app.route("/api/trips/<int:trip_id>", methods=["GET", "PUT", "DELETE"])
def trip_detail(trip_id):
    conn = get_db_connection()
    if request.method == "PUT":
        return ok(dict(update_trip(conn, trip_id, payload())))
    if request.method == "DELETE":
        delete_trip(conn, trip_id)
        return ok(message="Trip deleted.")
    return ok(dict(get_trip(conn, trip_id)))


@app.route("/api/trips/<int:trip_id>/dispatch", methods=["POST"])
def dispatch(trip_id):
    return ok(dict(dispatch_trip(get_db_connection(), trip_id)), message="Trip dispatched successfully.")


@app.route("/api/trips/<int:trip_id>/complete", methods=["POST"])
def complete(trip_id):
    return ok(dict(complete_trip(get_db_connection(), trip_id)), message="Trip completed successfully.")


@app.route("/api/trips/<int:trip_id>/cancel", methods=["POST"])
def cancel(trip_id):
    return ok(dict(cancel_trip(get_db_connection(), trip_id)), message="Trip cancelled.")


# ------------------------
# Maintenance
# ------------------------
@app.route("/api/maintenance", methods=["GET", "POST"])
def maintenance():
    conn = get_db_connection()
    if request.method == "POST":
        return ok(dict(open_maintenance(conn, payload())), status=201)
    return ok(
        rows(
            list_maintenance(
                conn,
                vehicle_id=request.args.get("vehicle_id", type=int),
                status=request.args.get("status"),
            )
        )
    )


@app.route("/api/maintenance/<int:maintenance_id>", methods=["GET", "PATCH", "DELETE"])
def maintenance_detail(maintenance_id):
    conn = get_db_connection()
    if request.method == "PATCH":
        return ok(dict(update_maintenance(conn, maintenance_id, payload())))
    if request.method == "DELETE":
        delete_maintenance(conn, maintenance_id)
        return ok(message="Service log deleted.")
    return ok(dict(get_maintenance(conn, maintenance_id)))


@app.route("/api/maintenance/<int:maintenance_id>/complete", methods=["POST"])
def maintenance_complete(maintenance_id):
    record = complete_maintenance(get_db_connection(), maintenance_id)
    return ok(dict(record), message="Maintenance completed. Vehicle status updated.")


# ------------------------
# Expenses
# ------------------------
@app.route("/api/expenses", methods=["GET", "POST"])
def expenses():
    conn = get_db_connection()
    if request.method == "POST":
        return ok(serialize_expense(record_expense(conn, payload())), status=201)
    return ok(rows(list_expenses(conn, trip_id=request.args.get("trip_id", type=int)), serialize_expense))


@app.route("/api/expenses/<int:expense_id>", methods=["GET", "PATCH", "DELETE"])
def expense_detail(expense_id):
    conn = get_db_connection()
    if request.method == "PATCH":
        return ok(serialize_expense(update_expense(conn, expense_id, payload())))
    if request.method == "DELETE":
        delete_expense(conn, expense_id)
        return ok(message="Expense deleted.")
    return ok(serialize_expense(get_expense(conn, expense_id)))


# ------------------------
# Alerts
# ------------------------
@app.route("/api/alerts")
def alerts_feed():
    feed = get_feed(
        get_db_connection(),
        limit=app.config["FEED_LIMIT"],
        run_checks=app.config["SCAN_ON_FEED_READ"] or scheduler is None or not scheduler.running,
    )
    return ok(feed)


@app.route("/api/alerts/persisted")
def alerts_persisted():
    resolved = request.args.get("resolved")
    return ok(
        list_alerts(
            get_db_connection(),
            severity=request.args.get("severity"),
            entity_type=request.args.get("entity_type"),
            resolved=None if resolved is None else resolved == "true",
            limit=request.args.get("limit", 20, type=int),
        )
    )


@app.route("/api/alerts/<int:alert_id>/resolve", methods=["POST"])
def alerts_resolve(alert_id):
    alert = resolve_alert(get_db_connection(), alert_id, note=payload().get("resolution_note", ""))
    return ok(alert, message="Alert resolved.")


@app.route("/api/alerts/<int:alert_id>/unresolve", methods=["POST"])
def alerts_unresolve(alert_id):
    return ok(unresolve_alert(get_db_connection(), alert_id), message="Alert reopened.")


@app.route("/api/alerts/scan", methods=["POST"])
def alerts_scan():
    return ok(run_scheduled_checks(get_db_connection()))


# ------------------------
# CLI
# ------------------------
@app.cli.command("init-db")
def init_db_command():
    """Create the database tables."""
    initialize_database()
    print(f"Database initialized at {app.config['DATABASE']}.")


@app.cli.command("run-checks")
def run_checks_command():
    """Run the compliance and maintenance-due scans once."""
    conn = db.get_db_connection(app.config["DATABASE"])
    try:
        result = run_scheduled_checks(conn)
    finally:
        conn.close()
    print(
        f"{len(result['compliance'])} compliance alert(s), "
        f"{len(result['maintenance_due'])} maintenance due alert(s)."
    )


def start_scheduler():
    global scheduler
    interval = app.config["SCAN_INTERVAL_SECONDS"]
    if not interval:
        return None
    scheduler = ComplianceScheduler(lambda: db.get_db_connection(app.config["DATABASE"]), interval)
    scheduler.start()
    return scheduler


if __name__ == "__main__":
    initialize_database()
    start_scheduler()
    app.run(debug=True, use_reloader=False)
