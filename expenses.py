import logging

from db import atomic, current_time, format_timestamp, parse_timestamp
from errors import EntityNotFound, ValidationFailed
from statuses import ExpenseStatus, TripStatus

logger = logging.getLogger(__name__)

COST_FIELDS = ("distance_covered_km", "fuel_liters", "fuel_cost", "misc_cost")
MISMATCH_ERROR = "Expense vehicle/driver mismatch with the selected trip."


def serialize_expense(row):
    expense = dict(row)
    expense["total_cost"] = expense["fuel_cost"] + expense["misc_cost"]
    return expense


def get_expense(conn, expense_id):
    expense = conn.execute("SELECT * FROM expenses WHERE id = ?", (expense_id,)).fetchone()
    if expense is None:
        raise EntityNotFound("expense", expense_id)
    return expense


def list_expenses(conn, trip_id=None):
    if trip_id is not None:
        return conn.execute(
            "SELECT * FROM expenses WHERE trip_id = ? ORDER BY expense_date DESC, id DESC", (trip_id,)
        ).fetchall()
    return conn.execute("SELECT * FROM expenses ORDER BY expense_date DESC, id DESC").fetchall()


def _validate_amounts(data):
    errors = []
    for key in COST_FIELDS:
        value = data.get(key, 0) or 0
        if not isinstance(value, (int, float)) or value < 0:
            errors.append(f"{key.replace('_', ' ').capitalize()} must be zero or greater.")
    if data.get("status", ExpenseStatus.PENDING.value) not in {s.value for s in ExpenseStatus}:
        errors.append("Expense status must be Pending, Approved or Recorded.")
    try:
        parse_timestamp(data.get("expense_date"))
    except ValueError:
        errors.append("Invalid expense date.")
    return errors


def record_expense(conn, data, now=None):
    """Record a trip expense, taking vehicle and driver from the trip itself."""
    now = current_time(now)
    errors = _validate_amounts(data)
    if errors:
        raise ValidationFailed(errors, message="Expense validation failed.")
    status = data.get("status", ExpenseStatus.PENDING.value)
    expense_date = parse_timestamp(data.get("expense_date")) or now

    with atomic(conn):
        trip = conn.execute("SELECT * FROM trips WHERE id = ?", (data.get("trip_id"),)).fetchone()
        if trip is None:
            raise EntityNotFound("trip", data.get("trip_id"))
        if trip["status"] != TripStatus.COMPLETED:
            raise ValidationFailed(["Expenses can only be recorded for Completed trips."])
        vehicle_id = trip["assigned_vehicle"]
        driver_id = trip["assigned_driver"]
        if data.get("vehicle_id") and data["vehicle_id"] != vehicle_id:
            raise ValidationFailed([MISMATCH_ERROR])
        if data.get("driver_id") and data["driver_id"] != driver_id:
            raise ValidationFailed([MISMATCH_ERROR])

        cursor = conn.execute(
            """
            INSERT INTO expenses (trip_id, vehicle_id, driver_id, distance_covered_km, fuel_liters,
                                  fuel_cost, misc_cost, expense_date, description, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                trip["id"],
                vehicle_id,
                driver_id,
                *(data.get(key, 0) or 0 for key in COST_FIELDS),
                format_timestamp(expense_date),
                (data.get("description") or "").strip() or None,
                status,
                format_timestamp(now),
            ),
        )
        logger.info("Expense recorded for trip %s", trip["trip_code"])
        return get_expense(conn, cursor.lastrowid)


def update_expense(conn, expense_id, data):
    """Edit amounts, date, description or status. The trip link is fixed."""
    editable = (*COST_FIELDS, "expense_date", "description", "status")
    changes = {key: data[key] for key in editable if key in data}

    with atomic(conn):
        expense = get_expense(conn, expense_id)
        for key in ("vehicle_id", "driver_id"):
            if data.get(key) and data[key] != expense[key]:
                raise ValidationFailed([MISMATCH_ERROR])
        errors = _validate_amounts({**dict(expense), **changes})
        if "expense_date" in changes and not changes["expense_date"]:
            errors.append("Invalid expense date.")
        if errors:
            raise ValidationFailed(errors, message="Expense validation failed.")
        for key in COST_FIELDS:
            if key in changes:
                changes[key] = changes[key] or 0
        if "expense_date" in changes:
            changes["expense_date"] = format_timestamp(parse_timestamp(changes["expense_date"]))
        if "description" in changes:
            changes["description"] = (changes["description"] or "").strip() or None
        if changes:
            assignments = ", ".join(f"{key} = ?" for key in changes)
            conn.execute(
                f"UPDATE expenses SET {assignments} WHERE id = ?", (*changes.values(), expense_id)
            )
        return get_expense(conn, expense_id)


def delete_expense(conn, expense_id):
    with atomic(conn):
        expense = get_expense(conn, expense_id)
        conn.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
        logger.info("Expense %s deleted", expense_id)
        return expense
