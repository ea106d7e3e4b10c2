from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
import logging
import sqlite3

from errors import EngineError, FleetError
from statuses import VehicleStatus

BASE_DIR = Path(__file__).resolve().parent
SCHEMA_PATH = BASE_DIR / "schema.sql"

logger = logging.getLogger(__name__)


def get_db_connection(database):
    # Autocommit mode: transactions are opened explicitly by atomic().
    conn = sqlite3.connect(database, isolation_level=None, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_database(conn):
    with open(SCHEMA_PATH, "r", encoding="utf-8") as schema_file:
        conn.executescript(schema_file.read())


@contextmanager
def atomic(conn):
    """BEGIN IMMEDIATE transaction; FleetError commits then re-raises, storage errors roll back."""
    if conn.in_transaction:
        yield conn
        return

    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except FleetError:
        conn.execute("COMMIT")
        raise
    except sqlite3.Error as exc:
        conn.execute("ROLLBACK")
        logger.exception("Storage error, transaction rolled back")
        raise EngineError() from exc
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def current_time(now=None):
    return now or datetime.now().replace(microsecond=0)


def format_timestamp(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(microsecond=0).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def parse_timestamp(value):
    """Parse a stored ISO date or datetime into a naive local datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def row_to_dict(row):
    return dict(row) if row is not None else None


def claim_vehicle(conn, vehicle_id):
    """Available -> OnTrip as one conditional update; False when the vehicle was not Available."""
    cursor = conn.execute(
        "UPDATE vehicles SET status = ? WHERE id = ? AND status = ?",
        (VehicleStatus.ON_TRIP.value, vehicle_id, VehicleStatus.AVAILABLE.value),
    )
    return cursor.rowcount == 1
