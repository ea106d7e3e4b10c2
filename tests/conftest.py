from datetime import datetime
from itertools import count
from pathlib import Path

import pytest

import db
from drivers import create_driver
from trips import create_trip
from vehicles import create_vehicle

NOW = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def conn(tmp_path: Path):
    connection = db.get_db_connection(str(tmp_path / "fleet.db"))
    db.initialize_database(connection)
    yield connection
    connection.close()


@pytest.fixture
def make_vehicle(conn):
    plates = count(1)

    def _make(**overrides):
        data = {
            "name_model": "Volvo FH16",
            "license_plate": f"TRK-{next(plates):03d}",
            "type": "Truck",
            "max_capacity_kg": 8000,
            "odometer_km": 1000,
        }
        data.update(overrides)
        return create_vehicle(conn, data, now=NOW)

    return _make


@pytest.fixture
def make_driver(conn):
    licenses = count(1)

    def _make(**overrides):
        data = {
            "name": "Asha Verma",
            "license_number": f"DL-{next(licenses):04d}",
            "license_expiry_date": "2030-01-01",
        }
        data.update(overrides)
        return create_driver(conn, data, now=NOW)

    return _make


@pytest.fixture
def make_trip(conn):
    def _make(vehicle=None, driver=None, cargo_weight_kg=7000, **overrides):
        data = {
            "pickup_location": "Warehouse 4, Pune",
            "delivery_location": "Retail Hub, Mumbai",
            "cargo_weight_kg": cargo_weight_kg,
            "assigned_vehicle": vehicle["id"] if vehicle else None,
            "assigned_driver": driver["id"] if driver else None,
        }
        data.update(overrides)
        return create_trip(conn, data, now=NOW)

    return _make


def alerts_of_kind(conn, kind):
    return conn.execute(
        "SELECT * FROM alerts WHERE kind = ? ORDER BY id", (getattr(kind, "value", kind),)
    ).fetchall()


def reload(conn, table, row_id):
    return conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
