from datetime import date, timedelta

import db
from app import app, initialize_database
from drivers import create_driver
from maintenance import open_maintenance
from vehicles import create_vehicle

DEMO_VEHICLES = [
    {"name_model": "Volvo FH16", "license_plate": "FLT-1001", "type": "Truck", "max_capacity_kg": 8000, "odometer_km": 42000},
    {"name_model": "Ford Transit", "license_plate": "FLT-2001", "type": "Van", "max_capacity_kg": 1500, "odometer_km": 8000},
    {"name_model": "Honda CB Shine", "license_plate": "FLT-3001", "type": "Bike", "max_capacity_kg": 40, "odometer_km": 1200},
]


def seed_demo_fleet(conn):
    if conn.execute("SELECT 1 FROM vehicles LIMIT 1").fetchone():
        return False

    vehicles = [create_vehicle(conn, data) for data in DEMO_VEHICLES]
    today = date.today()
    create_driver(
        conn,
        {"name": "Asha Verma", "license_number": "DL-0001", "license_expiry_date": (today + timedelta(days=700)).isoformat()},
    )
    create_driver(
        conn,
        {
            "name": "Ravi Kumar",
            "license_number": "DL-0002",
            "license_expiry_date": (today + timedelta(days=20)).isoformat(),
            "safety_score_pct": 68,
        },
    )
    open_maintenance(
        conn,
        {
            "vehicle_id": vehicles[0]["id"],
            "service_type": "Oil Change",
            "service_date": (today - timedelta(days=30)).isoformat(),
            "odometer_at_service": 40000,
            "cost": 120,
            "status": "Completed",
        },
    )
    return True


if __name__ == "__main__":
    initialize_database()
    conn = db.get_db_connection(app.config["DATABASE"])
    try:
        seeded = seed_demo_fleet(conn)
    finally:
        conn.close()
    print(
        f"Database initialized at {app.config['DATABASE']}. "
        + ("Demo fleet seeded." if seeded else "Existing data kept.")
    )
