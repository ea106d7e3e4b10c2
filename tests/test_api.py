from pathlib import Path

import pytest

import app as app_module
from app import app, initialize_database


@pytest.fixture
def client(tmp_path: Path, monkeypatch):
    monkeypatch.setitem(app.config, "DATABASE", str(tmp_path / "api.db"))
    monkeypatch.setitem(app.config, "TESTING", True)
    initialize_database()
    with app.test_client() as test_client:
        yield test_client


def _create(client, url, body):
    response = client.post(url, json=body)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]


def _fleet(client, capacity=8000):
    vehicle = _create(
        client,
        "/api/vehicles",
        {"name_model": "Volvo FH16", "license_plate": "api-001", "type": "Truck", "max_capacity_kg": capacity},
    )
    driver = _create(
        client,
        "/api/drivers",
        {"name": "Asha Verma", "license_number": "dl-9001", "license_expiry_date": "2099-12-31"},
    )
    return vehicle, driver


def test_trip_lifecycle_over_http(client) -> None:
    vehicle, driver = _fleet(client)
    assert vehicle["license_plate"] == "API-001"
    assert driver["completion_rate"] == 100

    trip = _create(
        client,
        "/api/trips",
        {
            "pickup_location": "Pune",
            "delivery_location": "Mumbai",
            "cargo_weight_kg": 7000,
            "assigned_vehicle": vehicle["id"],
            "assigned_driver": driver["id"],
        },
    )
    assert trip["status"] == "Draft"

    response = client.post(f"/api/trips/{trip['id']}/dispatch")
    assert response.status_code == 200
    assert response.get_json()["message"] == "Trip dispatched successfully."
    assert client.get(f"/api/vehicles/{vehicle['id']}").get_json()["data"]["status"] == "OnTrip"
    assert client.get(f"/api/drivers/{driver['id']}").get_json()["data"]["status"] == "OnDuty"

    response = client.post(f"/api/trips/{trip['id']}/complete")
    assert response.get_json()["data"]["status"] == "Completed"
    assert client.get(f"/api/vehicles/{vehicle['id']}").get_json()["data"]["status"] == "Available"

    feed = client.get("/api/alerts").get_json()["data"]
    assert [entry["type"] for entry in feed] == ["trip_completed", "trip_dispatched"]


def test_validation_failure_returns_every_error(client) -> None:
    vehicle, _ = _fleet(client, capacity=1000)

    response = client.post(
        "/api/trips",
        json={
            "pickup_location": "Pune",
            "delivery_location": "Mumbai",
            "cargo_weight_kg": 1500,
            "assigned_vehicle": vehicle["id"],
            "expected_start_date": "2026-03-05",
            "expected_delivery_date": "2026-03-04",
        },
    )

    body = response.get_json()
    assert response.status_code == 400
    assert body["success"] is False
    assert body["errors"] == [
        "Delivery date must be same or after start date.",
        "Overweight: selected vehicle capacity is 1000 kg. Reduce cargo or choose a larger vehicle.",
    ]


def test_validate_endpoint_does_not_create_a_trip(client) -> None:
    vehicle, driver = _fleet(client)

    response = client.post(
        "/api/trips/validate",
        json={"assigned_vehicle": vehicle["id"], "assigned_driver": driver["id"], "cargo_weight_kg": 500},
    )

    assert response.get_json()["data"] == {"valid": True, "errors": []}
    assert client.get("/api/trips").get_json()["data"] == []


def test_invalid_transition_is_a_bad_request(client) -> None:
    vehicle, driver = _fleet(client)
    trip = _create(
        client,
        "/api/trips",
        {"pickup_location": "A", "delivery_location": "B", "cargo_weight_kg": 10, "assigned_vehicle": vehicle["id"]},
    )

    response = client.post(f"/api/trips/{trip['id']}/complete")

    assert response.status_code == 400
    assert response.get_json()["errors"] == ['Cannot complete a trip with status "Draft".']


def test_missing_records_are_not_found(client) -> None:
    response = client.get("/api/trips/999")

    assert response.status_code == 404
    assert response.get_json() == {"success": False, "message": "Trip not found."}
    assert client.post("/api/maintenance/5/complete").get_json()["message"] == "Service log not found."
    assert client.get("/api/nowhere").status_code == 404


def test_maintenance_blocked_while_on_trip(client) -> None:
    vehicle, driver = _fleet(client)
    trip = _create(
        client,
        "/api/trips",
        {
            "pickup_location": "Pune",
            "delivery_location": "Nashik",
            "cargo_weight_kg": 100,
            "assigned_vehicle": vehicle["id"],
            "assigned_driver": driver["id"],
        },
    )
    client.post(f"/api/trips/{trip['id']}/dispatch")

    response = client.post("/api/maintenance", json={"vehicle_id": vehicle["id"], "service_type": "Oil Change"})

    assert response.status_code == 400
    assert response.get_json()["message"] == (
        "Cannot open maintenance while vehicle is OnTrip. Mark trip Completed or Cancelled first."
    )


def test_maintenance_round_trip(client) -> None:
    vehicle, _ = _fleet(client)
    record = _create(client, "/api/maintenance", {"vehicle_id": vehicle["id"], "service_type": "Brake Service"})
    assert client.get(f"/api/vehicles/{vehicle['id']}").get_json()["data"]["status"] == "InShop"

    response = client.post(f"/api/maintenance/{record['id']}/complete")

    assert response.get_json()["data"]["status"] == "Completed"
    assert client.get(f"/api/vehicles/{vehicle['id']}").get_json()["data"]["status"] == "Available"


def test_driver_actions_over_http(client) -> None:
    _, driver = _fleet(client)

    response = client.post(f"/api/drivers/{driver['id']}/ban")
    assert response.get_json()["message"] == "Driver is now Banned."

    response = client.post(f"/api/drivers/{driver['id']}/reinstate")
    assert response.status_code == 400
    assert response.get_json()["errors"] == ['Cannot reinstate a driver with status "Banned".']


def test_resolve_alert_over_http(client) -> None:
    vehicle, _ = _fleet(client)
    _create(client, "/api/maintenance", {"vehicle_id": vehicle["id"], "service_type": "Oil Change"})
    alert = client.get("/api/alerts").get_json()["data"][0]

    response = client.post(f"/api/alerts/{alert['id']}/resolve", json={"resolution_note": "Booked"})
    assert response.get_json()["data"]["resolution_note"] == "Booked"
    assert client.get("/api/alerts").get_json()["data"] == []

    again = client.post(f"/api/alerts/{alert['id']}/resolve")
    assert again.status_code == 400
    assert again.get_json()["errors"] == ["Alert already resolved."]

    persisted = client.get("/api/alerts/persisted?resolved=true").get_json()["data"]
    assert [item["id"] for item in persisted] == [alert["id"]]


def test_feed_read_scans_when_no_scheduler_is_running(client) -> None:
    driver = _create(
        client,
        "/api/drivers",
        {"name": "Ravi Kumar", "license_number": "DL-0002", "license_expiry_date": "2000-01-01"},
    )

    feed = client.get("/api/alerts").get_json()["data"]

    assert [entry["type"] for entry in feed] == ["license_expired"]
    assert client.get(f"/api/drivers/{driver['id']}").get_json()["data"]["status"] == "Suspended"


class _RunningScheduler:
    running = True


def test_feed_read_leaves_scans_to_a_running_scheduler(client, monkeypatch) -> None:
    monkeypatch.setattr(app_module, "scheduler", _RunningScheduler())
    _create(
        client,
        "/api/drivers",
        {"name": "Ravi Kumar", "license_number": "DL-0002", "license_expiry_date": "2020-01-01"},
    )
    assert client.get("/api/alerts").get_json()["data"] == []

    monkeypatch.setitem(app.config, "SCAN_ON_FEED_READ", True)
    feed = client.get("/api/alerts").get_json()["data"]

    assert [entry["type"] for entry in feed] == ["license_expired"]


def test_scan_endpoint(client) -> None:
    _create(
        client,
        "/api/drivers",
        {"name": "Ravi Kumar", "license_number": "DL-0002", "license_expiry_date": "2020-01-01"},
    )

    data = client.post("/api/alerts/scan").get_json()["data"]

    assert len(data["compliance"]) == 1
    assert data["maintenance_due"] == []


def test_expense_requires_completed_trip_over_http(client) -> None:
    vehicle, driver = _fleet(client)
    trip = _create(
        client,
        "/api/trips",
        {
            "pickup_location": "Pune",
            "delivery_location": "Goa",
            "cargo_weight_kg": 100,
            "assigned_vehicle": vehicle["id"],
            "assigned_driver": driver["id"],
        },
    )

    response = client.post("/api/expenses", json={"trip_id": trip["id"], "fuel_cost": 500})
    assert response.status_code == 400

    client.post(f"/api/trips/{trip['id']}/dispatch")
    client.post(f"/api/trips/{trip['id']}/complete")
    expense = _create(client, "/api/expenses", {"trip_id": trip["id"], "fuel_cost": 500, "misc_cost": 20})

    assert expense["vehicle_id"] == vehicle["id"]
    assert expense["total_cost"] == 520


def test_validate_endpoint_reports_non_numeric_cargo(client) -> None:
    vehicle, _ = _fleet(client)

    response = client.post(
        "/api/trips/validate",
        json={"assigned_vehicle": vehicle["id"], "cargo_weight_kg": "9000"},
    )

    assert response.status_code == 200
    assert response.get_json()["data"] == {
        "valid": False,
        "errors": ["Cargo weight must be zero or greater."],
    }


def test_available_vehicles_and_eligible_drivers(client) -> None:
    vehicle, driver = _fleet(client)
    _create(client, "/api/maintenance", {"vehicle_id": vehicle["id"], "service_type": "Oil Change"})
    spare = _create(
        client,
        "/api/vehicles",
        {"name_model": "Tata Ace", "license_plate": "api-002", "type": "Van", "max_capacity_kg": 750},
    )
    assert [item["id"] for item in client.get("/api/vehicles/available").get_json()["data"]] == [spare["id"]]

    assert client.get("/api/drivers/eligible").get_json()["data"] == []
    response = client.post(f"/api/drivers/{driver['id']}/clock_in")
    assert response.get_json()["message"] == "Driver is now OnDuty."
    assert [item["id"] for item in client.get("/api/drivers/eligible").get_json()["data"]] == [driver["id"]]


def test_delete_guards_over_http(client) -> None:
    vehicle, driver = _fleet(client)
    trip = _create(
        client,
        "/api/trips",
        {
            "pickup_location": "Pune",
            "delivery_location": "Mumbai",
            "cargo_weight_kg": 100,
            "assigned_vehicle": vehicle["id"],
            "assigned_driver": driver["id"],
        },
    )

    response = client.delete(f"/api/vehicles/{vehicle['id']}")
    assert response.status_code == 400
    assert response.get_json()["errors"] == ["Vehicle cannot be deleted because it has trip records."]
    response = client.delete(f"/api/drivers/{driver['id']}")
    assert response.get_json()["errors"] == ["Driver cannot be deleted because they have trip records."]

    client.delete(f"/api/trips/{trip['id']}")
    assert client.delete(f"/api/vehicles/{vehicle['id']}").get_json()["message"] == "Vehicle deleted."
    assert client.delete(f"/api/drivers/{driver['id']}").get_json()["message"] == "Driver deleted."
    assert client.get(f"/api/vehicles/{vehicle['id']}").status_code == 404


def test_maintenance_and_expense_edits_over_http(client) -> None:
    vehicle, driver = _fleet(client)
    record = _create(client, "/api/maintenance", {"vehicle_id": vehicle["id"], "service_type": "Oil Change"})

    response = client.patch(f"/api/maintenance/{record['id']}", json={"cost": 2500, "description": " Synthetic "})
    assert response.get_json()["data"]["cost"] == 2500
    assert response.get_json()["data"]["description"] == "Synthetic"
    client.post(f"/api/maintenance/{record['id']}/complete")

    trip = _create(
        client,
        "/api/trips",
        {
            "pickup_location": "Pune",
            "delivery_location": "Goa",
            "cargo_weight_kg": 100,
            "assigned_vehicle": vehicle["id"],
            "assigned_driver": driver["id"],
        },
    )
    client.post(f"/api/trips/{trip['id']}/dispatch")
    client.post(f"/api/trips/{trip['id']}/complete")
    expense = _create(client, "/api/expenses", {"trip_id": trip["id"], "fuel_cost": 500})

    response = client.patch(f"/api/expenses/{expense['id']}", json={"misc_cost": 75, "status": "Approved"})
    assert response.get_json()["data"]["total_cost"] == 575
    assert response.get_json()["data"]["status"] == "Approved"

    assert client.delete(f"/api/expenses/{expense['id']}").get_json()["message"] == "Expense deleted."
    assert client.get(f"/api/expenses/{expense['id']}").status_code == 404


def test_unresolve_alert_over_http(client) -> None:
    vehicle, _ = _fleet(client)
    _create(client, "/api/maintenance", {"vehicle_id": vehicle["id"], "service_type": "Oil Change"})
    alert = client.get("/api/alerts").get_json()["data"][0]

    response = client.post(f"/api/alerts/{alert['id']}/unresolve")
    assert response.status_code == 400
    assert response.get_json()["errors"] == ["Alert is not resolved."]

    client.post(f"/api/alerts/{alert['id']}/resolve")
    response = client.post(f"/api/alerts/{alert['id']}/unresolve")

    assert response.get_json()["data"]["resolved"] is False
    assert [entry["id"] for entry in client.get("/api/alerts").get_json()["data"]] == [alert["id"]]
