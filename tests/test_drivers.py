from datetime import date

import pytest

from conftest import NOW, reload
from drivers import apply_driver_action, delete_driver, find_driver, list_eligible_drivers
from errors import ValidationFailed
from trips import dispatch_trip


def test_eligible_drivers_are_on_duty_with_a_valid_license(conn, make_driver) -> None:
    ready = make_driver(name="Asha Verma")
    expiring_today = make_driver(name="Bina Rao", license_expiry_date="2026-03-02")
    make_driver(name="Chetan Das")
    expired = make_driver(name="Dev Mehta", license_expiry_date="2026-03-01")
    apply_driver_action(conn, ready["id"], "clock_in", now=NOW)
    apply_driver_action(conn, expiring_today["id"], "clock_in", now=NOW)
    conn.execute("UPDATE drivers SET status = 'OnDuty' WHERE id = ?", (expired["id"],))

    eligible = list_eligible_drivers(conn, today=date(2026, 3, 2))

    assert [driver["name"] for driver in eligible] == ["Asha Verma", "Bina Rao"]


def test_expired_license_cannot_clock_in(conn, make_driver) -> None:
    driver = make_driver(name="Ravi Kumar", license_expiry_date="2026-03-01")

    with pytest.raises(ValidationFailed) as excinfo:
        apply_driver_action(conn, driver["id"], "clock_in", now=NOW)

    assert excinfo.value.errors == [
        "Driver 'Ravi Kumar' license expired on 2026-03-01. Update license to go on duty."
    ]
    assert reload(conn, "drivers", driver["id"])["status"] == "OffDuty"


def test_driver_on_a_dispatched_trip_cannot_clock_out(conn, make_vehicle, make_driver, make_trip) -> None:
    driver = make_driver(name="Ravi Kumar")
    dispatch_trip(conn, make_trip(make_vehicle(), driver)["id"], now=NOW)

    with pytest.raises(ValidationFailed) as excinfo:
        apply_driver_action(conn, driver["id"], "clock_out", now=NOW)

    assert excinfo.value.errors == ["Driver 'Ravi Kumar' has a dispatched trip and cannot clock out."]
    assert reload(conn, "drivers", driver["id"])["status"] == "OnDuty"


def test_driver_with_trip_records_cannot_be_deleted(conn, make_driver, make_trip) -> None:
    driver = make_driver()
    make_trip(driver=driver)

    with pytest.raises(ValidationFailed) as excinfo:
        delete_driver(conn, driver["id"])

    assert excinfo.value.errors == ["Driver cannot be deleted because they have trip records."]


def test_unused_driver_is_deleted(conn, make_driver) -> None:
    driver = make_driver()

    delete_driver(conn, driver["id"])

    assert find_driver(conn, driver["id"]) is None
