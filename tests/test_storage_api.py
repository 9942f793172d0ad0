"""Tests for category statistics and energy history storage usage."""

from datetime import timedelta

from tasmota_admin.db.models import Category, EnergyReading, utcnow
from tasmota_admin.services.storage import format_bytes


def add_readings(db_session, device, ages):
    now = utcnow()
    for age in ages:
        db_session.add(EnergyReading(device_pk=device.id, power=10.0, energy=1.0, timestamp=now - age))
    db_session.commit()


def test_category_stats(client, make_device, db_session):
    lights = Category(name="Lights", color="#FFAA00")
    db_session.add(lights)
    db_session.commit()
    make_device("lamp_a", "10.0.8.1", category_id=lights.id)
    make_device("lamp_b", "10.0.8.2", category_id=lights.id)
    make_device("fridge", "10.0.8.3")

    response = client.get("/api/devices/categories/stats")

    assert response.status_code == 200
    assert response.json() == [
        {"category_id": lights.id, "category_name": "Lights", "category_color": "#FFAA00", "count": 2},
        {"category_id": None, "category_name": "Uncategorized", "category_color": "#6B7280", "count": 1},
    ]


def test_category_stats_without_uncategorized(client, make_device, db_session):
    media = Category(name="Media", color="#000000")
    db_session.add(media)
    db_session.commit()
    make_device("tv", "10.0.8.4", category_id=media.id)

    response = client.get("/api/devices/categories/stats")

    assert [stat["category_name"] for stat in response.json()] == ["Media"]


def test_device_storage(client, make_device, db_session):
    device = make_device("plug_sg", "10.0.8.5", data_retention_days=30, min_log_interval_seconds=60)
    add_readings(db_session, device, [timedelta(hours=1), timedelta(days=3), timedelta(days=20)])

    response = client.get("/api/devices/plug_sg/storage")

    assert response.status_code == 200
    body = response.json()
    assert body["actual_storage"]["record_count"] == 3
    assert body["actual_storage"]["bytes"] == 250
    # 1440 readings a day for 30 days
    assert body["estimated_storage"]["bytes"] == 3594240
    assert body["estimated_storage"]["formatted"] == "3.4 MB"
    breakdown = body["breakdown"]
    assert (breakdown["last_24_hours"], breakdown["last_7_days"], breakdown["last_30_days"]) == (1, 2, 3)
    assert breakdown["total"] == 3
    assert breakdown["oldest"] < breakdown["newest"]


def test_device_storage_unknown_device(client):
    response = client.get("/api/devices/nope/storage")

    assert response.status_code == 404


def test_storage_overview(client, make_device, db_session):
    logged = make_device("plug_on", "10.0.8.6", data_retention_days=10, min_log_interval_seconds=300)
    idle = make_device("plug_idle", "10.0.8.7", enable_data_logging=False)
    add_readings(db_session, logged, [timedelta(minutes=5)])
    add_readings(db_session, idle, [timedelta(days=2), timedelta(days=3)])

    response = client.get("/api/storage")

    assert response.status_code == 200
    body = response.json()
    summary = body["summary"]
    assert summary["total_records"] == 3
    assert summary["active_devices"] == 1
    assert summary["total_devices"] == 2
    assert summary["average_retention_days"] == 10
    assert summary["average_interval_seconds"] == 300
    devices = {entry["device_id"]: entry for entry in body["devices"]}
    assert devices["plug_idle"]["enabled"] is False
    assert devices["plug_idle"]["estimated_storage"]["bytes"] == 0
    assert devices["plug_idle"]["actual_storage"]["record_count"] == 2


def test_format_bytes():
    assert format_bytes(0) == "0 B"
    assert format_bytes(512) == "512 B"
    assert format_bytes(2048) == "2.0 KB"
    assert format_bytes(1024 ** 2) == "1.0 MB"
