"""Pytest configuration and fixtures for the Tasmota admin backend."""

import os

# Must be set before the package creates its engine.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"

import httpx
import pytest
from fastapi.testclient import TestClient

from tasmota_admin.db import models  # noqa: F401
from tasmota_admin.db.models import Device
from tasmota_admin.db.session import Base, SessionLocal, engine
from tasmota_admin.models.enums import DeviceStatus
from tasmota_admin.services.tasmota import TasmotaService
from tasmota_admin.services.transport import TasmotaTransport

from tests.fakes import FakeNetwork


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def service(network) -> TasmotaService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(network.handler))
    return TasmotaService(TasmotaTransport("admin", "secret", client=client))


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_device(db_session):
    def _make(device_id: str, ip_address: str, **fields) -> Device:
        device = Device(
            device_id=device_id,
            device_name=fields.pop("device_name", device_id.replace("_", " ").title()),
            ip_address=ip_address,
            firmware_version=fields.pop("firmware_version", "13.1.0"),
            status=fields.pop("status", DeviceStatus.ONLINE),
            **fields,
        )
        db_session.add(device)
        db_session.commit()
        return device
    return _make


@pytest.fixture
def user_role() -> dict:
    return {"username": "admin", "role": "admin"}


@pytest.fixture
def client(db_session, service, user_role, monkeypatch):
    """API client with authentication and the device service replaced."""
    from tasmota_admin.core.tasks import device_tasks
    from tasmota_admin.main import app
    from tasmota_admin.utils.dependencies import get_current_user, get_tasmota_service

    enqueued = []
    monkeypatch.setattr(device_tasks.persist_device_status, "delay", lambda *args: enqueued.append(args))

    async def current_user():
        return user_role

    app.dependency_overrides[get_current_user] = current_user
    app.dependency_overrides[get_tasmota_service] = lambda: service
    with TestClient(app) as test_client:
        test_client.enqueued = enqueued
        yield test_client
    app.dependency_overrides.clear()
