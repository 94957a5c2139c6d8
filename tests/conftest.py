import pytest
from datetime import datetime
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from checkin_app.config import settings
from checkin_app.database import Base, get_db, get_session_factory
from checkin_app.dependencies import get_backend, get_clock, get_notifier
from checkin_app.main import app
from checkin_app.services.access_gate import gate_registry
from tests.fakes import KST, FakeNotifier, FakeSheetsBackend, FixedClock

TEST_DB_URL = "sqlite:///./test_checkin.db"

OFFICE_LOCATION = (37.5665, 126.9780)
OFFICE_IP = "203.0.113.10"
WIFI_PASSWORD = "office-wifi"

engine = create_engine(TEST_DB_URL, connect_args={"check_same_thread": False})
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_session_factory] = lambda: TestingSession


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    gate_registry.clear()
    yield
    gate_registry.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def office_settings(monkeypatch):
    monkeypatch.setattr(settings, "OFFICE_LOCATION", f"{OFFICE_LOCATION[0]},{OFFICE_LOCATION[1]}")
    monkeypatch.setattr(settings, "LOCATION_RADIUS", 300)
    monkeypatch.setattr(settings, "OFFICE_WIFI_PASSWORD", WIFI_PASSWORD)
    monkeypatch.setattr(settings, "ALLOWED_EMAIL_DOMAINS", ["litmers.com", "cigro.io"])
    monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", "")
    monkeypatch.setattr(settings, "GOOGLE_SHEET_ID", "")
    # TestClient 요청의 peer 주소는 "testclient"다.
    monkeypatch.setattr(settings, "TRUSTED_PROXIES", ["testclient"])


@pytest.fixture
def db():
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def backend():
    fake = FakeSheetsBackend()
    app.dependency_overrides[get_backend] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_backend, None)


@pytest.fixture
def notifier():
    fake = FakeNotifier()
    app.dependency_overrides[get_notifier] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture
def clock():
    fixed = FixedClock(datetime(2026, 10, 19, 8, 30, tzinfo=KST))
    app.dependency_overrides[get_clock] = lambda: fixed
    yield fixed
    app.dependency_overrides.pop(get_clock, None)


@pytest.fixture
def client(backend, notifier, clock):
    return TestClient(app)


def register_device(client, ip: str = OFFICE_IP) -> dict:
    resp = client.post("/api/devices")
    assert resp.status_code == 200, resp.text
    return {
        "Authorization": f"Bearer {resp.json()['device_token']}",
        "X-Forwarded-For": ip,
    }


@pytest.fixture
def device_headers(client):
    return register_device(client)


@pytest.fixture
def authorized_headers(client, backend, device_headers):
    backend.networks.append([OFFICE_IP, "2026-10-01T00:00:00+00:00", "pytest"])
    resp = client.post("/api/gate/check", json={"location": None}, headers=device_headers)
    assert resp.json()["status"] == "authorized", resp.text
    return device_headers


@pytest.fixture
def signed_in_headers(client, authorized_headers):
    resp = client.post(
        "/api/auth/sign-in",
        json={"local_part": "alice", "domain": "litmers.com"},
        headers=authorized_headers,
    )
    assert resp.status_code == 200, resp.text
    return authorized_headers
