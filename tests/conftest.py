import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from civicwatch.core.config import settings
from civicwatch.db.storage.file import FileStorage
from civicwatch.db.storage.sql import SqlStorage
from main import app

ADMIN_EMAIL = "admin@civicwatch.org"
ADMIN_PASSWORD = "admin-secret"
PASSWORD = "secret123"


@pytest_asyncio.fixture(params=["file", "database"])
async def storage(request, tmp_path):
    if request.param == "file":
        backend = FileStorage(str(tmp_path / "data"))
    else:
        backend = SqlStorage(f"sqlite+aiosqlite:///{tmp_path / 'civicwatch.db'}")
    await backend.connect()
    yield backend
    await backend.disconnect()


@pytest.fixture(params=["file", "database"])
def client(request, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "STORAGE_MODE", request.param)
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "DATABASE_URI", f"sqlite+aiosqlite:///{tmp_path / 'civicwatch.db'}")
    monkeypatch.setattr(settings, "FIRST_ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setattr(settings, "FIRST_ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setattr(settings, "EVENTS_ENABLED", False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def signup(client):
    """Register a user and return (auth headers, user payload)."""

    def _signup(email: str, name: str = "Asha Patil", password: str = PASSWORD):
        response = client.post(
            "/api/auth/signup",
            json={"name": name, "email": email, "password": password},
        )
        assert response.status_code == 201, response.text
        body = response.json()
        return {"Authorization": f"Bearer {body['token']}"}, body["user"]

    return _signup


@pytest.fixture
def admin_headers(client):
    response = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


def pothole(**overrides):
    payload = {
        "title": "Pothole on MG Road",
        "description": "A deep pothole near the bus stop is damaging vehicles every day.",
        "category": "Road Maintenance",
        "priority": "high",
        "location": {"address": "MG Road, near bus stop", "city": "Pune", "state": "Maharashtra"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def report_payload():
    return pothole
