import os
import tempfile
import time
import uuid
from pathlib import Path

import pytest

# Point the app at a throw-away SQLite file before it is imported.
_DB_PATH = Path(tempfile.gettempdir()) / f"accountbook-test-{os.getpid()}.db"
if _DB_PATH.exists():
    _DB_PATH.unlink()
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["ENV"] = "dev"
os.environ["EXPOSE_ERROR_DEBUG"] = "true"

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from accountbook import services  # noqa: E402
from accountbook.database import engine  # noqa: E402
from accountbook.main import app, API  # noqa: E402


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def clean_state():
    """Empty every table and the category cache after each test."""
    yield
    services.event_publisher.drain(timeout=10)
    with engine.begin() as conn:
        for table in reversed(SQLModel.metadata.sorted_tables):
            conn.execute(table.delete())
    services.category_cache.clear()


@pytest.fixture
def register_user(client):
    """Create an account through the API and return its tokens and headers."""

    def _register(name: str = "tester", email: str = None):
        provider_id = uuid.uuid4().hex
        email = email or f"{name}-{provider_id[:8]}@example.com"
        r = client.post(f"{API}/auth/register", json={
            "provider": "google",
            "providerId": provider_id,
            "email": email,
            "name": name,
        })
        assert r.status_code == 200, r.text
        data = r.json()["data"]
        return {
            "uuid": data["user"]["uuid"],
            "email": email,
            "provider_id": provider_id,
            "token": data["accessToken"],
            "refresh": data["refreshToken"],
            "headers": {"Authorization": f"Bearer {data['accessToken']}"},
        }

    return _register


@pytest.fixture
def create_family(client):
    def _create(headers: dict, name: str = "Home", monthly_budget=0):
        r = client.post(f"{API}/families", json={"name": name, "monthlyBudget": monthly_budget}, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()["data"]

    return _create


@pytest.fixture
def first_category(client):
    def _first(headers: dict, family_uuid: str):
        r = client.get(f"{API}/families/{family_uuid}/categories", headers=headers)
        assert r.status_code == 200, r.text
        return r.json()["data"][0]

    return _first


@pytest.fixture
def join_family(client):
    """Invite `member` into the family owned by `owner` and accept it."""

    def _join(owner: dict, member: dict, family_uuid: str):
        inv = client.post(f"{API}/invitations/families/{family_uuid}", json={}, headers=owner["headers"])
        assert inv.status_code == 201, inv.text
        token = inv.json()["data"]["token"]
        accepted = client.post(f"{API}/invitations/accept", json={"token": token}, headers=member["headers"])
        assert accepted.status_code == 200, accepted.text
        return token

    return _join


@pytest.fixture
def eventually():
    """Poll `check` until it returns a truthy value or the deadline passes."""

    def _eventually(check, timeout: float = 5.0, interval: float = 0.05):
        deadline = time.time() + timeout
        result = None
        while time.time() < deadline:
            result = check()
            if result:
                return result
            time.sleep(interval)
        return result

    return _eventually


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    if _DB_PATH.exists():
        _DB_PATH.unlink()
