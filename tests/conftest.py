import sys
import os
import pytest

# make sure the repository root is on sys.path for test collection
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Use a dedicated test sqlite file for consistency across the TestClient and app imports
test_db_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '.test.db'))
os.environ.setdefault('DATABASE_URL', f'sqlite:///{test_db_path}')

from fastapi.testclient import TestClient

from backend.qrtrack.db import Base, get_engine
from backend.qrtrack import models  # Ensure models are imported so table metadata is registered
from backend.qrtrack.main import app
from backend.qrtrack.storage import MemStorage, get_storage


@pytest.fixture(scope="session", autouse=True)
def prepare_db():
    # Create tables for tests and drop them at the end
    Base.metadata.create_all(bind=get_engine())
    yield
    Base.metadata.drop_all(bind=get_engine())


@pytest.fixture
def storage():
    return MemStorage()


@pytest.fixture
def client(storage):
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Register ``username`` and return Authorization headers for it."""
    def _login(username="alice", password="pw-123456"):
        r = client.post("/auth/register", json={"username": username, "password": password})
        assert r.status_code == 200
        r = client.post("/auth/login", json={"username": username, "password": password})
        assert r.status_code == 200
        return {"Authorization": f"Bearer {r.json()['access_token']}"}
    return _login
