import os
import sys

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

ROOT_DIR = os.path.dirname(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from auth import AuthService  # noqa: E402
from crypto import DataCipher  # noqa: E402
from database import DatabaseService, create_db_engine  # noqa: E402
from main import app  # noqa: E402
from secure_storage import MemorySecureStorage  # noqa: E402


class FakeClock:
    """Wall clock stand-in that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def engine():
    """A fresh in-memory database shared by every connection of the test."""
    test_engine = create_db_engine("sqlite://", poolclass=StaticPool)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db(engine):
    service = DatabaseService(engine)
    service.initialize()
    return service


@pytest.fixture
def storage():
    return MemorySecureStorage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth(db, storage, clock):
    service = AuthService(db, storage, cipher=DataCipher(storage), clock=clock)
    yield service
    service.shutdown()


@pytest.fixture(scope="function")
def client(db, auth):
    """Return a TestClient wired to the in-memory services for each test."""
    app.state.db = db
    app.state.auth = auth

    with TestClient(app) as test_client:
        yield test_client

    app.state.db = None
    app.state.auth = None


@pytest.fixture
def session_client(client):
    """A client with an open session (no PIN configured)."""
    res = client.post("/auth/login")
    assert res.status_code == 200
    assert res.json()["success"] is True
    return client
