import mongomock
import pytest
from fastapi.testclient import TestClient

from docbridge import db as bridge_db
from docbridge.db.connection import MongoConnection
from docbridge.main import app


@pytest.fixture
def mock_client():
    return mongomock.MongoClient()


@pytest.fixture(autouse=True)
def mock_db(monkeypatch, mock_client):
    # replace the mongodb connection with mongomock in-memory
    conn = MongoConnection("mongodb://test", "test_db", client_factory=lambda uri, **kw: mock_client)
    monkeypatch.setattr(bridge_db, "connection", conn)
    bridge_db.handles.clear()

    yield mock_client["test_db"]

    bridge_db.handles.clear()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def failing_connection(monkeypatch):
    """Install a connection whose server never answers; returns the factory call log."""
    from pymongo.errors import ServerSelectionTimeoutError

    calls = []

    def factory(uri, **kw):
        calls.append(uri)
        raise ServerSelectionTimeoutError("no servers reachable")

    monkeypatch.setattr(bridge_db, "connection", MongoConnection("mongodb://down", "test_db", client_factory=factory))
    bridge_db.handles.clear()
    return calls
