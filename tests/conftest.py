"""
Pytest configuration and shared fixtures.

Each test gets its own application and SQLite file under tmp_path, so no
state leaks between tests and no .env file is consulted.
"""

import pytest
from fastapi.testclient import TestClient

from yaklog.config import Settings
from yaklog.main import create_app
from yaklog.storage import MessageStore

TEST_API_KEY = "test-key"
AUTH_HEADERS = {"Authorization": f"Bearer {TEST_API_KEY}"}


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "YAKLOG_DB_PATH": str(tmp_path / "data" / "yaklog.db"),
        "YAKLOG_API_KEYS": TEST_API_KEY,
        "LOG_LEVEL": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def client(settings):
    """Test client with the lifespan running, so the store is open."""
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def store(tmp_path):
    """A store opened directly, without the HTTP layer."""
    message_store = MessageStore.open(str(tmp_path / "store.db"))
    yield message_store
    message_store.close()


def post_message(client, channel="general", sender="agent", body="hello", **extra):
    """Helper to create a message through the API and return it."""
    payload = {"channel": channel, "sender": sender, "body": body, **extra}
    response = client.post("/api/v1/messages", json=payload, headers=AUTH_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()["message"]
