"""
Tests for GET /api/v1/channels.
"""

import pytest

from conftest import AUTH_HEADERS, post_message

from yaklog.main import clamp_limit


class TestChannels:

    def test_empty(self, client):
        data = client.get("/api/v1/channels", headers=AUTH_HEADERS).json()

        assert data == {"channels": [], "count": 0}

    def test_most_recently_active_first(self, client):
        post_message(client, channel="alpha")
        post_message(client, channel="beta")
        latest = post_message(client, channel="alpha")

        data = client.get("/api/v1/channels", headers=AUTH_HEADERS).json()

        assert data["count"] == 2
        alpha, beta = data["channels"]
        assert alpha == {
            "channel": "alpha",
            "message_count": 2,
            "latest_id": latest["id"],
            "last_message_at": latest["created_at"],
        }
        assert beta["channel"] == "beta"
        assert beta["message_count"] == 1

    def test_limit(self, client):
        for name in ("a", "b", "c"):
            post_message(client, channel=name)

        data = client.get("/api/v1/channels", params={"limit": 1}, headers=AUTH_HEADERS).json()

        assert [c["channel"] for c in data["channels"]] == ["c"]

    def test_deleted_messages_leave_counts(self, client):
        keep = post_message(client, channel="alpha")
        gone = post_message(client, channel="alpha")
        client.delete(f"/api/v1/messages/{gone['id']}", headers=AUTH_HEADERS)

        channel = client.get("/api/v1/channels", headers=AUTH_HEADERS).json()["channels"][0]

        assert channel["message_count"] == 1
        assert channel["latest_id"] == keep["id"]

    def test_invalid_limit(self, client):
        response = client.get("/api/v1/channels", params={"limit": 0}, headers=AUTH_HEADERS)

        assert response.status_code == 400


@pytest.mark.parametrize(
    "limit,default,maximum,expected",
    [
        (None, 100, 500, 100),
        (10, 100, 500, 10),
        (500, 100, 500, 500),
        (10_000, 100, 500, 500),
        (None, 50, 200, 50),
        (201, 50, 200, 200),
    ],
)
def test_clamp_limit(limit, default, maximum, expected):
    assert clamp_limit(limit, default, maximum) == expected
