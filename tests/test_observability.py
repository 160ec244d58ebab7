"""
Tests for Prometheus metrics and request logging.
"""

import json
import logging

from conftest import AUTH_HEADERS, post_message

from yaklog.logging_utils import CustomJsonFormatter, request_id_ctx


class TestMetrics:

    def test_metrics_exposed_without_auth(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_message_operations_counted(self, client):
        created = post_message(client)
        client.delete(f"/api/v1/messages/{created['id']}", headers=AUTH_HEADERS)
        client.delete(f"/api/v1/messages/{created['id']}", headers=AUTH_HEADERS)

        text = client.get("/metrics").text

        assert 'message_operations_total{operation="create",result="ok"}' in text
        assert 'message_operations_total{operation="delete",result="ok"}' in text
        assert 'message_operations_total{operation="delete",result="not_found"}' in text

    def test_paths_labelled_by_route_template(self, client):
        created = post_message(client)
        client.get(f"/api/v1/messages/{created['id']}", headers=AUTH_HEADERS)

        text = client.get("/metrics").text

        assert 'path="/api/v1/messages/{message_id}"' in text
        assert f'path="/api/v1/messages/{created["id"]}"' not in text


class TestJsonLogging:

    def test_record_includes_request_id(self):
        formatter = CustomJsonFormatter('%(ts)s %(level)s %(name)s %(message)s')
        record = logging.LogRecord("yaklog.test", logging.INFO, __file__, 1, "hello", None, None)

        token = request_id_ctx.set("req-123")
        try:
            output = json.loads(formatter.format(record))
        finally:
            request_id_ctx.reset(token)

        assert output["message"] == "hello"
        assert output["level"] == "INFO"
        assert output["request_id"] == "req-123"
        assert output["ts"].endswith("Z")
