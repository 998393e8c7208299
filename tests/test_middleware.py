"""Tests for the request hooks: request IDs, timing logs and response headers."""

from datetime import datetime
from unittest.mock import patch

import pytest
from flask_jwt_extended import jwt_required

from tradeacademy.models import utcnow

pytestmark = pytest.mark.api


def _logged_details(mock_logger, level="info"):
    calls = getattr(mock_logger, level).call_args_list
    assert calls, f"nothing logged at {level}"
    return calls[-1].kwargs["extra"]


class TestRequestId:

    def test_generated_when_missing(self, client):
        response = client.get("/health")

        assert len(response.headers["X-Request-ID"]) == 32

    def test_well_formed_client_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "client-req-0001"})

        assert response.headers["X-Request-ID"] == "client-req-0001"

    def test_oversized_or_odd_client_id_is_replaced(self, client):
        for supplied in ("x" * 500, "bad id with spaces", "short"):
            response = client.get("/health", headers={"X-Request-ID": supplied})
            assert response.headers["X-Request-ID"] != supplied

    def test_error_envelope_carries_request_id(self, client):
        response = client.get("/api/nothing-here", headers={"X-Request-ID": "trace-me-please"})

        assert response.get_json()["error"]["request_id"] == "trace-me-please"


class TestRequestLogging:

    @patch("tradeacademy.utils.middleware.logger")
    def test_authenticated_request_logs_user_id(self, mock_logger, app, client, user, auth_headers):
        app.config["SLOW_REQUEST_MS"] = 60000

        response = client.get("/api/trading/portfolio", headers=auth_headers)

        assert response.status_code == 200
        details = _logged_details(mock_logger)
        assert details["user_id"] == str(user.id)
        assert details["status_code"] == 200
        assert isinstance(datetime.fromisoformat(details["started_at"]), datetime)

    @patch("tradeacademy.utils.middleware.logger")
    def test_user_id_does_not_leak_into_next_request(self, mock_logger, app, client, auth_headers):
        app.config["SLOW_REQUEST_MS"] = 60000
        client.get("/api/trading/portfolio", headers=auth_headers)

        client.get("/api/market/quote/AAPL")

        assert _logged_details(mock_logger)["user_id"] is None

    @patch("tradeacademy.utils.middleware.logger")
    def test_slow_request_is_a_warning(self, mock_logger, app, client):
        app.config["SLOW_REQUEST_MS"] = -1

        client.get("/api/market/quote/AAPL")

        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args.args[0].startswith("Slow request: GET /api/market/quote/AAPL")
        mock_logger.info.assert_not_called()

    @patch("tradeacademy.utils.middleware.logger")
    def test_health_checks_are_not_logged(self, mock_logger, app, client):
        app.config["SLOW_REQUEST_MS"] = 60000

        client.get("/health")

        mock_logger.info.assert_not_called()

    def test_response_time_header(self, client):
        response = client.get("/health")

        assert response.headers["X-Response-Time"].endswith("ms")


class TestResponseHeaders:

    def test_security_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Strict-Transport-Security" not in response.headers

    def test_api_responses_are_not_cached(self, client):
        assert client.get("/api/market/quote/AAPL").headers["Cache-Control"] == "no-store"
        assert "no-store" not in client.get("/health").headers.get("Cache-Control", "")

    def test_hsts_in_production(self, app, client):
        app.config["ENV"] = "production"

        response = client.get("/health")

        assert response.headers["Strict-Transport-Security"].startswith("max-age=")


@patch("tradeacademy.utils.middleware.log_security_event")
def test_rate_limited_response_is_reported_with_user(mock_event, app, client, user, auth_headers):
    app.add_url_rule("/api/throttled", "throttled", jwt_required()(lambda: ("", 429)))

    response = client.get("/api/throttled", headers=auth_headers)

    assert response.status_code == 429
    mock_event.assert_called_once()
    assert mock_event.call_args.args[0] == "rate_limit_exceeded"
    assert mock_event.call_args.kwargs["user_id"] == str(user.id)
    assert mock_event.call_args.kwargs["endpoint"] == "throttled"


def test_error_timestamp_is_naive_utc(client):
    before = utcnow()
    body = client.get("/api/nothing-here").get_json()

    stamp = datetime.fromisoformat(body["error"]["timestamp"])
    assert stamp.tzinfo is None
    assert before <= stamp <= utcnow()
