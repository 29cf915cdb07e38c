"""
Time authority tests.

Tests for:
1. server_time_ms returns epoch milliseconds
2. GET /api/v1/time response shape
3. Service info endpoints

Run with: pytest tests/test_time_authority.py -v
"""
import time
from unittest.mock import patch

from fastapi.testclient import TestClient

from pitwall.main import app
from pitwall.services.time_authority import server_time_ms


# ============================================
# Test: Authority Clock
# ============================================

class TestServerTime:
    """The authority clock is plain epoch milliseconds."""

    def test_server_time_is_integer_ms(self):
        value = server_time_ms()
        assert isinstance(value, int)
        assert abs(value - int(time.time() * 1000)) < 1000

    def test_server_time_is_non_decreasing(self):
        first = server_time_ms()
        second = server_time_ms()
        assert second >= first


# ============================================
# Test: Time Endpoint
# ============================================

class TestTimeEndpoint:
    """GET /api/v1/time"""

    def test_returns_server_time_ms(self):
        client = TestClient(app)
        with patch("pitwall.routes.clock.server_time_ms", return_value=1700000000123):
            response = client.get("/api/v1/time")

        assert response.status_code == 200
        assert response.json() == {"server_time_ms": 1700000000123}

    def test_needs_no_credentials(self):
        """Spectators calibrate against the same endpoint as the admin."""
        client = TestClient(app)
        response = client.get("/api/v1/time")

        assert response.status_code == 200
        assert isinstance(response.json()["server_time_ms"], int)


class TestServiceInfo:
    """Health and root endpoints."""

    def test_health(self):
        client = TestClient(app)
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root_lists_endpoints(self):
        client = TestClient(app)
        data = client.get("/").json()

        assert data["time"] == "/api/v1/time"
        assert data["race_state"] == "/api/v1/race-state"
        assert data["stream"] == "/api/v1/race-state/stream"
