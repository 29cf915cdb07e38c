"""
Pytest configuration and fixtures for Pitwall server tests.
"""
import os
import sys

# Add the cloud directory to path so `pitwall` imports resolve
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from unittest.mock import patch, AsyncMock

# Set test environment before importing pitwall
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379"
os.environ["ADMIN_TOKENS"] = "test-admin-token,second-admin-token"
os.environ["ADMIN_TOKEN_HASH"] = ""
os.environ["DEBUG"] = "true"

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture
def mock_publish():
    """Capture change-feed publishes instead of talking to Redis."""
    from pitwall import redis_client

    with patch.object(redis_client, "publish_race_state", new_callable=AsyncMock) as mock:
        mock.return_value = 1
        yield mock


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}
