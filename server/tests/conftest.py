# ─────────────────────────────────────────────────────────────────────────────
# Test Fixtures — shared across all tests
# ─────────────────────────────────────────────────────────────────────────────
# Settings are built directly per test (no env mutation, no global state).
# The upstream is mocked at the transport layer with respx.
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

import pytest
import respx
from fastapi.testclient import TestClient

from lorica.config import Settings
from lorica.main import create_app

UPSTREAM = "https://summon.test"
ACCESS_ID = "test"
SECRET_KEY = "ed2ee2e0-65c1-11de-8a39-0800200c9a66"
ORIGIN = "http://test.com"


def make_settings(**overrides: Any) -> Settings:
    """Settings for tests — fixed credentials, mocked upstream, no .env."""
    values: dict[str, Any] = {
        "access_id": ACCESS_ID,
        "secret_key": SECRET_KEY,
        "summon_api_url": UPSTREAM,
        "allowed_origins": ORIGIN,
        "log_json": False,
        "log_level": "DEBUG",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_client(**overrides: Any) -> TestClient:
    """TestClient over a fresh app; error handlers render instead of raising."""
    return TestClient(create_app(make_settings(**overrides)), raise_server_exceptions=False)


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def client() -> TestClient:
    return make_client()


@pytest.fixture
def upstream():
    """respx router for the Summon API; unmatched requests fail the test."""
    with respx.mock(assert_all_called=False) as router:
        yield router
