"""Pytest shared fixtures for the SCIM gateway tests."""
import base64
import pathlib
import sys

import pytest

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scimgate.config import AppConfig, AuthConfig, PluginConfig  # noqa: E402
from scimgate.core.attributes import ENTERPRISE_USER_SCHEMA, USER_SCHEMA  # noqa: E402

BASIC_USER = "scim-client"
BASIC_PASSWORD = "s3cret-pass"
BEARER_TOKEN = "test-bearer-token"


# ─────────────────────────────────────────────────────────────────────────────
# Resources
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def user_resource():
    """A stored User as a backend would return it."""
    return {
        "schemas": [USER_SCHEMA, ENTERPRISE_USER_SCHEMA],
        "id": "2819c223-7f76-453a-919d-413861904646",
        "userName": "bjensen",
        "name": {"givenName": "Barbara", "familyName": "Jensen"},
        "displayName": "Babs Jensen",
        "active": True,
        "emails": [
            {"value": "bjensen@example.com", "type": "work", "primary": True},
            {"value": "babs@jensen.org", "type": "home"},
        ],
        ENTERPRISE_USER_SCHEMA: {"employeeNumber": "701984", "manager": {"value": "26118915"}},
        "meta": {
            "resourceType": "User",
            "created": "2024-01-23T04:56:22Z",
            "lastModified": "2024-05-13T04:42:34Z",
            "version": "3694e05e9dff591",
        },
    }


# ─────────────────────────────────────────────────────────────────────────────
# Flask application
# ─────────────────────────────────────────────────────────────────────────────
def make_config(**overrides) -> AppConfig:
    """Config with one open plugin and one Basic-protected plugin."""
    values = dict(
        base_url="https://scim.example.com",
        plugins=[
            PluginConfig("memory"),
            PluginConfig("secure", AuthConfig(type="basic", username=BASIC_USER, password=BASIC_PASSWORD)),
            PluginConfig("tokened", AuthConfig(type="bearer", token=BEARER_TOKEN)),
        ],
        max_payload_bytes=16 * 1024,
    )
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def app():
    from scimgate.flask_app import create_app

    flask_app = create_app(make_config())
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


# ─────────────────────────────────────────────────────────────────────────────
# Authentication Helpers
# ─────────────────────────────────────────────────────────────────────────────
def basic_auth_header(username: str = BASIC_USER, password: str = BASIC_PASSWORD) -> dict:
    encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {encoded}"}


def bearer_auth_header(token: str = BEARER_TOKEN) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "critical: marks tests as critical security tests (P0 priority)"
    )
