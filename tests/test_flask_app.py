"""Tests for the application factory and app-wide error handling."""
import pytest

from scimgate.config import ConfigValidationError
from scimgate.flask_app import create_app
from scimgate.plugins.memory import MemoryPlugin
from tests.conftest import make_config


def test_factory_wires_config_and_plugins(app):
    assert app.config["APP_CONFIG"].base_url == "https://scim.example.com"
    assert app.config["MAX_CONTENT_LENGTH"] == 16 * 1024
    assert app.config["PLUGIN_MANAGER"].names() == ["memory", "secure", "tokened"]


def test_supplied_plugin_instances_are_used():
    plugin = MemoryPlugin("memory")
    app = create_app(make_config(), plugins={"memory": plugin})
    assert app.config["PLUGIN_MANAGER"].get("memory") is plugin


def test_factory_loads_settings_from_environment(monkeypatch):
    monkeypatch.setenv("SCIM_BASE_URL", "https://idp.example.org")
    monkeypatch.setenv("SCIM_PLUGINS", "hr")
    monkeypatch.delenv("SCIM_PLUGIN_HR_AUTH_TYPE", raising=False)
    app = create_app()
    assert app.config["PLUGIN_MANAGER"].names() == ["hr"]
    assert app.config["APP_CONFIG"].base_url == "https://idp.example.org"


def test_invalid_config_is_rejected():
    with pytest.raises(ConfigValidationError):
        create_app(make_config(base_url="ftp://nope"))


def test_non_scim_404_is_plain_json(client):
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    assert response.get_json()["error"] == "Not Found"


@pytest.mark.parametrize(
    "method, path, status, reason",
    [
        ("post", "/health", 405, "Method Not Allowed"),
        ("get", "/nowhere", 404, "Not Found"),
    ],
)
def test_non_scim_errors_use_standard_reason(client, method, path, status, reason):
    response = getattr(client, method)(path)
    assert response.status_code == status
    body = response.get_json()
    assert body["error"] == reason
    assert set(body) == {"error", "message"}
