"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with all blueprints, plugins, and configuration.

Gunicorn entry point: ``scimgate.flask_app:create_app()``
"""
from __future__ import annotations
import logging
from typing import Mapping, Optional

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from scimgate.config import AppConfig, load_settings
from scimgate.plugins.base import Plugin
from scimgate.plugins.manager import PluginManager
from scimgate.plugins.memory import MemoryPlugin


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(config: Optional[AppConfig] = None, plugins: Optional[Mapping[str, Plugin]] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Configuration to use; loaded from the environment when omitted
        plugins: Backend instances keyed by plugin name. Configured plugins
            without an instance here get an in-memory backend.
    """
    cfg = config or load_settings()
    cfg.validate()
    logging.basicConfig(
        level=cfg.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.config["MAX_CONTENT_LENGTH"] = cfg.max_payload_bytes
    app.config["PLUGIN_MANAGER"] = _build_manager(cfg, plugins or {})

    # Trust X-Forwarded-* headers from the reverse proxy
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    from scimgate.api import errors, health, scim

    app.register_blueprint(health.bp)
    app.register_blueprint(scim.bp)
    errors.register_error_handlers(app)

    print(f"[flask_app] ✓ SCIM gateway ready | plugins={', '.join(app.config['PLUGIN_MANAGER'].names())}")
    return app


def _build_manager(cfg: AppConfig, plugins: Mapping[str, Plugin]) -> PluginManager:
    manager = PluginManager()
    for plugin_config in cfg.plugins:
        plugin = plugins.get(plugin_config.name) or MemoryPlugin(plugin_config.name)
        manager.register(plugin, plugin_config)
    return manager
