"""Gunicorn configuration for the SCIM gateway.

Run with:
    gunicorn -c gunicorn.conf.py

Plugin credentials are read by scimgate.config.settings, from /run/secrets
first (Docker secrets) and then from SCIM_PLUGIN_<NAME>_* environment
variables. The in-memory backend is per process, so keep a single worker
unless every configured plugin talks to shared storage.
"""
import os

bind = os.environ.get("SCIM_BIND", "0.0.0.0:8080")
workers = int(os.environ.get("SCIM_WORKERS", "1"))
threads = int(os.environ.get("SCIM_THREADS", "8"))
timeout = int(float(os.environ.get("SCIM_REQUEST_TIMEOUT", "30"))) + 5
wsgi_app = "scimgate.flask_app:create_app()"
accesslog = "-"


def post_fork(server, worker):
    """
    Called just after a worker has been forked.

    Reports which plugin credentials are available from the Docker secrets
    mount so a missing secret shows up in the worker log, not as 401s.
    """
    from pathlib import Path

    secrets_dir = Path("/run/secrets")
    if not (secrets_dir.exists() and secrets_dir.is_dir()):
        worker.log.info("No /run/secrets mount (plugin credentials come from environment)")
        return

    plugin_names = [n.strip() for n in os.environ.get("SCIM_PLUGINS", "memory").split(",") if n.strip()]
    for name in plugin_names:
        found = [p.name for p in secrets_dir.glob(f"scim_{name}_*") if p.is_file()]
        if found:
            worker.log.info(f"Plugin '{name}': {len(found)} secret(s) in /run/secrets")
