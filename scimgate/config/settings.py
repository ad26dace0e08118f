"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

AUTH_TYPES = ("none", "basic", "bearer")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigValidationError(ValueError):
    """Raised with every configuration problem found, not just the first."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid configuration: " + "; ".join(problems))


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class AuthConfig:
    """Per-plugin authentication settings."""
    type: str = "none"
    username: str = ""
    password: str = ""
    token: str = ""


@dataclass
class PluginConfig:
    name: str
    auth: AuthConfig = field(default_factory=AuthConfig)


@dataclass
class AppConfig:
    """Application configuration container."""
    base_url: str = "http://localhost:8080"
    plugins: list[PluginConfig] = field(default_factory=lambda: [PluginConfig("memory")])

    # Operational limits
    max_results: int = 1000
    default_count: int = 100
    max_patch_operations: int = 100
    max_payload_bytes: int = 1024 * 1024
    request_timeout_seconds: float = 30.0

    log_level: str = "INFO"
    documentation_uri: str = ""

    def validate(self) -> None:
        """Check the whole configuration.

        Raises:
            ConfigValidationError: Listing every problem found
        """
        problems: list[str] = []

        parsed = urlparse(self.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            problems.append(f"SCIM_BASE_URL must be an absolute http(s) URL, got '{self.base_url}'")

        if not self.plugins:
            problems.append("At least one plugin must be configured (SCIM_PLUGINS)")

        seen: set[str] = set()
        for plugin in self.plugins:
            if not plugin.name:
                problems.append("Plugin names must not be empty")
                continue
            if plugin.name in seen:
                problems.append(f"Duplicate plugin name '{plugin.name}'")
            seen.add(plugin.name)

            auth = plugin.auth
            if auth.type not in AUTH_TYPES:
                problems.append(f"Plugin '{plugin.name}': unknown auth type '{auth.type}'")
            elif auth.type == "basic" and (not auth.username or not auth.password):
                problems.append(f"Plugin '{plugin.name}': basic auth requires username and password")
            elif auth.type == "bearer" and not auth.token:
                problems.append(f"Plugin '{plugin.name}': bearer auth requires a token")

        for name in ("max_results", "default_count", "max_patch_operations", "max_payload_bytes"):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive")
        if self.default_count > self.max_results:
            problems.append("default_count must not exceed max_results")
        if self.request_timeout_seconds <= 0:
            problems.append("request_timeout_seconds must be positive")
        if self.log_level.upper() not in LOG_LEVELS:
            problems.append(f"SCIM_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")

        if problems:
            raise ConfigValidationError(problems)

    def plugin(self, name: str) -> PluginConfig | None:
        return next((p for p in self.plugins if p.name == name), None)


def _env_number(var_name: str, default, cast, problems: list[str]):
    raw = os.environ.get(var_name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        problems.append(f"{var_name} must be a number, got '{raw}'")
        return default


def _load_plugin(name: str) -> PluginConfig:
    prefix = f"SCIM_PLUGIN_{name.upper().replace('-', '_')}_"
    auth_type = os.environ.get(prefix + "AUTH_TYPE", "none").strip().lower()
    auth = AuthConfig(type=auth_type)
    if auth_type == "basic":
        auth.username = os.environ.get(prefix + "USERNAME", "")
        auth.password = _load_secret_from_file(f"scim_{name}_password", prefix + "PASSWORD") or ""
    elif auth_type == "bearer":
        auth.token = _load_secret_from_file(f"scim_{name}_token", prefix + "TOKEN") or ""
    print(f"[settings] ✓ Plugin '{name}' configured (auth={auth_type})")
    return PluginConfig(name=name, auth=auth)


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets.

    Raises:
        ConfigValidationError: If any value is missing or invalid
    """
    problems: list[str] = []

    plugin_names = [n.strip() for n in os.environ.get("SCIM_PLUGINS", "memory").split(",") if n.strip()]
    cfg = AppConfig(
        base_url=os.environ.get("SCIM_BASE_URL", "http://localhost:8080").rstrip("/"),
        plugins=[_load_plugin(name) for name in plugin_names],
        max_results=_env_number("SCIM_MAX_RESULTS", 1000, int, problems),
        default_count=_env_number("SCIM_DEFAULT_COUNT", 100, int, problems),
        max_patch_operations=_env_number("SCIM_MAX_PATCH_OPERATIONS", 100, int, problems),
        max_payload_bytes=_env_number("SCIM_MAX_PAYLOAD_BYTES", 1024 * 1024, int, problems),
        request_timeout_seconds=_env_number("SCIM_REQUEST_TIMEOUT", 30.0, float, problems),
        log_level=os.environ.get("SCIM_LOG_LEVEL", "INFO").strip().upper(),
        documentation_uri=os.environ.get("SCIM_DOCUMENTATION_URI", ""),
    )

    try:
        cfg.validate()
    except ConfigValidationError as exc:
        problems.extend(exc.problems)
    if problems:
        raise ConfigValidationError(problems)

    print(f"[settings] ✓ Loaded configuration ({len(cfg.plugins)} plugin(s), base_url={cfg.base_url})")
    return cfg
