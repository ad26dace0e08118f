"""Configuration module for the SCIM gateway."""
from .settings import AppConfig, AuthConfig, ConfigValidationError, PluginConfig, load_settings

__all__ = ["AppConfig", "AuthConfig", "ConfigValidationError", "PluginConfig", "load_settings"]
