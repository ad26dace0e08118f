"""Registry of plugins and their authenticators.

Populated once at startup, then read on every request. A writer-preferring
reader/writer lock lets lookups proceed in parallel while registration is
exclusive.
"""
from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from scimgate.config.settings import PluginConfig
from scimgate.core.auth import Authenticator, build_authenticator
from scimgate.core.errors import NotFoundError
from scimgate.plugins.base import Plugin

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class PluginManager:
    def __init__(self):
        self._plugins: dict[str, Plugin] = {}
        self._authenticators: dict[str, Authenticator] = {}
        self._lock = ReadWriteLock()

    def register(self, plugin: Plugin, plugin_config: Optional[PluginConfig] = None) -> None:
        """Register (or re-register) a plugin; its previous authenticator is cleared."""
        if not plugin.name:
            raise ValueError("Plugin name must not be empty")
        authenticator = build_authenticator(plugin_config.auth) if plugin_config else None
        with self._lock.write():
            self._plugins[plugin.name] = plugin
            self._authenticators.pop(plugin.name, None)
            if authenticator is not None:
                self._authenticators[plugin.name] = authenticator
        logger.info(f"Registered plugin '{plugin.name}' (auth={authenticator.scheme if authenticator else 'none'})")

    def get(self, name: str) -> Optional[Plugin]:
        with self._lock.read():
            return self._plugins.get(name)

    def require(self, name: str) -> Plugin:
        plugin = self.get(name)
        if plugin is None:
            raise NotFoundError(f"Plugin '{name}' not found")
        return plugin

    def get_authenticator(self, name: str) -> Optional[Authenticator]:
        with self._lock.read():
            return self._authenticators.get(name)

    def names(self) -> list[str]:
        with self._lock.read():
            return sorted(self._plugins)
