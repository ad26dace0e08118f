"""Explicit request cancellation / deadline token."""
from __future__ import annotations
import threading
import time
from typing import Optional

from scimgate.core.errors import RequestCancelledError


class CancellationToken:
    """Carries a cancel flag and an optional monotonic deadline.

    The core only checks it at backend I/O boundaries via ``raise_if_cancelled``.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self.deadline = time.monotonic() + timeout if timeout else None

    @classmethod
    def none(cls) -> "CancellationToken":
        return cls()

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self._event.is_set():
            raise RequestCancelledError(f"Request cancelled{' during ' + stage if stage else ''}")
        if self.expired:
            raise RequestCancelledError(f"Request deadline exceeded{' during ' + stage if stage else ''}")
