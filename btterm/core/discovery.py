"""Discovery session bookkeeping: state and per-session address deduplication."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum

from btterm.core.model import MOCK_ADDRESS, DiscoveredDevice

LOGGER = logging.getLogger(__name__)

FoundCallback = Callable[[DiscoveredDevice], None]


class DiscoveryState(Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"


class DiscoverySession:
    """One scan window. Delivers each address to ``on_found`` at most once.

    The session is also the listener handed to the radio, so signals that
    arrive after :meth:`close` are dropped instead of leaking into a newer scan.
    """

    def __init__(self, on_found: FoundCallback) -> None:
        self._on_found = on_found
        self._lock = threading.Lock()
        self._seen: set[str] = {MOCK_ADDRESS}
        self._closed = False

    @property
    def addresses(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._seen - {MOCK_ADDRESS})

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, device: DiscoveredDevice) -> bool:
        with self._lock:
            if self._closed or device.address in self._seen:
                return False
            self._seen.add(device.address)
        LOGGER.debug("Device found: %s (%s)", device.display_name, device.address)
        try:
            self._on_found(device)
        except Exception:
            LOGGER.exception("Device-found callback raised")
        return True

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def on_started(self) -> None:
        LOGGER.debug("Discovery started")

    def on_found(self, device: DiscoveredDevice) -> None:
        self.offer(device)

    def on_finished(self) -> None:
        LOGGER.debug("Discovery finished")
