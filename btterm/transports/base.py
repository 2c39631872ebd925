"""Transport and radio interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from btterm.core.model import DiscoveredDevice


class StreamSocket(Protocol):
    """Connected byte-stream handle owned by a session."""

    def sendall(self, data: bytes) -> None: ...

    def recv(self, bufsize: int) -> bytes: ...

    def close(self) -> None: ...


SocketFactory = Callable[[str, int], StreamSocket]


class ScanListener(Protocol):
    def on_started(self) -> None: ...

    def on_found(self, device: DiscoveredDevice) -> None: ...

    def on_finished(self) -> None: ...


class Radio(Protocol):
    """Local Bluetooth adapter handle."""

    @property
    def is_discovering(self) -> bool: ...

    def is_enabled(self) -> bool: ...

    def bonded_devices(self) -> set[DiscoveredDevice]: ...

    def start_scan(self, listener: ScanListener) -> None:
        """Begin an inquiry scan, reporting signals to ``listener`` from any thread."""

    def cancel_scan(self) -> None: ...
