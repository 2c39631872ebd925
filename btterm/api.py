"""Stable public API for building tooling on top of btterm.

This module is the supported integration surface for third-party callers
(GUI/TUI shells, scripts). Avoid importing from private/internal modules unless
intentionally depending on non-stable internals.
"""

from __future__ import annotations

from btterm.core.config import TerminalConfig, load_config
from btterm.core.discovery import DiscoveryState
from btterm.core.errors import (
    BttermError,
    ConfigLoadError,
    ConfigValidationError,
    PermissionDeniedError,
    RadioError,
    RadioUnavailableError,
    SecurityDeniedError,
    TransportConnectError,
    TransportError,
    TransportTimeoutError,
)
from btterm.core.manager import ConnectionManager, PermissionGate, mock_reply
from btterm.core.model import (
    MOCK_DEVICE,
    DiscoveredDevice,
    Direction,
    Failure,
    LineEnding,
    Message,
    Outcome,
)
from btterm.transports.base import Radio, StreamSocket

__all__ = [
    "BttermError",
    "ConfigLoadError",
    "ConfigValidationError",
    "PermissionDeniedError",
    "RadioError",
    "RadioUnavailableError",
    "SecurityDeniedError",
    "TransportError",
    "TransportConnectError",
    "TransportTimeoutError",
    "MOCK_DEVICE",
    "DiscoveredDevice",
    "Direction",
    "Failure",
    "LineEnding",
    "Message",
    "Outcome",
    "DiscoveryState",
    "Radio",
    "StreamSocket",
    "TerminalConfig",
    "load_config",
    "ConnectionManager",
    "PermissionGate",
    "mock_reply",
    "create_manager",
]


def create_manager(
    config: TerminalConfig | None = None,
    *,
    radio: Radio | None = None,
    permission_gate: PermissionGate | None = None,
) -> ConnectionManager:
    """Build a manager for the local adapter.

    The caller owns the returned instance and must call
    :meth:`ConnectionManager.destroy` (or use it as a context manager) when done.
    """
    return ConnectionManager(
        radio,
        config=config if config is not None else load_config(),
        permission_gate=permission_gate,
    )
