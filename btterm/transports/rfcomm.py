"""RFCOMM transport implementation using Python sockets."""

from __future__ import annotations

import logging
import re
import socket
import subprocess

from btterm.core.errors import (
    SecurityDeniedError,
    TransportConnectError,
    TransportTimeoutError,
)

SPP_UUID = "00001101-0000-1000-8000-00805F9B34FB"
_CHANNEL_RE = re.compile(r"Channel:\s*(\d+)")
LOGGER = logging.getLogger(__name__)


def open_rfcomm_socket(address: str, channel: int) -> socket.socket:
    """Open a connected RFCOMM stream socket to ``address`` on ``channel``.

    Blocks for the duration of the handshake; callers run it off the UI thread.
    """
    try:
        af_bluetooth = socket.AF_BLUETOOTH
        btproto_rfcomm = socket.BTPROTO_RFCOMM
    except AttributeError as exc:
        raise TransportConnectError(
            "This Python build does not expose Bluetooth socket APIs (AF_BLUETOOTH/BTPROTO_RFCOMM)."
        ) from exc

    try:
        bt_socket = socket.socket(
            af_bluetooth,
            socket.SOCK_STREAM,
            btproto_rfcomm,
        )
    except PermissionError as exc:
        raise SecurityDeniedError(f"Not allowed to create RFCOMM socket: {exc}") from exc
    except OSError as exc:
        raise TransportConnectError(f"Could not create RFCOMM socket: {exc}") from exc

    try:
        bt_socket.connect((address, channel))
    except TimeoutError as exc:
        bt_socket.close()
        raise TransportTimeoutError(
            f"RFCOMM connect timed out for {address} on channel {channel}"
        ) from exc
    except PermissionError as exc:
        bt_socket.close()
        raise SecurityDeniedError(
            f"RFCOMM connect to {address} rejected by the platform: {exc}"
        ) from exc
    except OSError as exc:
        bt_socket.close()
        raise TransportConnectError(
            f"RFCOMM connect failed for {address} on channel {channel}: {exc}"
        ) from exc
    return bt_socket


def resolve_spp_channel(address: str) -> int | None:
    """Look up the RFCOMM channel of the serial-port service via SDP."""
    cmd = ["sdptool", "search", "--bdaddr", address, SPP_UUID]
    try:
        result = subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        LOGGER.debug("sdptool not found, cannot resolve SPP channel for %s", address)
        return None

    if result.returncode != 0:
        LOGGER.debug("%s -> %s", " ".join(cmd), (result.stderr or "").strip())
        return None

    match = _CHANNEL_RE.search(result.stdout)
    if not match:
        return None
    return int(match.group(1))
