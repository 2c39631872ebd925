"""Local radio implementation backed by the BlueZ ``bluetoothctl`` tool."""

from __future__ import annotations

import logging
import re
import subprocess
import threading
from collections.abc import Sequence

from btterm.core.errors import RadioUnavailableError, SecurityDeniedError
from btterm.core.model import MOCK_ADDRESS, DiscoveredDevice
from btterm.transports.base import ScanListener

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]|\x01|\x02")
_DEVICE_LINE_RE = re.compile(r"^(?:\[NEW\]\s+)?Device\s+([0-9A-F:]{17})(?:\s+(.+))?$", re.IGNORECASE)
# Cached devices are never announced with [NEW]; a scan only refreshes their properties.
_CHG_DEVICE_RE = re.compile(
    r"^\[CHG\]\s+Device\s+([0-9A-F:]{17})\s+(RSSI|ManufacturerData|TxPower|Name)(?:\s+\w+)?:\s*(.*)$",
    re.IGNORECASE,
)
_POWERED_RE = re.compile(r"^\s*Powered:\s*(yes|no)\s*$", re.IGNORECASE | re.MULTILINE)
_TERMINATE_WAIT_S = 3.0
LOGGER = logging.getLogger(__name__)


def parse_device_line(line: str) -> DiscoveredDevice | None:
    """Parse ``Device <MAC> <name>`` / ``[NEW] Device ...`` output lines."""
    match = _DEVICE_LINE_RE.match(_ANSI_RE.sub("", line).strip())
    if not match:
        return None
    address = match.group(1).upper()
    if address == MOCK_ADDRESS:
        return None
    name = (match.group(2) or "").strip()
    # bluetoothctl prints the dashed address when the remote has no name.
    if not name or name.upper() == address.replace(":", "-"):
        return DiscoveredDevice(address=address)
    return DiscoveredDevice(address=address, name=name)


def parse_change_line(line: str) -> DiscoveredDevice | None:
    """Parse ``[CHG] Device <MAC> RSSI: ...`` style sightings of a cached device."""
    match = _CHG_DEVICE_RE.match(_ANSI_RE.sub("", line).strip())
    if not match:
        return None
    address = match.group(1).upper()
    if address == MOCK_ADDRESS:
        return None
    if match.group(2).lower() == "name" and match.group(3).strip():
        return DiscoveredDevice(address=address, name=match.group(3).strip())
    return DiscoveredDevice(address=address)


class BluetoothctlRadio:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._process: subprocess.Popen[str] | None = None

    @property
    def is_discovering(self) -> bool:
        with self._lock:
            return self._process is not None and self._process.poll() is None

    def is_enabled(self) -> bool:
        result = _run_command(["bluetoothctl", "show"])
        if result is None or result.returncode != 0:
            return False
        match = _POWERED_RE.search(_ANSI_RE.sub("", result.stdout))
        return bool(match and match.group(1).lower() == "yes")

    def bonded_devices(self) -> set[DiscoveredDevice]:
        commands = [
            ["bluetoothctl", "devices", "Paired"],
            ["bluetoothctl", "paired-devices"],
        ]
        for cmd in commands:
            result = _run_command(cmd)
            if result is None or result.returncode != 0:
                continue
            devices: set[DiscoveredDevice] = set()
            for line in result.stdout.splitlines():
                device = parse_device_line(line)
                if device is not None:
                    devices.add(device)
            return devices
        return set()

    def start_scan(self, listener: ScanListener) -> None:
        cmd = ["bluetoothctl", "scan", "on"]

        with self._lock:
            try:
                process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                    stdin=subprocess.DEVNULL,
                    text=True,
                    bufsize=1,
                )
            except FileNotFoundError as exc:
                raise RadioUnavailableError("bluetoothctl not found. Install BlueZ and retry.") from exc
            except PermissionError as exc:
                raise SecurityDeniedError(f"Not allowed to run bluetoothctl: {exc}") from exc
            self._process = process

        reader = threading.Thread(
            target=self._read_scan_output,
            args=(process, listener),
            name="btterm-scan",
            daemon=True,
        )
        reader.start()

    def cancel_scan(self) -> None:
        with self._lock:
            process = self._process
            self._process = None
        if process is None or process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=_TERMINATE_WAIT_S)
        except subprocess.TimeoutExpired:
            LOGGER.warning("bluetoothctl did not exit after terminate, killing it")
            process.kill()

    def _read_scan_output(self, process: subprocess.Popen[str], listener: ScanListener) -> None:
        assert process.stdout is not None
        for raw_line in process.stdout:
            line = _ANSI_RE.sub("", raw_line).strip()
            if "Discovery started" in line or "Discovering: yes" in line:
                listener.on_started()
                continue
            if line.startswith("[NEW]"):
                device = parse_device_line(line)
            elif line.startswith("[CHG]"):
                device = parse_change_line(line)
            else:
                continue
            if device is not None:
                listener.on_found(device)
        process.wait()
        with self._lock:
            if self._process is process:
                self._process = None
        listener.on_finished()


def _run_command(cmd: Sequence[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return None
