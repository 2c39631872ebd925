"""Bluetooth serial session manager.

Owns the single active session: discovery, RFCOMM connect, the send path, the
background receive loop, and teardown. A loopback mock device can stand in
for real hardware.

No exception escapes the public methods; results are reported as booleans,
:class:`~btterm.core.model.Outcome` values, or callbacks invoked on whichever
thread produced them. Callers hop back to their own thread if they need to.
"""

from __future__ import annotations

import codecs
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from btterm.core.config import TerminalConfig
from btterm.core.discovery import DiscoverySession, DiscoveryState, FoundCallback
from btterm.core.errors import (
    BttermError,
    PermissionDeniedError,
    RadioError,
    SecurityDeniedError,
    TransportError,
)
from btterm.core.model import MOCK_ADDRESS, DiscoveredDevice, Failure, LineEnding, Outcome
from btterm.transports.base import Radio, SocketFactory, StreamSocket
from btterm.transports.bluetoothctl import BluetoothctlRadio
from btterm.transports.rfcomm import open_rfcomm_socket, resolve_spp_channel

LOGGER = logging.getLogger(__name__)

PermissionGate = Callable[[], bool]
ResultCallback = Callable[[bool], None]
MessageCallback = Callable[[str], None]
ChannelResolver = Callable[[str], int | None]


def _always_granted() -> bool:
    return True


def mock_reply(text: str) -> str:
    """Reply the loopback device produces for ``text``."""
    trimmed = text.strip()
    if trimmed == "1":
        return "Led1_On"
    if trimmed == "0":
        return "Led1_Off"
    return f"Echo: {text}"


@dataclass
class Session:
    socket: StreamSocket | None = None
    is_mock: bool = False
    receiving: bool = False
    consecutive_errors: int = 0
    cancelled: threading.Event = field(default_factory=threading.Event)
    receiver: threading.Thread | None = None
    # Holds back a multi-byte character until the rest of it arrives.
    decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace")
    )


class ConnectionManager:
    def __init__(
        self,
        radio: Radio | None = None,
        *,
        config: TerminalConfig | None = None,
        permission_gate: PermissionGate | None = None,
        socket_factory: SocketFactory | None = None,
        channel_resolver: ChannelResolver | None = None,
    ) -> None:
        self.config = config or TerminalConfig()
        self._radio = radio if radio is not None else BluetoothctlRadio()
        self._permission_gate = permission_gate or _always_granted
        self._socket_factory = socket_factory or open_rfcomm_socket
        self._channel_resolver = channel_resolver or resolve_spp_channel

        # Guards every session transition; never held across blocking I/O.
        self._lock = threading.RLock()
        self._session = Session()
        self._generation = 0
        self._discovery: DiscoverySession | None = None
        self._message_callback: MessageCallback | None = None
        self._connect_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="btterm-connect")

    def __enter__(self) -> ConnectionManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()

    @property
    def discovery_state(self) -> DiscoveryState:
        with self._lock:
            return DiscoveryState.DISCOVERING if self._discovery is not None else DiscoveryState.IDLE

    @property
    def session_is_mock(self) -> bool:
        with self._lock:
            return self._session.is_mock

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._session.is_mock or self._session.socket is not None

    @property
    def is_receiving(self) -> bool:
        with self._lock:
            return self._session.receiving

    @property
    def session(self) -> Session:
        with self._lock:
            return self._session

    def _check_permissions(self) -> bool:
        try:
            granted = bool(self._permission_gate())
        except Exception:
            LOGGER.exception("Permission gate raised; treating as denied")
            granted = False
        if not granted:
            LOGGER.error("Missing required Bluetooth permissions")
        return granted

    # Adapter

    def is_radio_enabled(self) -> bool:
        if not self._check_permissions():
            LOGGER.error("Cannot check Bluetooth state - missing permissions")
            return False
        try:
            enabled = self._radio.is_enabled()
        except (BttermError, OSError) as exc:
            LOGGER.error("Could not query Bluetooth adapter state: %s", exc)
            return False
        LOGGER.debug("Bluetooth enabled: %s", enabled)
        return enabled

    def get_bonded_devices(self) -> set[DiscoveredDevice]:
        if not self._check_permissions():
            LOGGER.error("Cannot get paired devices - missing permissions")
            return set()
        try:
            devices = self._radio.bonded_devices()
        except (BttermError, OSError) as exc:
            LOGGER.error("Could not list paired devices: %s", exc)
            return set()
        devices = {d for d in devices if d.address != MOCK_ADDRESS}
        LOGGER.debug("Found %d paired devices", len(devices))
        return devices

    # Discovery

    def start_discovery(self, on_found: FoundCallback) -> Outcome:
        if not self._check_permissions():
            LOGGER.error("Cannot start discovery - missing permissions")
            return Outcome.failed(Failure.PERMISSION_DENIED)
        if not self.is_radio_enabled():
            LOGGER.error("Cannot start discovery - Bluetooth is disabled")
            return Outcome.failed(Failure.RADIO_DISABLED)

        self.stop_discovery()

        session = DiscoverySession(on_found)
        with self._lock:
            self._discovery = session
        try:
            self._radio.start_scan(session)
        except SecurityDeniedError as exc:
            LOGGER.error("Security exception during discovery: %s", exc)
            self._abandon_discovery(session)
            return Outcome.failed(Failure.SECURITY_DENIED)
        except (RadioError, OSError) as exc:
            LOGGER.error("Could not start discovery: %s", exc)
            self._abandon_discovery(session)
            return Outcome.failed(Failure.IO_FAILURE)

        LOGGER.info("Discovery running")
        return Outcome.success()

    def _abandon_discovery(self, session: DiscoverySession) -> None:
        session.close()
        with self._lock:
            if self._discovery is session:
                self._discovery = None

    def stop_discovery(self) -> None:
        with self._lock:
            session = self._discovery
            self._discovery = None
        if session is not None:
            LOGGER.debug("Stopping discovery")
            session.close()
        try:
            if self._radio.is_discovering:
                self._radio.cancel_scan()
                LOGGER.debug("Discovery cancelled")
        except (BttermError, OSError) as exc:
            LOGGER.error("Could not cancel discovery: %s", exc)

    # Connection

    def connect(
        self,
        device: DiscoveredDevice | None,
        on_result: ResultCallback | None = None,
    ) -> Future[Outcome]:
        """Open a session to ``device``; ``None`` or the mock device selects loopback mode.

        The returned future resolves once the result callback has fired.
        """
        if device is None or device.is_mock:
            LOGGER.info("Connecting to mock device")
            with self._lock:
                self._release_session_locked()
                self._session = Session(is_mock=True, receiving=True)
            _notify(on_result, True, "Connection result")
            return _resolved(Outcome.success())

        if not self._check_permissions():
            LOGGER.error("Cannot connect to device - missing permissions")
            _notify(on_result, False, "Connection result")
            return _resolved(Outcome.failed(Failure.PERMISSION_DENIED))

        self.stop_discovery()
        LOGGER.info("Attempting to connect to device: %s (%s)", device.display_name, device.address)

        with self._lock:
            self._release_session_locked()
            generation = self._generation
        try:
            return self._connect_executor.submit(self._establish, device, generation, on_result)
        except RuntimeError:
            LOGGER.error("Connection manager already destroyed")
            _notify(on_result, False, "Connection result")
            return _resolved(Outcome.failed(Failure.IO_FAILURE))

    def _establish(
        self,
        device: DiscoveredDevice,
        generation: int,
        on_result: ResultCallback | None,
    ) -> Outcome:
        if not self._is_current(generation):
            LOGGER.debug("Skipping superseded connection attempt to %s", device.address)
            return self._finish(on_result, Outcome.failed(Failure.BUSY))

        channel = self._channel_for(device.address)
        try:
            sock = self._socket_factory(device.address, channel)
        except SecurityDeniedError as exc:
            LOGGER.error("Security exception during connection: %s", exc)
            return self._fail_attempt(generation, on_result, Failure.SECURITY_DENIED)
        except PermissionDeniedError as exc:
            LOGGER.error("Connection not permitted: %s", exc)
            return self._fail_attempt(generation, on_result, Failure.PERMISSION_DENIED)
        except (TransportError, OSError) as exc:
            LOGGER.error("Connection failed: %s", exc)
            return self._fail_attempt(generation, on_result, Failure.IO_FAILURE)

        with self._lock:
            current = self._generation == generation
            if current:
                self._session = Session(socket=sock)
        if not current:
            LOGGER.warning("Connection to %s superseded by a newer attempt, closing it", device.address)
            _close_socket(sock)
            return self._finish(on_result, Outcome.failed(Failure.BUSY))

        LOGGER.info("Connection successful: %s on channel %d", device.address, channel)
        return self._finish(on_result, Outcome.success())

    def _channel_for(self, address: str) -> int:
        if not self.config.resolve_channel:
            return self.config.rfcomm_channel
        try:
            channel = self._channel_resolver(address)
        except OSError as exc:
            LOGGER.warning("SPP channel lookup failed for %s: %s", address, exc)
            channel = None
        if channel is None:
            LOGGER.debug("Using configured RFCOMM channel %d for %s", self.config.rfcomm_channel, address)
            return self.config.rfcomm_channel
        return channel

    def _fail_attempt(self, generation: int, on_result: ResultCallback | None, failure: Failure) -> Outcome:
        with self._lock:
            if self._generation == generation:
                self._release_session_locked()
        return self._finish(on_result, Outcome.failed(failure))

    @staticmethod
    def _finish(on_result: ResultCallback | None, outcome: Outcome) -> Outcome:
        _notify(on_result, outcome.ok, "Connection result")
        return outcome

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return self._generation == generation

    # Data transfer

    def send(self, text: str, line_ending: LineEnding = LineEnding.CRLF) -> bool:
        with self._lock:
            session = self._session

        if session.is_mock:
            LOGGER.debug("Mock device received: %s", text)
            timer = threading.Timer(
                self.config.mock_reply_delay_s,
                self._deliver_mock_reply,
                args=(session, text),
            )
            timer.daemon = True
            timer.start()
            return True

        if not self._check_permissions():
            LOGGER.error("Cannot send data - missing permissions")
            return False

        sock = session.socket
        if sock is None:
            LOGGER.error("Cannot send data - no active connection")
            return False

        payload = line_ending.encode(text)
        LOGGER.debug("Sending %r with line ending %s: %s", text, line_ending.name, payload.hex(" "))
        try:
            sock.sendall(payload)
            flush = getattr(sock, "flush", None)
            if callable(flush):
                flush()
        except OSError as exc:
            LOGGER.error("Failed to send data: %s", exc)
            return False
        return True

    def _deliver_mock_reply(self, session: Session, text: str) -> None:
        with self._lock:
            if self._session is not session:
                LOGGER.debug("Mock session closed before reply to %r", text)
                return
            callback = self._message_callback
        if callback is None:
            LOGGER.debug("No receiver registered for mock reply to %r", text)
            return
        _notify(callback, mock_reply(text), "Message")

    def start_receiving(self, on_message: MessageCallback) -> None:
        with self._lock:
            self._message_callback = on_message
            session = self._session

            if session.is_mock:
                session.receiving = True
                LOGGER.debug("Mock device receiver initialized")
                return
            if session.socket is None:
                LOGGER.error("No active socket connection")
                session.receiving = False
                return
            if session.receiver is not None and session.receiver.is_alive():
                LOGGER.debug("Receive loop already running, replacing callback")
                return

            session.receiving = True
            session.consecutive_errors = 0
            session.receiver = threading.Thread(
                target=self._receive_loop,
                args=(session,),
                name="btterm-receive",
                daemon=True,
            )
            session.receiver.start()

    def _receive_loop(self, session: Session) -> None:
        max_errors = self.config.max_receive_errors
        buffer_size = self.config.read_buffer_size

        while session.receiving and not session.cancelled.is_set():
            sock = session.socket
            if sock is None:
                LOGGER.error("No active socket connection")
                break
            try:
                data = sock.recv(buffer_size)
            except OSError as exc:
                if session.cancelled.is_set():
                    break
                session.consecutive_errors += 1
                LOGGER.error(
                    "Error reading from socket (%d/%d): %s",
                    session.consecutive_errors,
                    max_errors,
                    exc,
                )
                if session.consecutive_errors >= max_errors:
                    LOGGER.error("Too many consecutive errors, stopping receiver")
                    break
                session.cancelled.wait(self.config.receive_retry_delay_s)
                continue

            if not data:
                LOGGER.warning("End of stream reached")
                break

            session.consecutive_errors = 0
            message = session.decoder.decode(data)
            if not message:
                continue
            LOGGER.debug("Received: %r", message)
            with self._lock:
                callback = self._message_callback
            if callback is not None:
                _notify(callback, message, "Message")

        with self._lock:
            session.receiving = False
        LOGGER.debug("Receiving loop ended")

    # Teardown

    def close_connection(self) -> None:
        LOGGER.debug("Closing connection")
        with self._lock:
            self._release_session_locked()

    def _release_session_locked(self) -> None:
        # Bumping the generation invalidates any connect attempt still in flight.
        self._generation += 1
        session = self._session
        session.cancelled.set()
        session.receiving = False
        session.is_mock = False
        sock, session.socket = session.socket, None
        self._session = Session()
        if sock is not None:
            _close_socket(sock)

    def destroy(self) -> None:
        LOGGER.debug("Destroying connection manager")
        self.stop_discovery()
        self.close_connection()
        self._connect_executor.shutdown(wait=False, cancel_futures=False)


def _close_socket(sock: StreamSocket) -> None:
    try:
        sock.close()
        LOGGER.debug("Connection closed successfully")
    except OSError as exc:
        LOGGER.error("Error closing connection: %s", exc)


def _notify(callback: Callable[..., None] | None, value: object, what: str) -> None:
    if callback is None:
        return
    try:
        callback(value)
    except Exception:
        LOGGER.exception("%s callback raised", what)


def _resolved(outcome: Outcome) -> Future[Outcome]:
    future: Future[Outcome] = Future()
    future.set_result(outcome)
    return future
