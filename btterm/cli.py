"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import queue
import threading
import time
from pathlib import Path

import typer

from btterm.core.config import TerminalConfig, load_config
from btterm.core.errors import BttermError
from btterm.core.manager import ConnectionManager
from btterm.core.model import MOCK_ADDRESS, MOCK_DEVICE, DiscoveredDevice, Failure, LineEnding, Message

app = typer.Typer(help="Bluetooth serial terminal over RFCOMM/SPP")

_FAILURE_MESSAGES = {
    Failure.PERMISSION_DENIED: "Bluetooth permissions are required",
    Failure.RADIO_DISABLED: "Please enable Bluetooth",
    Failure.SECURITY_DENIED: "Bluetooth access was denied by the platform",
    Failure.IO_FAILURE: "Bluetooth is unavailable",
    Failure.BUSY: "Another operation superseded this one",
}


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    config: Path | None = typer.Option(None, "--config", help="Path to a config YAML file"),
) -> None:
    """Discover devices and talk to them over a serial link."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )
    ctx.obj = config


def _load_config(ctx: typer.Context) -> TerminalConfig:
    return load_config(ctx.obj)


def _build_manager(config: TerminalConfig) -> ConnectionManager:
    return ConnectionManager(config=config)


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(code=1)


def _format_device(device: DiscoveredDevice) -> str:
    return f"{device.address} {device.display_name}"


@app.command("devices")
def list_devices(ctx: typer.Context) -> None:
    """List paired devices plus the built-in mock device."""
    try:
        with _build_manager(_load_config(ctx)) as manager:
            if not manager.is_radio_enabled():
                typer.echo("Warning: Bluetooth is disabled or unavailable", err=True)
            typer.echo(_format_device(MOCK_DEVICE))
            for device in sorted(manager.get_bonded_devices(), key=lambda d: d.address):
                typer.echo(_format_device(device))
    except BttermError as exc:
        raise _fail(str(exc)) from None


@app.command("scan")
def scan(
    ctx: typer.Context,
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds to scan (default from config)"),
) -> None:
    """Scan for nearby devices, printing each one once."""
    try:
        config = _load_config(ctx)
        found: queue.Queue[DiscoveredDevice] = queue.Queue()
        with _build_manager(config) as manager:
            outcome = manager.start_discovery(found.put)
            if not outcome:
                raise _fail(_FAILURE_MESSAGES.get(outcome.failure, "Discovery failed"))

            typer.echo(_format_device(MOCK_DEVICE))
            deadline = time.monotonic() + (timeout if timeout is not None else config.discovery_timeout_s)
            try:
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    try:
                        device = found.get(timeout=remaining)
                    except queue.Empty:
                        break
                    typer.echo(_format_device(device))
            finally:
                manager.stop_discovery()
    except BttermError as exc:
        raise _fail(str(exc)) from None


def _print_message(message: Message) -> None:
    stamp = time.strftime("%H:%M:%S", time.localtime(message.timestamp))
    marker = ">" if message.is_sent else "<"
    typer.echo(f"[{stamp}] {marker} {message.content}")


def _print_inbox(inbox: queue.Queue[Message | None]) -> None:
    while True:
        message = inbox.get()
        if message is None:
            return
        _print_message(message)


@app.command("terminal")
def terminal(
    ctx: typer.Context,
    address: str | None = typer.Argument(None, help="Device address (AA:BB:CC:DD:EE:FF)"),
    mock: bool = typer.Option(False, "--mock", help="Talk to the built-in loopback device"),
    line_ending: str | None = typer.Option(None, "--line-ending", help="none, cr, lf or crlf"),
    settle: float = typer.Option(0.5, "--settle", help="Seconds to wait for replies after input ends"),
) -> None:
    """Open an interactive session; each stdin line is sent to the device."""
    try:
        config = _load_config(ctx)
        try:
            ending = LineEnding.parse(line_ending) if line_ending is not None else config.line_ending
        except ValueError as exc:
            raise _fail(str(exc)) from None
        if not mock and address is None:
            raise _fail("Provide a device ADDRESS or use --mock")

        with _build_manager(config) as manager:
            device = _resolve_device(manager, address, mock)
            typer.echo(f"Connecting to {device.display_name}...")
            if not manager.connect(device).result():
                raise _fail("Connection failed")
            typer.echo(f"Connected. Line ending: {ending.display_name}. Ctrl-D to quit.")

            inbox: queue.Queue[Message | None] = queue.Queue()
            printer = threading.Thread(target=_print_inbox, args=(inbox,), name="btterm-printer", daemon=True)
            printer.start()
            manager.start_receiving(lambda text: inbox.put(Message.received(text)))

            stdin = typer.get_text_stream("stdin")
            try:
                for line in stdin:
                    text = line.strip()
                    if not text:
                        continue
                    if manager.send(text, ending):
                        inbox.put(Message.sent(text))
                    else:
                        typer.echo("Error: Failed to send message", err=True)
                time.sleep(settle)
            finally:
                manager.close_connection()
                inbox.put(None)
                printer.join()
    except BttermError as exc:
        raise _fail(str(exc)) from None


def _resolve_device(manager: ConnectionManager, address: str | None, mock: bool) -> DiscoveredDevice:
    if mock or address is None or address.strip().upper() == MOCK_ADDRESS:
        return MOCK_DEVICE
    wanted = address.strip().upper()
    for device in manager.get_bonded_devices():
        if device.address == wanted:
            return device
    return DiscoveredDevice(address=wanted)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
