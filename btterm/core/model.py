"""Core data models shared by the connection manager, transports, and CLI."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

MOCK_ADDRESS = "00:00:00:00:00:00"
MOCK_NAME = "HC-05 Simulator"
MOCK_SUFFIX = "(MOCK DEVICE - NOT REAL DEVICE)"


@dataclass(frozen=True)
class DiscoveredDevice:
    address: str
    name: str | None = None
    is_mock: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", self.address.strip().upper())

    @property
    def display_name(self) -> str:
        if self.is_mock:
            return f"{self.name} {MOCK_SUFFIX}"
        return self.name or "Unknown Device"


MOCK_DEVICE = DiscoveredDevice(address=MOCK_ADDRESS, name=MOCK_NAME, is_mock=True)


class LineEnding(Enum):
    NONE = ""
    CR = "\r"
    LF = "\n"
    CRLF = "\r\n"

    @property
    def display_name(self) -> str:
        return _LINE_ENDING_LABELS[self]

    def encode(self, text: str) -> bytes:
        return (text + self.value).encode("utf-8")

    def strip(self, text: str) -> str:
        if self.value and text.endswith(self.value):
            return text[: -len(self.value)]
        return text

    @classmethod
    def parse(cls, name: str) -> LineEnding:
        """Resolve a member from its name (``crlf``) or display label (``CR+LF``)."""
        wanted = name.strip().lower()
        for member in cls:
            if wanted in (member.name.lower(), member.display_name.lower()):
                return member
        allowed = ", ".join(m.name.lower() for m in cls)
        raise ValueError(f"Unknown line ending '{name}'. Allowed: {allowed}")


_LINE_ENDING_LABELS = {
    LineEnding.NONE: "None",
    LineEnding.CR: "CR",
    LineEnding.LF: "LF",
    LineEnding.CRLF: "CR+LF",
}


class Direction(Enum):
    SENT = "sent"
    RECEIVED = "received"


@dataclass(frozen=True)
class Message:
    content: str
    direction: Direction
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def sent(cls, content: str) -> Message:
        return cls(content=content, direction=Direction.SENT)

    @classmethod
    def received(cls, content: str) -> Message:
        return cls(content=content, direction=Direction.RECEIVED)

    @property
    def is_sent(self) -> bool:
        return self.direction is Direction.SENT


class Failure(Enum):
    PERMISSION_DENIED = "permission_denied"
    RADIO_DISABLED = "radio_disabled"
    IO_FAILURE = "io_failure"
    SECURITY_DENIED = "security_denied"
    BUSY = "busy"


@dataclass(frozen=True)
class Outcome:
    ok: bool
    failure: Failure | None = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls) -> Outcome:
        return cls(ok=True)

    @classmethod
    def failed(cls, failure: Failure) -> Outcome:
        return cls(ok=False, failure=failure)
