"""serialprobe: discover, validate and talk to boards on serial ports."""

from __future__ import annotations

from .discovery import DeviceRegistry, DeviceValidator, DiscoveryController
from .errors import (
    DiscoveryError,
    NotConnectedError,
    OpenFailedError,
    SerialProbeError,
    TransportError,
    ValidationRejected,
)
from .models import CandidateDevice, IoOutcome, LogicalDevice, ValidationState
from .transport import SerialTransport

__all__ = [
    "CandidateDevice",
    "DeviceRegistry",
    "DeviceValidator",
    "DiscoveryController",
    "DiscoveryError",
    "IoOutcome",
    "LogicalDevice",
    "NotConnectedError",
    "OpenFailedError",
    "SerialProbeError",
    "SerialTransport",
    "TransportError",
    "ValidationRejected",
    "ValidationState",
    "main",
]


def main() -> int:
    """Run the serialprobe console application."""

    from .app import main as _app_main

    return _app_main()
