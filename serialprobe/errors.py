"""Exception types raised by serialprobe."""

from __future__ import annotations


class SerialProbeError(Exception):
    """Base class for all serialprobe errors."""


class NotConnectedError(SerialProbeError):
    """An operation needed an open device session and none was available."""


class OpenFailedError(SerialProbeError):
    """The platform layer refused to open the requested device."""

    def __init__(self, port: str, reason: object = None) -> None:
        self.port = port
        self.reason = reason
        message = f"Could not open {port}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)


class ValidationRejected(SerialProbeError):
    """A device was opened but did not identify as a supported board."""


class TransportError(SerialProbeError):
    """Unexpected failure while reading from or writing to an open channel."""


class DiscoveryError(SerialProbeError):
    """The discovery subsystem could not be started."""
