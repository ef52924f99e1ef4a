"""Transport layer for validated serial devices."""

from .cancellation import LinkedCancellation
from .serial_transport import (
    SerialTransport,
    TransportSession,
    close_channel,
    open_serial_channel,
)

__all__ = [
    "LinkedCancellation",
    "SerialTransport",
    "TransportSession",
    "close_channel",
    "open_serial_channel",
]
