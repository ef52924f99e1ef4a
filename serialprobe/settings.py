"""Shared constants and logging setup for serialprobe."""

from __future__ import annotations

import logging

CONFIG_FILE = "serialprobe.json"
PACKAGE_LOGGER = "serialprobe"
LOG_LEVEL = logging.INFO
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_BAUDRATE = 115200
# Regular expression matched by pyserial's list_ports.grep; matches every port.
ALL_SERIAL_DEVICES = ".*"
DISPOSE_GRACE_SECONDS = 2.5
POLL_INTERVAL = 1.0
PROBE_TIMEOUT = 0.5
IO_POLL_INTERVAL = 0.05

KNOWN_DEVICE_NAMES = ("STM32 STLink",)
PRODUCT_TAGS = ("NANO_",)


def configure_logging(
    *, verbose: bool = False, fmt: str = LOG_FORMAT, force: bool = False
) -> logging.Logger:
    """Install the stderr handler and set serialprobe's own verbosity.

    *verbose* lowers only the ``serialprobe`` loggers to DEBUG; the root logger
    stays at ``LOG_LEVEL`` so pyserial and other libraries remain quiet.  A
    root logger that already has handlers is left alone unless *force* is set.
    """

    if force or not logging.getLogger().handlers:
        logging.basicConfig(level=LOG_LEVEL, format=fmt, force=force)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(logging.DEBUG if verbose else logging.NOTSET)
    return package_logger
