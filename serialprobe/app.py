"""Console entry point: run discovery and report validated devices."""

from __future__ import annotations

import argparse
import logging
import threading
from typing import List, Optional

from .config import ProbeConfig
from .config import load_config as load_probe_config
from .discovery import DiscoveryController
from .errors import DiscoveryError
from .settings import CONFIG_FILE, configure_logging

_LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="serialprobe",
        description="Discover and validate supported boards on serial ports.",
    )
    parser.add_argument("--config", default=CONFIG_FILE, help="path to the JSON config file")
    parser.add_argument(
        "--once",
        action="store_true",
        help="exit after the first enumeration sweep instead of watching",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="seconds to wait for the first sweep when --once is given",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return parser


def create_controller(config: Optional[ProbeConfig] = None) -> DiscoveryController:
    """Create a controller wired from *config* (loaded from disk when omitted)."""

    if config is None:
        config = load_probe_config()
    return DiscoveryController.from_config(config)


def log_devices(controller: DiscoveryController) -> None:
    devices = controller.list_devices()
    if not devices:
        _LOGGER.info("No supported devices found")
    for device in devices:
        _LOGGER.info("Device: %s (%s)", device.description, device.device_id)


def run(
    controller: DiscoveryController,
    *,
    once: bool = False,
    timeout: Optional[float] = None,
    stop_event: Optional[threading.Event] = None,
) -> bool:
    """Start *controller* and block until stopped; return ``False`` on timeout."""

    stop_event = stop_event or threading.Event()
    enumerated = threading.Event()

    def on_enumerated() -> None:
        log_devices(controller)
        enumerated.set()
        if once:
            stop_event.set()

    controller.register_enumeration_callback(on_enumerated)
    try:
        controller.start()
        finished = stop_event.wait(timeout) if once else _wait_forever(stop_event)
        return finished or enumerated.is_set()
    finally:
        controller.unregister_enumeration_callback(on_enumerated)
        controller.stop()


def _wait_forever(stop_event: threading.Event) -> bool:
    while not stop_event.wait(1.0):
        pass
    return True


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(verbose=args.verbose)
    config = load_probe_config(args.config)
    controller = create_controller(config)
    try:
        if not run(controller, once=args.once, timeout=args.timeout):
            _LOGGER.error("Enumeration did not complete within %.1f s", args.timeout)
            return 1
    except DiscoveryError as exc:
        _LOGGER.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        _LOGGER.info("Interrupted; stopping discovery")
    return 0
