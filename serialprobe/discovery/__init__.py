"""Device discovery, validation and the controller tying them together."""

from .controller import ControllerState, DiscoveryController, DiscoveryEvent, EventKind
from .registry import DeviceRegistry
from .sources import ComPortWatcher, DiscoverySource, candidate_from_port
from .validator import (
    DEFAULT_RULES,
    DeviceIdentity,
    DeviceValidator,
    IdentityRule,
    MatchKind,
    build_rules,
    classify,
)

__all__ = [
    "ComPortWatcher",
    "ControllerState",
    "DEFAULT_RULES",
    "DeviceIdentity",
    "DeviceRegistry",
    "DeviceValidator",
    "DiscoveryController",
    "DiscoveryEvent",
    "DiscoverySource",
    "EventKind",
    "IdentityRule",
    "MatchKind",
    "build_rules",
    "candidate_from_port",
    "classify",
]
