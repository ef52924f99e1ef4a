"""Identification probe deciding whether a serial device is a supported board."""

from __future__ import annotations

import enum
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence

import serial
from serial.tools import list_ports

from ..models import CandidateDevice, ValidationOutcome
from ..settings import DEFAULT_BAUDRATE, KNOWN_DEVICE_NAMES, PROBE_TIMEOUT, PRODUCT_TAGS
from ..transport.serial_transport import ChannelFactory, close_channel, open_serial_channel

_LOGGER = logging.getLogger(__name__)


class MatchKind(enum.Enum):
    DISPLAY_NAME = "display_name"
    SERIAL_TAG = "serial_tag"


@dataclass(frozen=True)
class DeviceIdentity:
    """Identification metadata read from an opened device."""

    port: str
    name: str = ""
    serial_number: Optional[str] = None


@dataclass(frozen=True)
class IdentityRule:
    kind: MatchKind
    pattern: str

    def label_for(self, identity: DeviceIdentity) -> Optional[str]:
        """Return the label to describe *identity* with, or ``None`` if no match."""

        if self.kind is MatchKind.DISPLAY_NAME:
            return identity.name if identity.name == self.pattern else None
        serial_number = identity.serial_number or ""
        return serial_number if self.pattern and self.pattern in serial_number else None


def build_rules(
    names: Iterable[str] = KNOWN_DEVICE_NAMES, tags: Iterable[str] = PRODUCT_TAGS
) -> tuple:
    rules = [IdentityRule(MatchKind.DISPLAY_NAME, name) for name in names if name]
    rules.extend(IdentityRule(MatchKind.SERIAL_TAG, tag) for tag in tags if tag)
    return tuple(rules)


DEFAULT_RULES = build_rules()


def classify(
    identity: DeviceIdentity, rules: Sequence[IdentityRule] = DEFAULT_RULES
) -> Optional[str]:
    """Return ``"<label> @ <port>"`` for a recognized device, else ``None``."""

    for rule in rules:
        label = rule.label_for(identity)
        if label:
            return f"{label} @ {identity.port}"
    return None


def read_port_identity(candidate: CandidateDevice, channel: Any) -> DeviceIdentity:
    """Refresh name and serial number from pyserial's port list.

    Falls back to the metadata captured at discovery time when the port is no
    longer listed.
    """

    port = getattr(channel, "port", None) or candidate.port
    name = candidate.name
    serial_number = candidate.serial_number
    for info in list_ports.comports():
        if getattr(info, "device", None) == port:
            name = getattr(info, "product", None) or getattr(info, "description", None) or name
            serial_number = getattr(info, "serial_number", None) or serial_number
            break
    return DeviceIdentity(port=str(port), name=str(name or ""), serial_number=serial_number)


IdentityReader = Callable[[CandidateDevice, Any], DeviceIdentity]


class DeviceValidator:
    """Open a candidate, read its identity, classify it, and close it again."""

    def __init__(
        self,
        channel_factory: Optional[ChannelFactory] = None,
        *,
        rules: Sequence[IdentityRule] = DEFAULT_RULES,
        identity_reader: Optional[IdentityReader] = None,
        baudrate: int = DEFAULT_BAUDRATE,
        probe_timeout: float = PROBE_TIMEOUT,
    ) -> None:
        if channel_factory is None:
            channel_factory = functools.partial(
                open_serial_channel,
                baudrate=baudrate,
                timeout=probe_timeout,
                write_timeout=probe_timeout,
            )
        self._channel_factory = channel_factory
        self._identity_reader = identity_reader or read_port_identity
        self.rules = tuple(rules)

    def validate(self, candidate: CandidateDevice) -> ValidationOutcome:
        try:
            channel = self._channel_factory(candidate)
        except (serial.SerialException, OSError, ValueError) as exc:
            _LOGGER.info("Could not open %s for validation: %s", candidate.port, exc)
            return ValidationOutcome(candidate.device_id, False, reason=f"open failed: {exc}")

        try:
            identity = self._identity_reader(candidate, channel)
        except Exception as exc:
            _LOGGER.debug("Reading identity of %s failed", candidate.port, exc_info=True)
            return ValidationOutcome(candidate.device_id, False, reason=f"identity read failed: {exc}")
        finally:
            close_channel(channel)

        description = classify(identity, self.rules)
        if description is None:
            _LOGGER.debug("Rejected %s (name=%r)", candidate.port, identity.name)
            return ValidationOutcome(candidate.device_id, False, reason="unrecognized device")
        _LOGGER.info("Validated device: %s", description)
        return ValidationOutcome(candidate.device_id, True, description=description)

    def validate_batch(self, candidates: Iterable[CandidateDevice]) -> List[ValidationOutcome]:
        """Probe *candidates* one at a time, in order."""

        outcomes = [self.validate(candidate) for candidate in candidates]
        accepted = sum(1 for outcome in outcomes if outcome.accepted)
        _LOGGER.debug("Validated %d of %d candidate(s)", accepted, len(outcomes))
        return outcomes
