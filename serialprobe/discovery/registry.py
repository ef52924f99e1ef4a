"""Registry of physically present and logically known devices."""

from __future__ import annotations

import functools
import logging
import threading
from typing import Callable, Dict, List, Optional

from ..countdown import DisposeCountdown
from ..models import CandidateDevice, LogicalDevice, ValidationOutcome, ValidationState
from ..settings import DISPOSE_GRACE_SECONDS
from .validator import DeviceValidator

DisposedCallback = Callable[[LogicalDevice], None]

_LOGGER = logging.getLogger(__name__)


class DeviceRegistry:
    """Track candidates as reported and logical devices as consumers see them.

    Candidates follow add/remove notifications exactly.  Logical devices are
    debounced: a removal only arms a dispose countdown, and a matching add
    before it expires keeps the existing entry untouched.
    """

    def __init__(
        self,
        validator: DeviceValidator,
        *,
        dispose_grace_seconds: float = DISPOSE_GRACE_SECONDS,
        is_enumerated: Optional[Callable[[], bool]] = None,
        on_disposed: Optional[DisposedCallback] = None,
    ) -> None:
        self._validator = validator
        self._grace = dispose_grace_seconds
        self._is_enumerated = is_enumerated or (lambda: False)
        self._on_disposed = on_disposed
        self._lock = threading.RLock()
        self._candidates: Dict[str, CandidateDevice] = {}
        # Insertion order is the order exposed to consumers.
        self._logical: Dict[str, LogicalDevice] = {}

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def on_device_added(self, candidate: CandidateDevice) -> Optional[LogicalDevice]:
        device_id = candidate.device_id
        with self._lock:
            if device_id in self._candidates:
                return self._logical.get(device_id)
            self._candidates[device_id] = candidate

            existing = self._logical.get(device_id)
            if existing is not None:
                countdown = existing.dispose_countdown
                if countdown is not None and countdown.stop():
                    _LOGGER.debug("Device %s reappeared; dispose cancelled", device_id)
                return existing

            device = LogicalDevice(candidate=candidate)
            self._logical[device_id] = device
            validate_now = self._is_enumerated()

        if not validate_now:
            return device

        outcome = self._validator.validate(candidate)
        self.apply_outcome(outcome)
        return self.find_logical(device_id)

    def on_device_removed(self, device_id: str) -> None:
        with self._lock:
            self._candidates.pop(device_id, None)
            _LOGGER.debug("Serial device removed: %s", device_id)
            device = self._logical.get(device_id)
            if device is not None:
                self._arm_countdown(device)

    def apply_outcome(self, outcome: ValidationOutcome) -> None:
        with self._lock:
            device = self._logical.get(outcome.device_id)
            if device is None:
                return
            if outcome.accepted:
                device.description = outcome.description
                device.state = ValidationState.VALIDATED
                return
            device.state = ValidationState.REJECTED
            self._candidates.pop(outcome.device_id, None)
            self._drop(device)

    def find(self, device_id: Optional[str]) -> Optional[CandidateDevice]:
        if device_id is None:
            return None
        with self._lock:
            return self._candidates.get(device_id)

    def find_logical(self, device_id: Optional[str]) -> Optional[LogicalDevice]:
        if device_id is None:
            return None
        with self._lock:
            return self._logical.get(device_id)

    def pending(self) -> List[CandidateDevice]:
        with self._lock:
            return [
                self._candidates[device_id]
                for device_id, device in self._logical.items()
                if device.state is ValidationState.PENDING and device_id in self._candidates
            ]

    def logical_devices(self) -> List[LogicalDevice]:
        with self._lock:
            return list(self._logical.values())

    def validated(self) -> List[LogicalDevice]:
        with self._lock:
            return [device for device in self._logical.values() if device.is_validated]

    def discard(self, device_id: str) -> None:
        with self._lock:
            device = self._logical.get(device_id)
            if device is not None:
                self._drop(device)

    def clear(self) -> None:
        """Forget every candidate; logical devices and their sessions are kept."""

        with self._lock:
            self._candidates.clear()

    def age_out_missing(self) -> List[LogicalDevice]:
        """Arm the dispose countdown of every logical device nobody re-reported."""

        with self._lock:
            missing = [
                device
                for device_id, device in self._logical.items()
                if device_id not in self._candidates
            ]
            for device in missing:
                _LOGGER.debug("Device %s was not re-reported", device.device_id)
                self._arm_countdown(device)
        return missing

    def close(self) -> None:
        with self._lock:
            for device in self._logical.values():
                if device.dispose_countdown is not None:
                    device.dispose_countdown.stop()

    def _arm_countdown(self, device: LogicalDevice) -> None:
        countdown = device.dispose_countdown
        if countdown is None:
            countdown = DisposeCountdown(
                self._grace,
                functools.partial(self._expire, device),
                lock=self._lock,
                name=f"Dispose[{device.candidate.port}]",
            )
            device.dispose_countdown = countdown
        if not countdown.is_armed:
            countdown.start()

    def _expire(self, device: LogicalDevice) -> None:
        # Runs with self._lock held by the countdown.
        device_id = device.device_id
        if self._logical.get(device_id) is not device or device_id in self._candidates:
            return
        del self._logical[device_id]
        _LOGGER.info("Removing device %s", device.description or device_id)
        if self._on_disposed:
            self._on_disposed(device)

    def _drop(self, device: LogicalDevice) -> None:
        if device.dispose_countdown is not None:
            device.dispose_countdown.stop()
        if self._logical.get(device.device_id) is device:
            del self._logical[device.device_id]
