"""Data types shared by the discovery and transport layers."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ValidationState(enum.Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


class SourceStatus(enum.Enum):
    """Lifecycle of a discovery source."""

    NOT_STARTED = "not_started"
    STARTED = "started"
    ENUMERATION_COMPLETED = "enumeration_completed"
    STOPPED = "stopped"
    ABORTED = "aborted"


class IoOutcome(enum.Enum):
    """How the most recent transport operation finished."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    NOT_CONNECTED = "not_connected"


@dataclass(frozen=True)
class CandidateDevice:
    """A device reported present by a discovery source."""

    device_id: str
    selector: str
    port: str
    name: str = ""
    serial_number: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(eq=False)
class LogicalDevice:
    """Debounced view of a candidate as seen by protocol-level consumers."""

    candidate: CandidateDevice
    description: str = ""
    state: ValidationState = ValidationState.PENDING
    transport: Optional[Any] = field(default=None, repr=False)
    dispose_countdown: Optional[Any] = field(default=None, repr=False)

    @property
    def device_id(self) -> str:
        return self.candidate.device_id

    @property
    def is_validated(self) -> bool:
        return self.state is ValidationState.VALIDATED


@dataclass(frozen=True)
class ValidationOutcome:
    device_id: str
    accepted: bool
    description: str = ""
    reason: str = ""


@dataclass
class EnumerationState:
    """Counters driving the enumeration sweep of one controller."""

    watchers_started: bool = False
    watchers_suspended: bool = False
    completed_count: int = 0
    total_count: int = 0
    all_enumerated: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def reset(self, total: int) -> None:
        with self.lock:
            self.watchers_started = True
            self.completed_count = 0
            self.total_count = total
            self.all_enumerated = False

    def mark_completed(self) -> bool:
        """Count one finished source; return ``True`` when the sweep is due."""

        with self.lock:
            if self.all_enumerated or not self.watchers_started:
                return False
            self.completed_count += 1
            return self.completed_count == self.total_count

    def finish_sweep(self) -> None:
        with self.lock:
            self.all_enumerated = True

    @property
    def is_enumerated(self) -> bool:
        with self.lock:
            return self.all_enumerated
