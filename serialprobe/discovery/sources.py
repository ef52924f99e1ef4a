"""Discovery sources raising add/remove/enumeration-complete notifications."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterable, Optional

from serial.tools import list_ports

from ..models import CandidateDevice, SourceStatus
from ..settings import ALL_SERIAL_DEVICES, POLL_INTERVAL

AddedCallback = Callable[[str, CandidateDevice], None]
RemovedCallback = Callable[[str, str], None]
EnumerationCompleteCallback = Callable[[str], None]
PortLister = Callable[[str], Iterable[Any]]

_LOGGER = logging.getLogger(__name__)

_METADATA_FIELDS = (
    "description",
    "hwid",
    "vid",
    "pid",
    "serial_number",
    "manufacturer",
    "product",
    "location",
    "interface",
)


def candidate_from_port(info: Any, selector: str) -> CandidateDevice:
    """Build a :class:`CandidateDevice` from a pyserial ``ListPortInfo``."""

    port = getattr(info, "device", "") or ""
    hwid = getattr(info, "hwid", "") or ""
    name = getattr(info, "product", None) or getattr(info, "description", "") or ""
    metadata = {key: getattr(info, key, None) for key in _METADATA_FIELDS}
    return CandidateDevice(
        device_id=f"{port}|{hwid}" if hwid else port,
        selector=selector,
        port=port,
        name=str(name),
        serial_number=getattr(info, "serial_number", None),
        metadata=metadata,
    )


def grep_ports(selector: str) -> Iterable[Any]:
    return list_ports.grep(selector)


class DiscoverySource:
    """Base class for enumeration sources watching one device selector.

    Subclasses call :meth:`_emit_added`, :meth:`_emit_removed` and
    :meth:`_emit_enumeration_complete`; callbacks may run on any thread.
    """

    def __init__(self, selector: str) -> None:
        self.selector = selector
        self._status = SourceStatus.NOT_STARTED
        self._on_added: Optional[AddedCallback] = None
        self._on_removed: Optional[RemovedCallback] = None
        self._on_enumeration_complete: Optional[EnumerationCompleteCallback] = None

    @property
    def status(self) -> SourceStatus:
        return self._status

    def subscribe(
        self,
        on_added: AddedCallback,
        on_removed: RemovedCallback,
        on_enumeration_complete: EnumerationCompleteCallback,
    ) -> None:
        self._on_added = on_added
        self._on_removed = on_removed
        self._on_enumeration_complete = on_enumeration_complete

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def _emit_added(self, candidate: CandidateDevice) -> None:
        if self._on_added:
            self._on_added(self.selector, candidate)

    def _emit_removed(self, device_id: str) -> None:
        if self._on_removed:
            self._on_removed(self.selector, device_id)

    def _emit_enumeration_complete(self) -> None:
        if self._on_enumeration_complete:
            self._on_enumeration_complete(self.selector)


class ComPortWatcher(DiscoverySource):
    """Poll pyserial's port list and report the differences.

    The first scan after :meth:`start` reports every matching port followed
    by one enumeration-complete notification; later scans report only ports
    that appeared or vanished.
    """

    def __init__(
        self,
        selector: str = ALL_SERIAL_DEVICES,
        *,
        poll_interval: float = POLL_INTERVAL,
        lister: Optional[PortLister] = None,
    ) -> None:
        super().__init__(selector)
        self.poll_interval = poll_interval
        self._lister = lister or grep_ports
        self._known: Dict[str, CandidateDevice] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        with self._lock:
            if self._status in (SourceStatus.STARTED, SourceStatus.ENUMERATION_COMPLETED):
                return
            self._stop_event.clear()
            self._known = {}
            self._status = SourceStatus.STARTED
            thread = threading.Thread(
                target=self._run,
                name=f"ComPortWatcher[{self.selector}]",
                daemon=True,
            )
            self._thread = thread
            thread.start()

    def stop(self) -> None:
        with self._lock:
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            if self._status is not SourceStatus.ABORTED:
                self._status = SourceStatus.STOPPED
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=max(self.poll_interval, 1.0))

    def scan(self) -> Dict[str, CandidateDevice]:
        found: Dict[str, CandidateDevice] = {}
        for info in self._lister(self.selector):
            candidate = candidate_from_port(info, self.selector)
            if candidate.port:
                found[candidate.device_id] = candidate
        return found

    def poll_once(self) -> None:
        current = self.scan()
        previous = self._known
        self._known = current
        for device_id in previous:
            if device_id not in current and not self._stop_event.is_set():
                self._emit_removed(device_id)
        for device_id, candidate in current.items():
            if device_id not in previous and not self._stop_event.is_set():
                self._emit_added(candidate)

    def _run(self) -> None:
        try:
            self.poll_once()
            with self._lock:
                if self._stop_event.is_set():
                    return
                self._status = SourceStatus.ENUMERATION_COMPLETED
            self._emit_enumeration_complete()
            while not self._stop_event.wait(self.poll_interval):
                self.poll_once()
        except Exception:
            _LOGGER.exception("Port watcher for %r aborted", self.selector)
            with self._lock:
                self._status = SourceStatus.ABORTED
