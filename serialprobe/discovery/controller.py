"""Discovery orchestration: sources -> registry -> validator -> consumers."""

from __future__ import annotations

import dataclasses
import enum
import functools
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from ..config import ProbeConfig
from ..errors import DiscoveryError, NotConnectedError, ValidationRejected
from ..models import CandidateDevice, EnumerationState, LogicalDevice, SourceStatus
from ..settings import ALL_SERIAL_DEVICES, DISPOSE_GRACE_SECONDS
from ..transport import LinkedCancellation, SerialTransport, open_serial_channel
from .registry import DeviceRegistry
from .sources import ComPortWatcher, DiscoverySource
from .validator import DeviceValidator, build_rules

SourceFactory = Callable[[str], DiscoverySource]
EnumerationCallback = Callable[[], None]
DeviceRef = Union[str, LogicalDevice]

_LOGGER = logging.getLogger(__name__)

_RUNNING = (SourceStatus.STARTED, SourceStatus.ENUMERATION_COMPLETED)


class ControllerState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    WATCHING = "watching"
    ENUMERATION_COMPLETE = "enumeration_complete"
    SUSPENDED = "suspended"


class EventKind(enum.Enum):
    ADDED = "added"
    REMOVED = "removed"
    ENUMERATION_COMPLETE = "enumeration_complete"


@dataclass(frozen=True)
class DiscoveryEvent:
    kind: EventKind
    selector: str
    generation: int
    candidate: Optional[CandidateDevice] = None
    device_id: Optional[str] = None


class DiscoveryController:
    """Drive discovery sources and expose validated devices to consumers.

    Source callbacks only enqueue events; a single dispatcher thread applies
    them to the registry in arrival order, runs the enumeration sweep, and
    fires the enumeration-completed callbacks.  Events raised before the most
    recent start, suspend or resume are discarded.
    """

    def __init__(
        self,
        selectors: Sequence[str] = (ALL_SERIAL_DEVICES,),
        *,
        source_factory: Optional[SourceFactory] = None,
        validator: Optional[DeviceValidator] = None,
        transport: Optional[SerialTransport] = None,
        dispose_grace_seconds: float = DISPOSE_GRACE_SECONDS,
    ) -> None:
        if not selectors:
            raise ValueError("At least one device selector is required")
        self.selectors = list(selectors)
        self._source_factory = source_factory or ComPortWatcher
        self._validator = validator or DeviceValidator()
        self.transport = transport or SerialTransport()
        self.enumeration = EnumerationState()
        self.registry = DeviceRegistry(
            self._validator,
            dispose_grace_seconds=dispose_grace_seconds,
            is_enumerated=lambda: self.enumeration.is_enumerated,
            on_disposed=self._on_device_disposed,
        )
        self._sources: List[DiscoverySource] = []
        self._state = ControllerState.STOPPED
        self._state_lock = threading.RLock()
        self._generation = 0
        self._events: "queue.Queue[Optional[DiscoveryEvent]]" = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None
        self._idle = threading.Condition()
        self._unfinished = 0
        self._callbacks: List[EnumerationCallback] = []
        self._callbacks_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ProbeConfig) -> "DiscoveryController":
        validator = DeviceValidator(
            rules=build_rules(config.known_device_names, config.product_tags),
            baudrate=config.baudrate,
            probe_timeout=config.probe_timeout,
        )
        transport = SerialTransport(
            functools.partial(open_serial_channel, baudrate=config.baudrate)
        )
        return cls(
            config.selectors,
            source_factory=functools.partial(ComPortWatcher, poll_interval=config.poll_interval),
            validator=validator,
            transport=transport,
            dispose_grace_seconds=config.dispose_grace_seconds,
        )

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def sources(self) -> List[DiscoverySource]:
        return list(self._sources)

    # Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        with self._state_lock:
            if self._state is not ControllerState.STOPPED:
                _LOGGER.debug("start() ignored in state %s", self._state.value)
                return
            self._state = ControllerState.STARTING
            if not self._sources:
                self._sources = [self._source_factory(selector) for selector in self.selectors]
            self._ensure_dispatcher()
            try:
                self._start_sources()
            except Exception as exc:
                self._stop_sources()
                self._state = ControllerState.STOPPED
                raise DiscoveryError(f"Could not start device discovery: {exc}") from exc
            self._state = ControllerState.WATCHING
        _LOGGER.info("Watching %d device selector(s)", len(self._sources))

    def app_suspending(self) -> None:
        with self._state_lock:
            if not self.enumeration.watchers_started:
                self.enumeration.watchers_suspended = False
                return
            self.enumeration.watchers_suspended = True
            self._stop_sources()
            self._state = ControllerState.SUSPENDED
        _LOGGER.info("Device discovery suspended")

    def app_resumed(self) -> None:
        with self._state_lock:
            if not self.enumeration.watchers_suspended:
                return
            self.enumeration.watchers_suspended = False
            self._start_sources()
            self._state = ControllerState.WATCHING
        _LOGGER.info("Device discovery resumed")

    def stop(self) -> None:
        """Stop every source, cancel countdowns, and close the transport."""

        with self._state_lock:
            if self.enumeration.watchers_started:
                self._stop_sources()
            self.enumeration.watchers_suspended = False
            self._sources = []
            dispatcher = self._dispatcher
            self._dispatcher = None
            self._state = ControllerState.STOPPED
        if dispatcher is not None:
            self._events.put(None)
            if dispatcher is not threading.current_thread():
                dispatcher.join(timeout=5.0)
        self.registry.close()
        self.transport.disconnect()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued discovery event has been applied."""

        with self._idle:
            return self._idle.wait_for(lambda: self._unfinished == 0, timeout)

    # Consumer API --------------------------------------------------------

    def register_enumeration_callback(self, callback: EnumerationCallback) -> None:
        if not callback:
            return
        with self._callbacks_lock:
            self._callbacks.append(callback)

    def unregister_enumeration_callback(self, callback: EnumerationCallback) -> None:
        with self._callbacks_lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def list_devices(self) -> List[LogicalDevice]:
        return self.registry.validated()

    def connect(
        self,
        device: DeviceRef,
        timeout: Optional[float] = None,
        cancel_token: Optional[threading.Event] = None,
    ) -> Optional[SerialTransport]:
        """Open the transport on *device*; ``None`` if cancelled before opening."""

        device_id = device if isinstance(device, str) else device.device_id
        logical = self.registry.find_logical(device_id)
        if logical is None:
            raise NotConnectedError(f"Unknown device {device_id}")
        if not logical.is_validated:
            raise ValidationRejected(f"Device {device_id} has not been validated")
        if LinkedCancellation(timeout, cancel_token).cancelled:
            return None
        candidate = self.registry.find(device_id) or logical.candidate
        self.transport.open(candidate)
        for other in self.registry.logical_devices():
            if other.transport is self.transport and other is not logical:
                other.transport = None
        logical.transport = self.transport
        return self.transport

    def disconnect(self, device: DeviceRef) -> None:
        device_id = device if isinstance(device, str) else device.device_id
        self.transport.disconnect(device_id)
        logical = self.registry.find_logical(device_id)
        if logical is not None:
            logical.transport = None

    # Source plumbing -----------------------------------------------------

    def _start_sources(self) -> None:
        self._generation += 1
        generation = self._generation
        self.enumeration.reset(len(self._sources))
        for source in self._sources:
            source.subscribe(
                functools.partial(self._on_added, generation),
                functools.partial(self._on_removed, generation),
                functools.partial(self._on_enumeration_complete, generation),
            )
            if source.status not in _RUNNING:
                source.start()

    def _stop_sources(self) -> None:
        self._generation += 1
        for source in self._sources:
            if source.status in _RUNNING:
                try:
                    source.stop()
                except Exception:
                    _LOGGER.warning("Failed to stop source %r", source.selector, exc_info=True)
        self.registry.clear()
        self.enumeration.watchers_started = False

    def _on_added(self, generation: int, selector: str, candidate: CandidateDevice) -> None:
        self._post(
            DiscoveryEvent(EventKind.ADDED, selector, generation, candidate=candidate)
        )

    def _on_removed(self, generation: int, selector: str, device_id: str) -> None:
        self._post(
            DiscoveryEvent(EventKind.REMOVED, selector, generation, device_id=device_id)
        )

    def _on_enumeration_complete(self, generation: int, selector: str) -> None:
        self._post(DiscoveryEvent(EventKind.ENUMERATION_COMPLETE, selector, generation))

    def _post(self, event: DiscoveryEvent) -> None:
        if event.generation != self._generation:
            return
        with self._idle:
            self._unfinished += 1
        self._events.put(event)

    # Dispatcher ----------------------------------------------------------

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is not None and self._dispatcher.is_alive():
            return
        self._events = queue.Queue()
        thread = threading.Thread(
            target=self._dispatch_loop,
            args=(self._events,),
            name="DiscoveryController",
            daemon=True,
        )
        self._dispatcher = thread
        thread.start()

    def _dispatch_loop(self, events: "queue.Queue[Optional[DiscoveryEvent]]") -> None:
        while True:
            event = events.get()
            if event is None:
                break
            try:
                self._handle(event)
            except Exception:
                _LOGGER.exception("Failed to handle %s event from %r", event.kind.value, event.selector)
            finally:
                self._finish_event()
        # Events left behind by stop() are never applied.
        while True:
            try:
                leftover = events.get_nowait()
            except queue.Empty:
                break
            if leftover is not None:
                self._finish_event()

    def _finish_event(self) -> None:
        with self._idle:
            self._unfinished -= 1
            if not self._unfinished:
                self._idle.notify_all()

    def _handle(self, event: DiscoveryEvent) -> None:
        if event.generation != self._generation:
            _LOGGER.debug("Dropping stale %s event from %r", event.kind.value, event.selector)
            return
        if event.kind is EventKind.ADDED and event.candidate is not None:
            candidate = event.candidate
            if candidate.selector != event.selector:
                candidate = dataclasses.replace(candidate, selector=event.selector)
            self.registry.on_device_added(candidate)
        elif event.kind is EventKind.REMOVED and event.device_id is not None:
            self.registry.on_device_removed(event.device_id)
        elif event.kind is EventKind.ENUMERATION_COMPLETE:
            if self.enumeration.mark_completed():
                self._run_sweep()

    def _run_sweep(self) -> None:
        with self._state_lock:
            if self._state is ControllerState.WATCHING:
                self._state = ControllerState.ENUMERATION_COMPLETE
        for outcome in self._validator.validate_batch(self.registry.pending()):
            self.registry.apply_outcome(outcome)
        # Devices kept across a suspend that did not come back start ageing now.
        self.registry.age_out_missing()
        self.enumeration.finish_sweep()
        _LOGGER.info(
            "Serial device enumeration completed. Found %d devices", len(self.list_devices())
        )
        self._dispatch_enumeration_completed()
        with self._state_lock:
            if self._state is ControllerState.ENUMERATION_COMPLETE:
                self._state = ControllerState.WATCHING

    def _dispatch_enumeration_completed(self) -> None:
        with self._callbacks_lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                _LOGGER.debug("Enumeration callback failed", exc_info=True)

    def _on_device_disposed(self, device: LogicalDevice) -> None:
        device.transport = None
        self.transport.disconnect(device.device_id)
