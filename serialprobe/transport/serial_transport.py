"""Serial channel helpers and the cancellable transport used by protocol engines."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

import serial

from ..errors import OpenFailedError, TransportError
from ..models import CandidateDevice, IoOutcome
from ..settings import DEFAULT_BAUDRATE, IO_POLL_INTERVAL
from .cancellation import LinkedCancellation

ChannelFactory = Callable[[CandidateDevice], Any]

_LOGGER = logging.getLogger(__name__)


def open_serial_channel(
    candidate: CandidateDevice,
    *,
    baudrate: int = DEFAULT_BAUDRATE,
    timeout: Optional[float] = None,
    write_timeout: Optional[float] = None,
) -> serial.Serial:
    """Open *candidate*'s port with pyserial.

    Blocking reads and writes are the default; the transport bounds them with
    ``cancel_read``/``cancel_write`` instead of port timeouts.
    """

    return serial.Serial(
        candidate.port,
        baudrate,
        timeout=timeout,
        write_timeout=write_timeout,
    )


def close_channel(channel: Any) -> None:
    """Best-effort close that never raises."""

    try:
        channel.close()
    except Exception:
        _LOGGER.debug("Failed to close channel %r", channel, exc_info=True)


class _PendingIo:
    """A single blocking channel call running on its own daemon thread."""

    def __init__(self, func: Callable[..., Any], *args: Any, name: str) -> None:
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self._thread = threading.Thread(
            target=self._run, args=(func,) + args, name=name, daemon=True
        )

    def start(self) -> "_PendingIo":
        self._thread.start()
        return self

    def _run(self, func: Callable[..., Any], *args: Any) -> None:
        try:
            self.result = func(*args)
        except Exception as exc:
            self.error = exc
        finally:
            self.done.set()


@dataclass
class TransportSession:
    candidate: CandidateDevice
    channel: Any
    opened_at: float = field(default_factory=time.monotonic)

    @property
    def device_id(self) -> str:
        return self.candidate.device_id

    @property
    def is_open(self) -> bool:
        return bool(getattr(self.channel, "is_open", True))


class SerialTransport:
    """Owns one open channel and exposes cancellable, timeout-bound I/O.

    Reads are serialized through a single-slot gate.  A narrow lock guards
    the decision to start I/O so a cancellation that lands before the call is
    issued always wins; the I/O itself runs outside the lock and is cancelled
    through the channel while in flight.
    """

    def __init__(
        self,
        channel_factory: Optional[ChannelFactory] = None,
        *,
        poll_interval: float = IO_POLL_INTERVAL,
    ) -> None:
        self._channel_factory = channel_factory or open_serial_channel
        self._poll_interval = poll_interval
        self._session: Optional[TransportSession] = None
        self._session_lock = threading.RLock()
        self._cancel_io_lock = threading.Lock()
        self._read_gate = threading.Semaphore(1)
        # A read left running by a cancelled receive, with the session it was issued on.
        self._inflight_read: Optional[Tuple[TransportSession, _PendingIo]] = None
        self._backlog = bytearray()
        self._last_activity = 0.0
        self.last_outcome: Optional[IoOutcome] = None

    @property
    def is_connected(self) -> bool:
        session = self._session
        return bool(session and session.is_open)

    @property
    def device_id(self) -> Optional[str]:
        session = self._session
        return session.device_id if session else None

    @property
    def last_activity(self) -> float:
        """``time.monotonic()`` of the last successful non-empty send."""

        return self._last_activity

    def open(self, candidate: CandidateDevice) -> None:
        with self._session_lock:
            session = self._session
            if session is not None and session.device_id == candidate.device_id:
                if session.is_open:
                    return
            if session is not None:
                self._close_session(session)
            try:
                channel = self._channel_factory(candidate)
            except (serial.SerialException, OSError, ValueError) as exc:
                _LOGGER.debug("Opening %s failed: %s", candidate.port, exc)
                raise OpenFailedError(candidate.port, exc) from exc
            self._session = TransportSession(candidate=candidate, channel=channel)
            _LOGGER.debug("Opened %s (%s)", candidate.port, candidate.device_id)

    def disconnect(self, device_id: Optional[str] = None) -> None:
        """Close the open session, or only if it belongs to *device_id*."""

        with self._session_lock:
            session = self._session
            if session is None:
                return
            if device_id is not None and session.device_id != device_id:
                return
            self._close_session(session)

    def send(
        self,
        payload: bytes,
        timeout: Optional[float],
        cancel_token: Optional[threading.Event] = None,
    ) -> int:
        """Write *payload*; return the byte count, or 0 if cancelled or unconnected."""

        session = self._connected_session("send")
        if session is None:
            return 0
        linked = LinkedCancellation(timeout, cancel_token)
        with self._cancel_io_lock:
            if linked.cancelled:
                self.last_outcome = linked.outcome()
                return 0
            pending = _PendingIo(
                session.channel.write, bytes(payload), name=f"send[{session.candidate.port}]"
            ).start()

        if not linked.wait(pending.done, self._poll_interval):
            self._abort(session, pending, "cancel_write")
            self.last_outcome = linked.outcome()
            _LOGGER.debug("send on %s ended: %s", session.candidate.port, self.last_outcome.value)
            return 0

        if pending.error is not None:
            return self._handle_error(session, pending.error, 0)

        written = int(pending.result or 0)
        if written > 0:
            self._last_activity = max(self._last_activity, time.monotonic())
        self.last_outcome = IoOutcome.COMPLETED
        return written

    def receive(
        self,
        max_bytes: int,
        timeout: Optional[float],
        cancel_token: Optional[threading.Event] = None,
    ) -> bytes:
        """Read up to *max_bytes*; a cancelled read returns what arrived so far.

        A read abandoned by an earlier cancelled call is never lost: the next
        call waits for it and hands back its bytes before issuing a new read.
        """

        session = self._connected_session("receive")
        if session is None:
            return b""
        linked = LinkedCancellation(timeout, cancel_token)
        if not linked.acquire(self._read_gate, self._poll_interval):
            self.last_outcome = linked.outcome()
            return b""
        try:
            stray = self._inflight_read
            if stray is not None:
                owner, previous = stray
                if not linked.wait(previous.done, self._poll_interval):
                    self.last_outcome = linked.outcome()
                    return b""
                self._inflight_read = None
                if owner is session and previous.error is None and previous.result:
                    self._backlog.extend(previous.result)
            if self._backlog:
                data = bytes(self._backlog[:max_bytes])
                del self._backlog[:max_bytes]
                self.last_outcome = IoOutcome.COMPLETED
                return data

            with self._cancel_io_lock:
                if linked.cancelled:
                    self.last_outcome = linked.outcome()
                    return b""
                pending = _PendingIo(
                    session.channel.read, max_bytes, name=f"receive[{session.candidate.port}]"
                ).start()

            if not linked.wait(pending.done, self._poll_interval):
                self._abort(session, pending, "cancel_read")
                self.last_outcome = linked.outcome()
                if not pending.done.is_set():
                    self._inflight_read = (session, pending)
                    return b""
                if pending.error is None:
                    return bytes(pending.result or b"")
                return b""

            if pending.error is not None:
                return self._handle_error(session, pending.error, b"")
            self.last_outcome = IoOutcome.COMPLETED
            return bytes(pending.result or b"")
        finally:
            self._read_gate.release()

    def _connected_session(self, operation: str) -> Optional[TransportSession]:
        session = self._session
        if session is None or not session.is_open:
            _LOGGER.debug("%s() called with no connected device", operation)
            self.last_outcome = IoOutcome.NOT_CONNECTED
            return None
        return session

    def _abort(self, session: TransportSession, pending: _PendingIo, method: str) -> None:
        cancel = getattr(session.channel, method, None)
        if cancel is not None:
            try:
                cancel()
            except Exception:
                _LOGGER.debug("%s failed on %s", method, session.candidate.port, exc_info=True)
        # Give the worker one quantum to settle before reporting the outcome.
        if not pending.done.wait(self._poll_interval):
            _LOGGER.debug("I/O on %s still in flight after %s", session.candidate.port, method)

    def _handle_error(self, session: TransportSession, error: BaseException, empty: Any) -> Any:
        if isinstance(error, serial.SerialTimeoutException):
            self.last_outcome = IoOutcome.TIMED_OUT
            return empty
        if self._session is not session:
            # Disconnected while the call was in flight.
            self.last_outcome = IoOutcome.NOT_CONNECTED
            return empty
        raise TransportError(f"I/O failed on {session.candidate.port}: {error}") from error

    def _close_session(self, session: TransportSession) -> None:
        self._session = None
        self._backlog.clear()
        close_channel(session.channel)
        _LOGGER.debug("Closed %s (%s)", session.candidate.port, session.device_id)
