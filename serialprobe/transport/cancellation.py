"""Deadline helpers combining a timeout with an external cancel event."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from ..models import IoOutcome


class LinkedCancellation:
    """Cancellation that fires on whichever comes first: *timeout* or *token*.

    *token* is any object with an ``is_set()`` method, normally a
    :class:`threading.Event` owned by the caller.  A ``None`` timeout means
    only the token can cancel.
    """

    def __init__(
        self,
        timeout: Optional[float],
        token: Optional[threading.Event] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._token = token
        self._clock = clock
        self.deadline: Optional[float] = None
        if timeout is not None:
            self.deadline = clock() + max(float(timeout), 0.0)

    @property
    def external_cancelled(self) -> bool:
        return bool(self._token is not None and self._token.is_set())

    @property
    def timed_out(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self.external_cancelled or self.timed_out

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(self.deadline - self._clock(), 0.0)

    def outcome(self) -> IoOutcome:
        if self.external_cancelled:
            return IoOutcome.CANCELLED
        if self.timed_out:
            return IoOutcome.TIMED_OUT
        return IoOutcome.COMPLETED

    def wait(self, event: threading.Event, quantum: float) -> bool:
        """Block until *event* is set or this cancellation fires.

        Returns ``True`` if the event was set.  The wait is sliced into
        *quantum*-sized chunks so the external token is noticed promptly.
        """

        while not event.is_set():
            if self.cancelled:
                return event.is_set()
            remaining = self.remaining()
            step = quantum if remaining is None else min(quantum, remaining)
            event.wait(max(step, 0.0))
        return True

    def acquire(self, semaphore: threading.Semaphore, quantum: float) -> bool:
        """Acquire *semaphore* unless cancellation fires while waiting for it."""

        while True:
            remaining = self.remaining()
            step = quantum if remaining is None else min(quantum, remaining)
            if semaphore.acquire(timeout=max(step, 0.0)):
                return True
            if self.cancelled:
                return False
