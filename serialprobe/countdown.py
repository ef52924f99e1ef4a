"""Dispose countdown used to debounce device removal."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

_LOGGER = logging.getLogger(__name__)

ExpireCallback = Callable[[], None]


class DisposeCountdown:
    """Run *on_expire* after *seconds* unless :meth:`stop` is called first.

    Expiry and cancellation are decided under *lock*, so a device that
    reappears while the timer thread is firing is either kept or disposed,
    never both.  Pass the owner's lock to make expiry atomic with the owner's
    other mutations.
    """

    def __init__(
        self,
        seconds: float,
        on_expire: ExpireCallback,
        *,
        lock: Optional[threading.RLock] = None,
        name: str = "DisposeCountdown",
    ) -> None:
        if seconds < 0:
            raise ValueError("Countdown length must not be negative")
        self._seconds = seconds
        self._on_expire = on_expire
        self._lock = lock if lock is not None else threading.RLock()
        self._name = name
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._armed = False

    @property
    def is_armed(self) -> bool:
        return self._armed

    @property
    def seconds(self) -> float:
        return self._seconds

    def start(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._generation += 1
            self._armed = True
            timer = threading.Timer(self._seconds, self._expire, args=(self._generation,))
            timer.name = self._name
            timer.daemon = True
            self._timer = timer
            timer.start()

    def stop(self) -> bool:
        """Cancel the countdown; return ``True`` if it was still armed."""

        with self._lock:
            was_armed = self._armed
            self._armed = False
            self._cancel_timer()
            return was_armed

    def wait(self, timeout: Optional[float] = None) -> None:
        timer = self._timer
        if timer:
            timer.join(timeout)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _expire(self, generation: int) -> None:
        with self._lock:
            if not self._armed or generation != self._generation:
                return
            self._armed = False
            try:
                self._on_expire()
            except Exception:
                _LOGGER.exception("%s expiry callback failed", self._name)
