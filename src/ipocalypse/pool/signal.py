"""
First-writer-wins stop signal shared by the pool's workers.

``trip`` commits the stop reason exactly once under a lock (the
compare-and-set) and then wakes every waiter through an asyncio.Event.
``admit`` checks the signal and counts a started attempt under the same
lock, so no attempt can be admitted once the signal has tripped.
"""

from __future__ import annotations

import asyncio
import threading

from ipocalypse.models.enums import StopReason


class StopSignal:
    """
    One-way stop broadcast carrying the stop reason.

    ``trip``, ``wait`` and the event broadcast must run on the event loop
    that owns the pool; ``admit`` and the read-only properties are safe
    from any thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._event = asyncio.Event()
        self._reason: StopReason | None = None
        self._cause: BaseException | None = None
        self._admitted = 0
        self._admitted_at_trip: int | None = None

    def trip(self, reason: StopReason, cause: BaseException | None = None) -> bool:
        """
        Record the stop reason if nobody has yet.

        Returns:
            True if this call won, False if the signal had already tripped.
        """
        with self._lock:
            if self._reason is not None:
                return False
            self._reason = StopReason(reason)
            self._cause = cause
            self._admitted_at_trip = self._admitted
        self._event.set()
        return True

    def admit(self) -> bool:
        """Register a new attempt; False once the signal has tripped."""
        with self._lock:
            if self._reason is not None:
                return False
            self._admitted += 1
            return True

    async def wait(self, timeout: float | None = None) -> bool:
        """
        Sleep until the signal trips or ``timeout`` passes.

        Returns:
            True if the signal has tripped.
        """
        if timeout is not None and timeout <= 0:
            return self.is_set
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self.is_set

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._reason is not None

    @property
    def reason(self) -> StopReason | None:
        return self._reason

    @property
    def cause(self) -> BaseException | None:
        return self._cause

    @property
    def admitted(self) -> int:
        """Attempts admitted so far."""
        return self._admitted

    @property
    def admitted_at_trip(self) -> int | None:
        """Attempts admitted when the signal tripped (None if not yet)."""
        return self._admitted_at_trip
