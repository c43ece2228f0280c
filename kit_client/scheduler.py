# =============================================================================
# KIT Python Client -- Timer Scheduling
# =============================================================================
#
# The session never touches the event loop clock directly; heartbeat,
# reconnect and close-grace timers all go through a Scheduler so tests can
# drive them with a virtual clock.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Schedule-once / schedule-repeating / cancel capability."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...

    def call_repeating(
        self, interval: float, callback: Callable[[], Any]
    ) -> TimerHandle: ...


class _RepeatingTimer:
    """Re-arms ``loop.call_later`` after every tick until cancelled."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interval: float,
        callback: Callable[[], Any],
    ) -> None:
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self._handle = loop.call_later(interval, self._tick)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _tick(self) -> None:
        if self._cancelled:
            return
        # Re-arm first so a callback that cancels the timer wins.
        self._handle = self._loop.call_later(self._interval, self._tick)
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()


class AsyncioScheduler:
    """Scheduler backed by the asyncio event loop.

    Args:
        loop: Loop to schedule on.  Defaults to the loop running at the
            time of the first call.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(
        self, delay: float, callback: Callable[[], Any]
    ) -> asyncio.TimerHandle:
        return self._get_loop().call_later(delay, callback)

    def call_repeating(
        self, interval: float, callback: Callable[[], Any]
    ) -> _RepeatingTimer:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        return _RepeatingTimer(self._get_loop(), interval, callback)
