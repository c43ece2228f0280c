# =============================================================================
# KIT Python Client -- Heartbeat
# =============================================================================
#
# Periodic keep-alive at the interval the server announced in its
# handshake.  Inbound heartbeats need no answer and the client does not
# time out on their absence; dead links surface as transport errors.
# =============================================================================

from __future__ import annotations

from typing import Any, Callable

from ._logging import logger
from .scheduler import Scheduler, TimerHandle


class Heartbeat:
    """Sends a heartbeat packet every *interval* seconds while started.

    Args:
        scheduler: Timer source.
        send: Called on every tick; expected to put one heartbeat packet
            on the wire.
    """

    def __init__(self, scheduler: Scheduler, send: Callable[[], Any]) -> None:
        self._scheduler = scheduler
        self._send = send
        self._interval = 0.0
        self._timer: TimerHandle | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def active(self) -> bool:
        return self._timer is not None

    def start(self, interval: float) -> None:
        """(Re)start at *interval*.  ``0`` leaves the heartbeat stopped."""
        self.stop()
        self._interval = interval
        if interval > 0:
            logger.debug("Heartbeat every %.1fs", interval)
            self._timer = self._scheduler.call_repeating(interval, self._send)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
