# =============================================================================
# KIT Python Client -- Reconnection Policy
# =============================================================================
#
# Bounded attempts, fixed delay.  No exponential backoff and no jitter:
# every retry waits exactly ``delay`` seconds.
# =============================================================================

from __future__ import annotations

from typing import Any, Callable

from ._logging import logger
from .scheduler import Scheduler, TimerHandle


class ReconnectPolicy:
    """Schedules reconnect attempts until *max_attempts* is used up.

    The attempt counter goes up when a scheduled attempt fires and is
    reset by the session once a handshake completes.

    Args:
        scheduler: Timer source.
        max_attempts: Attempts allowed between two successful handshakes.
        delay: Seconds to wait before each attempt.
    """

    def __init__(self, scheduler: Scheduler, *, max_attempts: int, delay: float) -> None:
        self._scheduler = scheduler
        self._max_attempts = max_attempts
        self._delay = delay
        self._attempts = 0
        self._timer: TimerHandle | None = None

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        """True while an attempt is scheduled but has not fired yet."""
        return self._timer is not None

    @property
    def exhausted(self) -> bool:
        return self._attempts >= self._max_attempts

    def schedule(self, attempt: Callable[[], Any]) -> bool:
        """Arm a timer that runs *attempt* after the delay.

        Returns False, without scheduling anything, once the attempts are
        used up.
        """
        if self.exhausted:
            return False

        self.cancel()
        logger.info(
            "Reconnecting in %.1fs (attempt %d/%d)",
            self._delay,
            self._attempts + 1,
            self._max_attempts,
        )

        def fire() -> None:
            self._timer = None
            self._attempts += 1
            attempt()

        self._timer = self._scheduler.call_later(self._delay, fire)
        return True

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def reset(self) -> None:
        self._attempts = 0
