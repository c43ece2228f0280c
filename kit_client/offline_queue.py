# =============================================================================
# KIT Python Client -- Outbound Buffer
# =============================================================================
#
# Holds already-encoded packets composed while the session is not open and
# hands them back, in enqueue order, once the handshake completes.
#
# The buffer is unbounded: there is no size cap and no backpressure, so a
# long outage with a chatty caller grows memory without limit.
# =============================================================================

from __future__ import annotations

from collections import deque
from typing import Any

from ._logging import logger


class OutboundBuffer:
    """Strict FIFO of encoded packets awaiting an open session."""

    def __init__(self) -> None:
        self._queue: deque[bytes] = deque()
        self._total_bytes = 0

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def size(self) -> int:
        return len(self._queue)

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def enqueue(self, packet: bytes) -> None:
        self._queue.append(packet)
        self._total_bytes += len(packet)

    def drain(self) -> list[bytes]:
        """Return every buffered packet in enqueue order and empty the buffer."""
        if not self._queue:
            return []
        packets = list(self._queue)
        logger.debug(
            "Draining %d buffered packets (%d bytes)", len(packets), self._total_bytes
        )
        self.clear()
        return packets

    def clear(self) -> None:
        self._queue.clear()
        self._total_bytes = 0

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._queue),
            "bytes": self._total_bytes,
        }
