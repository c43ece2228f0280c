# =============================================================================
# KIT Python Client -- Pending Requests
# =============================================================================
#
# Correlates outbound requests with inbound responses by request id.
# Ids come from one counter shared by every session in the process; it
# starts at 1 and is never reset, so an id is never reused.
# =============================================================================

from __future__ import annotations

import itertools
from typing import Any, Callable

ResponseCallback = Callable[[Any], Any]

_request_ids = itertools.count(1)


def next_request_id() -> int:
    return next(_request_ids)


class PendingRequests:
    """request id -> completion callback.

    Entries are removed when the matching response arrives.  There is no
    timeout: a request the server never answers stays here until the
    session closes.
    """

    def __init__(self) -> None:
        self._callbacks: dict[int, ResponseCallback] = {}

    def __len__(self) -> int:
        return len(self._callbacks)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._callbacks

    def add(self, request_id: int, callback: ResponseCallback) -> None:
        if request_id in self._callbacks:
            raise KeyError(f"request id {request_id} already pending")
        self._callbacks[request_id] = callback

    def pop(self, request_id: int) -> ResponseCallback | None:
        """Remove and return the callback, or None for unknown ids."""
        return self._callbacks.pop(request_id, None)

    def clear(self) -> int:
        dropped = len(self._callbacks)
        self._callbacks.clear()
        return dropped
