"""KIT Python client: a reconnecting session over a framed message protocol.

Callback usage::

    from kit_client import KitSession

    def ready():
        session.request("m.Echo", {"msg": "hello"}, print)

    session = KitSession("ws://localhost:12345/websocket", ready)
    session.subscribe("chat", lambda body: print("push:", body))

Async usage::

    from kit_client import connect

    async with connect("ws://localhost:12345/websocket") as session:
        reply = await session.call("m.Echo", {"msg": "hello"})

Optional extras::

    pip install kit-client[msgpack]   # MessagePack message bodies
"""

from typing import Any, Callable

from ._logging import set_debug
from ._version import __version__
from .emitter import EventEmitter
from .errors import (
    KitConfigError,
    KitConnectionError,
    KitError,
    KitProtocolError,
    KitTimeoutError,
)
from .protocol import MessageCodec, PacketDecoder
from .scheduler import AsyncioScheduler, Scheduler
from .session import KitSession
from .transport import Transport, TransportCallbacks, WebSocketTransport
from .types import (
    EVENT_CLOSE,
    EVENT_READY,
    EVENT_RECONNECTED,
    EVENT_RECONNECTING,
    EVENT_TRANSPORT_CLOSE,
    EVENT_TRANSPORT_ERROR,
    Message,
    MessageType,
    Packet,
    PacketType,
    SessionConfig,
    SessionState,
)


def connect(
    url: str,
    on_ready: Callable[[], Any] | None = None,
    **kwargs: Any,
) -> KitSession:
    """Create a session and start connecting.

    Must be called from inside a running event loop.  The result can be
    used as an async context manager, which waits for the handshake on
    entry and disconnects on exit.

    Args:
        url: Server URL, e.g. ``"ws://localhost:12345/websocket"``.
        on_ready: Called once when the first handshake completes.
        **kwargs: :class:`SessionConfig` fields (``log``,
            ``reconnect_max_attempts``, ``reconnect_delay``, ...) plus the
            ``transport_factory`` / ``scheduler`` / ``codec`` collaborators.

    Raises:
        KitConfigError: If the configuration is invalid.
    """
    collaborators = {
        key: kwargs.pop(key)
        for key in ("transport_factory", "scheduler", "codec")
        if key in kwargs
    }
    return KitSession(SessionConfig(url=url, **kwargs), on_ready, **collaborators)


__all__ = [
    "__version__",
    "connect",
    "set_debug",
    "KitSession",
    "SessionConfig",
    "SessionState",
    "EventEmitter",
    "MessageCodec",
    "PacketDecoder",
    "Message",
    "MessageType",
    "Packet",
    "PacketType",
    "Scheduler",
    "AsyncioScheduler",
    "Transport",
    "TransportCallbacks",
    "WebSocketTransport",
    "EVENT_CLOSE",
    "EVENT_READY",
    "EVENT_RECONNECTED",
    "EVENT_RECONNECTING",
    "EVENT_TRANSPORT_CLOSE",
    "EVENT_TRANSPORT_ERROR",
    "KitError",
    "KitConfigError",
    "KitConnectionError",
    "KitProtocolError",
    "KitTimeoutError",
]
