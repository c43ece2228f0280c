# =============================================================================
# KIT Python Client -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any

from .constants import (
    CLOSE_GRACE_DELAY,
    CONNECTION_TIMEOUT,
    RECONNECT_DELAY,
    RECONNECT_MAX_ATTEMPTS,
    SERIALIZER_JSON,
    SERIALIZERS,
)
from .errors import KitConfigError

# -- Session event names -------------------------------------------------------
#
# Server push routes share the same namespace, so these use names a route
# registered on the server side would not normally take.

EVENT_CLOSE = "close"
EVENT_READY = "ready"
EVENT_RECONNECTING = "reconnecting"
EVENT_RECONNECTED = "reconnected"
EVENT_TRANSPORT_ERROR = "io-error"
EVENT_TRANSPORT_CLOSE = "io-close"


class SessionState(str, Enum):
    """Session lifecycle state.

    Typical flow: CONNECTING -> OPEN -> CLOSING -> CLOSED.
    Reconnection cycles OPEN -> CONNECTING -> OPEN; CLOSING and CLOSED
    are never left once entered.
    """

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class PacketType(IntEnum):
    """Frame kinds carried in the first byte of every packet."""

    HANDSHAKE = 0x01
    HANDSHAKE_ACK = 0x02
    HEARTBEAT = 0x03
    DATA = 0x04
    KICK = 0x05


class MessageType(IntEnum):
    """Message kinds encoded in bits 1-3 of the message flag byte.

    REQUEST and RESPONSE carry a correlation id, REQUEST/NOTIFY/PUSH
    carry a route.
    """

    REQUEST = 0x00
    NOTIFY = 0x01
    RESPONSE = 0x02
    PUSH = 0x03

    @property
    def has_id(self) -> bool:
        return self in (MessageType.REQUEST, MessageType.RESPONSE)

    @property
    def has_route(self) -> bool:
        return self in (MessageType.REQUEST, MessageType.NOTIFY, MessageType.PUSH)


@dataclass(frozen=True, slots=True)
class Packet:
    """A single decoded frame."""

    type: PacketType
    body: bytes = b""


@dataclass(frozen=True, slots=True)
class Message:
    """A Data packet body.

    Attributes:
        type: See :class:`MessageType`.
        id: Correlation id, ``0`` when no response is expected.
        route: Route / topic name, empty for responses.
        body: Raw body bytes, or the decoded value once passed through
            :meth:`MessageCodec.decode_data`.
    """

    type: MessageType
    id: int = 0
    route: str = ""
    body: Any = b""


@dataclass
class SessionConfig:
    """Configuration for a :class:`~kit_client.session.KitSession`.

    Attributes:
        url: Connection target, e.g. ``"ws://localhost:12345/websocket"``.
        log: Enable verbose lifecycle logging.
        reconnect_max_attempts: Reconnect attempts after a transport
            failure before giving up. ``0`` disables reconnection.
        reconnect_delay: Fixed delay in seconds before each attempt.
        close_grace_delay: Seconds between sending the kick packet on
            disconnect and forcibly closing the transport.
        serializer: Body format, ``"json"`` or ``"msgpack"``.
        open_timeout: Seconds allowed for the transport to open.
    """

    url: str = ""
    log: bool = False
    reconnect_max_attempts: int = RECONNECT_MAX_ATTEMPTS
    reconnect_delay: float = RECONNECT_DELAY
    close_grace_delay: float = CLOSE_GRACE_DELAY
    serializer: str = SERIALIZER_JSON
    open_timeout: float = CONNECTION_TIMEOUT

    def validate(self) -> None:
        """Raise :class:`KitConfigError` on unusable values."""
        if not self.url:
            raise KitConfigError("url is required")
        if self.reconnect_max_attempts < 0:
            raise KitConfigError(
                f"reconnect_max_attempts must be >= 0, got {self.reconnect_max_attempts}"
            )
        if self.reconnect_delay < 0:
            raise KitConfigError(
                f"reconnect_delay must be >= 0, got {self.reconnect_delay}"
            )
        if self.close_grace_delay < 0:
            raise KitConfigError(
                f"close_grace_delay must be >= 0, got {self.close_grace_delay}"
            )
        if self.open_timeout <= 0:
            raise KitConfigError(f"open_timeout must be > 0, got {self.open_timeout}")
        if self.serializer not in SERIALIZERS:
            raise KitConfigError(
                f"unknown serializer {self.serializer!r}, expected one of {SERIALIZERS}"
            )
