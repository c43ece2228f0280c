# =============================================================================
# KIT Python Client -- Wire Protocol Codec
# =============================================================================
#
# Packet:   -<type>-|--------<length>--------|-<body>-
#           1 byte type, 3 bytes body length (big-endian), body
#
# Message (body of a DATA packet):
#   | request  | flag 0000 | <varint id> | <route len> <route> | body |
#   | notify   | flag 0010 |             | <route len> <route> | body |
#   | response | flag 0100 | <varint id> |                     | body |
#   | push     | flag 0110 |             | <route len> <route> | body |
#
# Handshake bodies are always JSON; message bodies use the configured
# serializer (JSON via orjson by default, optional msgpack).
# =============================================================================

from __future__ import annotations

from typing import Any, Protocol

import orjson

from .constants import (
    MESSAGE_HEAD_LENGTH,
    MESSAGE_ROUTE_MAX_LENGTH,
    MESSAGE_TYPE_MASK,
    PACKET_HEAD_LENGTH,
    PACKET_MAX_SIZE,
    SERIALIZER_JSON,
    SERIALIZER_MSGPACK,
    SERIALIZERS,
)
from .errors import KitConfigError, KitProtocolError
from .types import Message, MessageType, Packet, PacketType

_PACKET_TYPES = frozenset(int(t) for t in PacketType)


# -- Body serializers ----------------------------------------------------------


class Serializer(Protocol):
    name: str

    def dumps(self, obj: Any) -> bytes: ...

    def loads(self, data: bytes) -> Any: ...


class JSONSerializer:
    name = SERIALIZER_JSON

    def dumps(self, obj: Any) -> bytes:
        return orjson.dumps(obj)

    def loads(self, data: bytes) -> Any:
        try:
            return orjson.loads(data)
        except orjson.JSONDecodeError as exc:
            raise KitProtocolError(f"malformed JSON body: {exc}") from exc


class MsgPackSerializer:
    """MessagePack bodies.  Requires the ``msgpack`` extra."""

    name = SERIALIZER_MSGPACK

    def __init__(self) -> None:
        try:
            import msgpack
        except ImportError as exc:
            raise ImportError(
                "msgpack package required: pip install kit-client[msgpack]"
            ) from exc
        self._msgpack = msgpack

    def dumps(self, obj: Any) -> bytes:
        return self._msgpack.packb(obj, use_bin_type=True)

    def loads(self, data: bytes) -> Any:
        try:
            return self._msgpack.unpackb(data, raw=False)
        except (ValueError, self._msgpack.UnpackException) as exc:
            raise KitProtocolError(f"malformed msgpack body: {exc}") from exc


# -- Packets -------------------------------------------------------------------


def encode_packet(type: PacketType | int, body: bytes = b"") -> bytes:
    """Frame *body* as a packet of the given type."""
    if type not in _PACKET_TYPES:
        raise KitProtocolError(f"wrong packet type: {type!r}")
    if len(body) > PACKET_MAX_SIZE:
        raise KitProtocolError(
            f"packet size {len(body)} exceeds limit {PACKET_MAX_SIZE}"
        )
    return bytes((int(type),)) + len(body).to_bytes(3, "big") + body


class PacketDecoder:
    """Incremental packet decoder for one transport connection.

    Physical reads do not line up with packets: a read may carry half a
    packet or several of them.  ``feed`` buffers partial input and returns
    every packet completed so far.
    """

    def __init__(self, max_size: int = PACKET_MAX_SIZE) -> None:
        self._max_size = max_size
        self._buf = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> list[Packet]:
        self._buf.extend(data)
        packets: list[Packet] = []

        while len(self._buf) >= PACKET_HEAD_LENGTH:
            typ = self._buf[0]
            if typ not in _PACKET_TYPES:
                raise KitProtocolError(f"wrong packet type: {typ:#04x}")
            size = int.from_bytes(self._buf[1:PACKET_HEAD_LENGTH], "big")
            if size > self._max_size:
                raise KitProtocolError(
                    f"packet size {size} exceeds limit {self._max_size}"
                )

            end = PACKET_HEAD_LENGTH + size
            if len(self._buf) < end:
                break
            packets.append(
                Packet(PacketType(typ), bytes(self._buf[PACKET_HEAD_LENGTH:end]))
            )
            del self._buf[:end]

        return packets

    def reset(self) -> None:
        self._buf.clear()


# -- Messages ------------------------------------------------------------------


def encode_message(message: Message) -> bytes:
    """Serialize the header of *message* followed by its raw body bytes."""
    mtype = MessageType(message.type)
    buf = bytearray((int(mtype) << 1,))

    if mtype.has_id:
        n = message.id
        if n < 0:
            raise KitProtocolError(f"negative message id: {n}")
        while True:
            b = n & 0x7F
            n >>= 7
            if n:
                buf.append(b | 0x80)
            else:
                buf.append(b)
                break

    if mtype.has_route:
        route = message.route.encode("utf-8")
        if len(route) > MESSAGE_ROUTE_MAX_LENGTH:
            raise KitProtocolError(
                f"route too long ({len(route)} bytes): {message.route[:32]!r}..."
            )
        buf.append(len(route))
        buf.extend(route)

    buf.extend(message.body)
    return bytes(buf)


def decode_message(data: bytes) -> Message:
    """Parse a DATA packet body.  The returned body is still raw bytes."""
    if len(data) < MESSAGE_HEAD_LENGTH:
        raise KitProtocolError("invalid message: too short")

    raw_type = (data[0] >> 1) & MESSAGE_TYPE_MASK
    try:
        mtype = MessageType(raw_type)
    except ValueError:
        raise KitProtocolError(f"wrong message type: {raw_type}") from None

    offset = 1
    msg_id = 0
    if mtype.has_id:
        shift = 0
        while True:
            if offset >= len(data):
                raise KitProtocolError("invalid message: truncated id")
            b = data[offset]
            offset += 1
            msg_id |= (b & 0x7F) << shift
            shift += 7
            if b < 0x80:
                break

    route = ""
    if mtype.has_route:
        if offset >= len(data):
            raise KitProtocolError("invalid message: missing route")
        route_len = data[offset]
        offset += 1
        if offset + route_len > len(data):
            raise KitProtocolError("invalid message: truncated route")
        try:
            route = data[offset : offset + route_len].decode("utf-8")
        except UnicodeDecodeError as exc:
            raise KitProtocolError(f"invalid message route: {exc}") from exc
        offset += route_len

    return Message(type=mtype, id=msg_id, route=route, body=data[offset:])


# -- Codec ---------------------------------------------------------------------


class MessageCodec:
    """Encode and decode everything the session puts on or takes off the wire.

    Args:
        serializer: Body format, ``"json"`` (default) or ``"msgpack"``.
        max_packet_size: Limit enforced by the packet decoders it creates.
    """

    def __init__(
        self,
        serializer: str = SERIALIZER_JSON,
        *,
        max_packet_size: int = PACKET_MAX_SIZE,
    ) -> None:
        if serializer not in SERIALIZERS:
            raise KitConfigError(
                f"unknown serializer {serializer!r}, expected one of {SERIALIZERS}"
            )
        self._serializer: Serializer = (
            MsgPackSerializer() if serializer == SERIALIZER_MSGPACK else JSONSerializer()
        )
        self._max_packet_size = max_packet_size

    @property
    def serializer(self) -> str:
        return self._serializer.name

    def new_decoder(self) -> PacketDecoder:
        return PacketDecoder(self._max_packet_size)

    def encode_packet(self, type: PacketType, body: bytes = b"") -> bytes:
        return encode_packet(type, body)

    # -- Handshake -------------------------------------------------------------

    def encode_handshake(self, session_id: str) -> bytes:
        return encode_packet(PacketType.HANDSHAKE, orjson.dumps({"sid": session_id}))

    def decode_handshake(self, body: bytes) -> dict[str, Any]:
        """Parse the server handshake record.

        Raises:
            KitProtocolError: If the body is not a JSON object.
        """
        if not body:
            return {}
        try:
            parsed = orjson.loads(body)
        except orjson.JSONDecodeError as exc:
            raise KitProtocolError(f"malformed handshake body: {exc}") from exc
        if not isinstance(parsed, dict):
            raise KitProtocolError(
                f"handshake body is {type(parsed).__name__}, expected object"
            )
        return parsed

    # -- Data ------------------------------------------------------------------

    def encode_data(self, request_id: int, route: str, body: Any) -> bytes:
        """Build a complete DATA packet for a request (id > 0) or notify."""
        mtype = MessageType.REQUEST if request_id else MessageType.NOTIFY
        payload = encode_message(
            Message(type=mtype, id=request_id, route=route, body=self.encode_body(body))
        )
        return encode_packet(PacketType.DATA, payload)

    def decode_data(self, body: bytes) -> Message:
        """Decode a DATA packet body, including the serialized message body."""
        msg = decode_message(body)
        return Message(
            type=msg.type, id=msg.id, route=msg.route, body=self.decode_body(msg.body)
        )

    # -- Bodies ----------------------------------------------------------------

    def encode_body(self, obj: Any) -> bytes:
        return self._serializer.dumps(obj)

    def decode_body(self, data: bytes) -> Any:
        if not data:
            return None
        return self._serializer.loads(data)
