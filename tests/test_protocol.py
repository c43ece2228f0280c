"""Tests for the packet/message codec."""

import orjson
import pytest

from kit_client.constants import PACKET_MAX_SIZE
from kit_client.errors import KitConfigError, KitProtocolError
from kit_client.protocol import (
    JSONSerializer,
    MessageCodec,
    PacketDecoder,
    decode_message,
    encode_message,
    encode_packet,
)
from kit_client.types import Message, MessageType, Packet, PacketType


class TestEncodePacket:
    def test_header_layout(self):
        data = encode_packet(PacketType.DATA, b"abc")
        assert data == b"\x04\x00\x00\x03abc"

    def test_empty_body(self):
        assert encode_packet(PacketType.HEARTBEAT) == b"\x03\x00\x00\x00"

    def test_length_is_big_endian_24_bit(self):
        data = encode_packet(PacketType.DATA, b"x" * 0x00FF01)
        assert data[1:4] == b"\x00\xff\x01"

    def test_rejects_unknown_type(self):
        with pytest.raises(KitProtocolError, match="wrong packet type"):
            encode_packet(9, b"")

    def test_rejects_oversize_body(self):
        with pytest.raises(KitProtocolError, match="exceeds limit"):
            encode_packet(PacketType.DATA, b"x" * (PACKET_MAX_SIZE + 1))

    def test_max_size_body_allowed(self):
        data = encode_packet(PacketType.DATA, b"x" * PACKET_MAX_SIZE)
        assert len(data) == PACKET_MAX_SIZE + 4


class TestPacketDecoder:
    def test_single_packet(self):
        decoder = PacketDecoder()
        packets = decoder.feed(encode_packet(PacketType.HANDSHAKE, b'{"sid":"a"}'))
        assert packets == [Packet(PacketType.HANDSHAKE, b'{"sid":"a"}')]
        assert decoder.buffered == 0

    def test_several_packets_in_one_read(self):
        data = (
            encode_packet(PacketType.HEARTBEAT)
            + encode_packet(PacketType.DATA, b"one")
            + encode_packet(PacketType.KICK)
        )
        packets = PacketDecoder().feed(data)
        assert [p.type for p in packets] == [
            PacketType.HEARTBEAT,
            PacketType.DATA,
            PacketType.KICK,
        ]
        assert packets[1].body == b"one"

    def test_packet_split_across_reads(self):
        data = encode_packet(PacketType.DATA, b"hello world")
        decoder = PacketDecoder()
        assert decoder.feed(data[:2]) == []
        assert decoder.feed(data[2:7]) == []
        assert decoder.buffered == 7
        assert decoder.feed(data[7:]) == [Packet(PacketType.DATA, b"hello world")]

    def test_trailing_partial_packet_kept(self):
        first = encode_packet(PacketType.DATA, b"a")
        second = encode_packet(PacketType.DATA, b"bcd")
        decoder = PacketDecoder()
        assert decoder.feed(first + second[:3]) == [Packet(PacketType.DATA, b"a")]
        assert decoder.feed(second[3:]) == [Packet(PacketType.DATA, b"bcd")]

    def test_bad_type_raises(self):
        with pytest.raises(KitProtocolError, match="wrong packet type"):
            PacketDecoder().feed(b"\x07\x00\x00\x00")

    def test_oversize_length_raises_before_body_arrives(self):
        with pytest.raises(KitProtocolError, match="exceeds limit"):
            PacketDecoder(max_size=16).feed(b"\x04\x00\x00\x11")

    def test_reset_discards_partial_input(self):
        decoder = PacketDecoder()
        decoder.feed(b"\x04\x00")
        decoder.reset()
        assert decoder.buffered == 0


class TestMessages:
    def test_request_header(self):
        data = encode_message(Message(MessageType.REQUEST, id=1, route="m.Echo", body=b"{}"))
        assert data == b"\x00\x01\x06m.Echo{}"

    def test_notify_has_no_id(self):
        data = encode_message(Message(MessageType.NOTIFY, route="chat", body=b"x"))
        assert data == b"\x02\x04chatx"

    def test_response_has_no_route(self):
        data = encode_message(Message(MessageType.RESPONSE, id=5, body=b"x"))
        assert data == b"\x04\x05x"

    def test_varint_id(self):
        data = encode_message(Message(MessageType.RESPONSE, id=300, body=b""))
        assert data[1:3] == b"\xac\x02"
        assert decode_message(data + b"!").id == 300

    def test_decode_push(self):
        msg = decode_message(b"\x06\x04chat{}")
        assert msg == Message(MessageType.PUSH, id=0, route="chat", body=b"{}")

    def test_decode_server_style_response(self):
        # Request type with an id and an empty route.
        msg = decode_message(b"\x00\x07\x00{}")
        assert msg.type is MessageType.REQUEST
        assert msg.id == 7
        assert msg.route == ""
        assert msg.body == b"{}"

    def test_utf8_route(self):
        data = encode_message(Message(MessageType.NOTIFY, route="聊天", body=b""))
        assert decode_message(data + b"1").route == "聊天"

    def test_route_too_long(self):
        with pytest.raises(KitProtocolError, match="route too long"):
            encode_message(Message(MessageType.NOTIFY, route="r" * 256))

    def test_too_short(self):
        with pytest.raises(KitProtocolError, match="too short"):
            decode_message(b"\x00")

    def test_unknown_message_type(self):
        with pytest.raises(KitProtocolError, match="wrong message type"):
            decode_message(b"\x0e\x00")

    def test_truncated_id(self):
        with pytest.raises(KitProtocolError, match="truncated id"):
            decode_message(b"\x04\x80")

    def test_truncated_route(self):
        with pytest.raises(KitProtocolError, match="truncated route"):
            decode_message(b"\x02\x09ab")

    def test_invalid_utf8_route(self):
        with pytest.raises(KitProtocolError, match="route"):
            decode_message(b"\x02\x02\xff\xfe")


class TestMessageCodec:
    def test_unknown_serializer(self):
        with pytest.raises(KitConfigError):
            MessageCodec("xml")

    def test_encode_data_request(self):
        codec = MessageCodec()
        packet = PacketDecoder().feed(codec.encode_data(3, "m.Echo", {"a": 1}))[0]
        assert packet.type is PacketType.DATA
        msg = decode_message(packet.body)
        assert msg.type is MessageType.REQUEST
        assert msg.id == 3
        assert msg.route == "m.Echo"
        assert orjson.loads(msg.body) == {"a": 1}

    def test_encode_data_notify_when_id_zero(self):
        codec = MessageCodec()
        packet = PacketDecoder().feed(codec.encode_data(0, "chat", {}))[0]
        assert decode_message(packet.body).type is MessageType.NOTIFY

    def test_decode_data_parses_body(self):
        codec = MessageCodec()
        msg = codec.decode_data(b"\x04\x02" + orjson.dumps({"ok": True}))
        assert msg.id == 2
        assert msg.body == {"ok": True}

    def test_decode_data_empty_body_is_none(self):
        assert MessageCodec().decode_data(b"\x04\x02").body is None

    def test_decode_data_bad_body(self):
        with pytest.raises(KitProtocolError, match="malformed JSON"):
            MessageCodec().decode_data(b"\x04\x02{nope")

    def test_handshake_carries_sid(self):
        codec = MessageCodec()
        packet = PacketDecoder().feed(codec.encode_handshake("abc"))[0]
        assert packet.type is PacketType.HANDSHAKE
        assert orjson.loads(packet.body) == {"sid": "abc"}

    def test_decode_handshake(self):
        info = MessageCodec().decode_handshake(b'{"code":200,"hb":5,"sid":"x"}')
        assert info == {"code": 200, "hb": 5, "sid": "x"}

    def test_decode_handshake_empty(self):
        assert MessageCodec().decode_handshake(b"") == {}

    def test_decode_handshake_not_object(self):
        with pytest.raises(KitProtocolError, match="expected object"):
            MessageCodec().decode_handshake(b"[1, 2]")

    def test_decode_handshake_bad_json(self):
        with pytest.raises(KitProtocolError, match="malformed handshake"):
            MessageCodec().decode_handshake(b"{")

    def test_serializer_name(self):
        assert MessageCodec().serializer == "json"
        assert JSONSerializer().loads(b"[1]") == [1]


class TestMsgPack:
    def test_msgpack_bodies(self):
        pytest.importorskip("msgpack")
        codec = MessageCodec("msgpack")
        assert codec.serializer == "msgpack"
        body = codec.encode_body({"k": [1, 2], "b": b"\x00"})
        assert codec.decode_body(body) == {"k": [1, 2], "b": b"\x00"}

    def test_msgpack_malformed(self):
        pytest.importorskip("msgpack")
        with pytest.raises(KitProtocolError, match="malformed msgpack"):
            MessageCodec("msgpack").decode_body(b"\xc1")
