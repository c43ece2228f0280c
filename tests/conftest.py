"""Shared fakes and fixtures for KIT client tests.

Nothing here touches the network or the real clock: transports are
in-memory fakes driven by the test, and timers run on a virtual clock
advanced explicitly with ``ManualScheduler.advance``.
"""

from __future__ import annotations

from typing import Any, Callable

import orjson
import pytest

from kit_client.protocol import (
    PacketDecoder,
    decode_message,
    encode_message,
    encode_packet,
)
from kit_client.session import KitSession
from kit_client.transport import Transport, TransportCallbacks
from kit_client.types import Message, MessageType, Packet, PacketType, SessionConfig

TEST_URL = "ws://kit.test/websocket"


# -- Virtual clock -------------------------------------------------------------


class ManualTimer:
    def __init__(
        self,
        scheduler: ManualScheduler,
        when: float,
        callback: Callable[[], Any],
        interval: float | None,
        seq: int,
    ) -> None:
        self.scheduler = scheduler
        self.when = when
        self.callback = callback
        self.interval = interval
        self.seq = seq
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self.scheduler._discard(self)


class ManualScheduler:
    """Scheduler whose time only moves when ``advance`` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[ManualTimer] = []
        self._seq = 0

    @property
    def timers(self) -> list[ManualTimer]:
        return list(self._timers)

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ManualTimer:
        return self._add(delay, callback, None)

    def call_repeating(
        self, interval: float, callback: Callable[[], Any]
    ) -> ManualTimer:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        return self._add(interval, callback, interval)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self._timers if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self.now = timer.when
            if timer.interval is not None:
                timer.when += timer.interval
            else:
                self._discard(timer)
            timer.callback()
        self.now = target

    def _add(
        self, delay: float, callback: Callable[[], Any], interval: float | None
    ) -> ManualTimer:
        self._seq += 1
        timer = ManualTimer(self, self.now + delay, callback, interval, self._seq)
        self._timers.append(timer)
        return timer

    def _discard(self, timer: ManualTimer) -> None:
        if timer in self._timers:
            self._timers.remove(timer)


# -- Fake transport ------------------------------------------------------------


class FakeTransport(Transport):
    """In-memory transport; the test plays the server."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.callbacks: TransportCallbacks | None = None
        self.sent: list[bytes] = []
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def bind(self, callbacks: TransportCallbacks) -> None:
        self.callbacks = callbacks

    def unbind(self) -> None:
        self.callbacks = None

    def send(self, data: bytes) -> None:
        self.sent.append(data)

    def close(self) -> None:
        self.close_calls += 1

    # Server side

    def open(self) -> None:
        if self.callbacks is not None:
            self.callbacks.on_open()

    def receive(self, *frames: bytes) -> None:
        if self.callbacks is not None:
            self.callbacks.on_message(b"".join(frames))

    def fail(self, reason: str = "connection reset") -> None:
        if self.callbacks is not None:
            self.callbacks.on_error(reason)

    def drop(self, reason: str = "1006") -> None:
        if self.callbacks is not None:
            self.callbacks.on_close(reason)

    # Inspection

    def packets(self) -> list[Packet]:
        return PacketDecoder().feed(b"".join(self.sent))

    def packet_types(self) -> list[PacketType]:
        return [p.type for p in self.packets()]

    def messages(self) -> list[Message]:
        """Decoded DATA messages sent by the client, bodies parsed as JSON."""
        result = []
        for packet in self.packets():
            if packet.type is not PacketType.DATA:
                continue
            msg = _decode_data(packet.body)
            result.append(msg)
        return result

    def clear(self) -> None:
        self.sent.clear()


def _decode_data(body: bytes) -> Message:
    msg = decode_message(body)
    parsed = orjson.loads(msg.body) if msg.body else None
    return Message(type=msg.type, id=msg.id, route=msg.route, body=parsed)


class FakeTransportFactory:
    """Transport factory that records every transport it opened."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.fail_next = 0

    def __call__(self, url: str) -> FakeTransport:
        if self.fail_next:
            self.fail_next -= 1
            raise OSError("cannot open transport")
        transport = FakeTransport(url)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


# -- Server frames -------------------------------------------------------------


def handshake_frame(sid: str = "sid-1", hb: Any = 0, code: int = 200) -> bytes:
    record: dict[str, Any] = {"code": code, "sid": sid}
    if hb is not None:
        record["hb"] = hb
    return encode_packet(PacketType.HANDSHAKE, orjson.dumps(record))


def response_frame(request_id: int, body: Any) -> bytes:
    msg = Message(MessageType.RESPONSE, id=request_id, body=orjson.dumps(body))
    return encode_packet(PacketType.DATA, encode_message(msg))


def server_response_frame(request_id: int, body: Any) -> bytes:
    """Response the way the server writes it: request type, empty route."""
    msg = Message(MessageType.REQUEST, id=request_id, route="", body=orjson.dumps(body))
    return encode_packet(PacketType.DATA, encode_message(msg))


def push_frame(route: str, body: Any) -> bytes:
    msg = Message(MessageType.PUSH, route=route, body=orjson.dumps(body))
    return encode_packet(PacketType.DATA, encode_message(msg))


def heartbeat_frame() -> bytes:
    return encode_packet(PacketType.HEARTBEAT)


def kick_frame() -> bytes:
    return encode_packet(PacketType.KICK)


# -- Fixtures ------------------------------------------------------------------


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def factory():
    return FakeTransportFactory()


@pytest.fixture
def make_session(scheduler, factory):
    """Build a session wired to the fake transport and virtual clock."""

    def _make(on_ready=None, **options) -> KitSession:
        config = SessionConfig(url=TEST_URL, **options)
        return KitSession(
            config, on_ready, transport_factory=factory, scheduler=scheduler
        )

    return _make


@pytest.fixture
def open_session(make_session, factory):
    """Build a session and complete the handshake (sid ``sid-1``, no heartbeat)."""

    def _open(hb: Any = 0, sid: str = "sid-1", **options) -> KitSession:
        session = make_session(**options)
        factory.last.open()
        factory.last.receive(handshake_frame(sid=sid, hb=hb))
        factory.last.clear()
        return session

    return _open
