# =============================================================================
# KIT Python Client -- Session
# =============================================================================
#
# One logical session over a reconnectable transport:
#
#   CONNECTING --handshake--> OPEN --disconnect / kick--> CLOSING --grace--> CLOSED
#        ^                     |
#        +--transport failure--+   (bounded, fixed-delay reconnect)
#
# Everything runs on one thread: public calls, transport callbacks and
# timer firings never overlap, so there is no locking.
# =============================================================================

from __future__ import annotations

import asyncio
import functools
import numbers
from typing import Any, Callable

from ._logging import logger, set_debug
from .constants import HANDSHAKE_OK
from .emitter import EventEmitter, Handler
from .errors import KitConnectionError, KitProtocolError, KitTimeoutError
from .heartbeat import Heartbeat
from .offline_queue import OutboundBuffer
from .pending import PendingRequests, ResponseCallback, next_request_id
from .protocol import MessageCodec, PacketDecoder
from .reconnect import ReconnectPolicy
from .scheduler import AsyncioScheduler, Scheduler, TimerHandle
from .transport import Transport, TransportCallbacks, TransportFactory, WebSocketTransport
from .types import (
    EVENT_CLOSE,
    EVENT_READY,
    EVENT_RECONNECTED,
    EVENT_RECONNECTING,
    EVENT_TRANSPORT_CLOSE,
    EVENT_TRANSPORT_ERROR,
    Packet,
    PacketType,
    SessionConfig,
    SessionState,
)

_FINISHED = (SessionState.CLOSING, SessionState.CLOSED)


class KitSession:
    """Client session: handshake, request/response, pushes, reconnection.

    The session starts connecting as soon as it is constructed.  Messages
    sent before the handshake completes, or while a dropped transport is
    being replaced, are buffered and flushed in order once the session is
    open again.

    Args:
        config: A :class:`SessionConfig` or just the connection URL.
        on_ready: Called once, when the first handshake completes.
        transport_factory: ``url -> Transport``.  Defaults to
            :class:`~kit_client.transport.WebSocketTransport`.
        scheduler: Timer source.  Defaults to the running asyncio loop.
        codec: Wire codec.  Defaults to :class:`MessageCodec` with the
            configured serializer.

    Raises:
        KitConfigError: If the configuration is invalid.  Nothing has been
            opened at that point.

    Example::

        session = KitSession("ws://localhost:12345/websocket")
        await session.wait_ready()

        @session.on("chat")
        def on_chat(body):
            print(body["msg"])

        session.request("m.Echo", {"msg": "hi"}, print)
    """

    def __init__(
        self,
        config: SessionConfig | str,
        on_ready: Callable[[], Any] | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        scheduler: Scheduler | None = None,
        codec: MessageCodec | None = None,
    ) -> None:
        if isinstance(config, str):
            config = SessionConfig(url=config)
        config.validate()
        self._config = config
        if config.log:
            set_debug(True)

        self._codec = codec or MessageCodec(config.serializer)
        self._scheduler = scheduler or AsyncioScheduler()
        self._transport_factory = transport_factory or functools.partial(
            WebSocketTransport, open_timeout=config.open_timeout
        )

        self._events = EventEmitter()
        self._pending = PendingRequests()
        self._outbound = OutboundBuffer()
        self._heartbeat = Heartbeat(self._scheduler, self._send_heartbeat)
        self._reconnect = ReconnectPolicy(
            self._scheduler,
            max_attempts=config.reconnect_max_attempts,
            delay=config.reconnect_delay,
        )

        # State
        self._state = SessionState.CONNECTING
        self._session_id = ""
        self._transport: Transport | None = None
        self._decoder: PacketDecoder | None = None
        self._close_timer: TimerHandle | None = None
        self._ready_fired = False
        # Internal waiters never go through the emitter, where push routes
        # share the event namespace.
        self._ready_waiters: list[asyncio.Future[None]] = []
        self._call_waiters: set[asyncio.Future[Any]] = set()
        self._closed_waiters: list[asyncio.Future[None]] = []

        self._packet_handlers: dict[PacketType, Callable[[bytes], None]] = {
            PacketType.HANDSHAKE: self._on_handshake,
            PacketType.HEARTBEAT: self._on_heartbeat,
            PacketType.DATA: self._on_data,
            PacketType.KICK: self._on_kick,
        }

        if on_ready is not None:
            self._events.subscribe_once(EVENT_READY, on_ready)

        self._open_transport()

    def __repr__(self) -> str:
        sid = self._session_id[:8] or "-"
        return f"KitSession({self._config.url}, state={self._state.value}, sid={sid})"

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> KitSession:
        await self.wait_ready()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.disconnect()
        await self.wait_closed()

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def heartbeat_interval(self) -> float:
        return self._heartbeat.interval

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect.attempts

    @property
    def outbound_size(self) -> int:
        return len(self._outbound)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def events(self) -> EventEmitter:
        return self._events

    # -- Subscriptions --------------------------------------------------------

    def subscribe(self, event: str, fn: Handler) -> Handler:
        """Register *fn* for a push route or a session event (``"close"``, ...)."""
        return self._events.subscribe(event, fn)

    def subscribe_once(self, event: str, fn: Handler) -> Handler:
        return self._events.subscribe_once(event, fn)

    def unsubscribe(self, event: str | None = None, fn: Handler | None = None) -> None:
        self._events.unsubscribe(event, fn)

    def on(self, event: str) -> Callable[[Handler], Handler]:
        return self._events.on(event)

    # -- Public API -----------------------------------------------------------

    def notify(self, route: str, body: Any = None) -> None:
        """Fire-and-forget message.  Dropped once the session is closing."""
        if self._state in _FINISHED:
            logger.debug("notify(%s) dropped, session is %s", route, self._state.value)
            return
        packet = self._codec.encode_data(0, route, {} if body is None else body)
        self._send_or_buffer(packet)

    def request(
        self,
        route: str | None,
        body: Any = None,
        callback: ResponseCallback | None = None,
    ) -> int | None:
        """Send a request; *callback* receives the decoded response body.

        ``request(route, callback)`` is accepted as well.  When *route* is
        empty it is taken from ``body["route"]``; with no route at all the
        call does nothing.  There is no timeout: if the server never
        answers, the callback never runs.

        Returns:
            The request id, or None if nothing was sent.
        """
        if callable(body) and callback is None:
            body, callback = None, body
        if body is None:
            body = {}
        if not route and isinstance(body, dict):
            route = body.get("route")
        if not route:
            logger.debug("request() without a route ignored")
            return None
        if self._state in _FINISHED:
            logger.debug("request(%s) dropped, session is %s", route, self._state.value)
            return None

        request_id = next_request_id()
        packet = self._codec.encode_data(request_id, route, body)
        if callback is not None:
            self._pending.add(request_id, callback)
        self._send_or_buffer(packet)
        return request_id

    async def call(self, route: str, body: Any = None) -> Any:
        """Awaitable :meth:`request`.

        Raises:
            KitConnectionError: If the request could not be sent or the
                session closed before the response arrived.
        """
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[Any] = loop.create_future()

        def resolve(result: Any) -> None:
            if not fut.done():
                fut.set_result(result)

        request_id = self.request(route, body, resolve)
        if request_id is None:
            raise KitConnectionError(
                f"cannot send {route!r}, session is {self._state.value}"
            )

        self._call_waiters.add(fut)
        try:
            return await fut
        except asyncio.CancelledError:
            self._pending.pop(request_id)
            raise
        finally:
            self._call_waiters.discard(fut)

    def disconnect(self) -> None:
        """Close the session.  Idempotent; the session cannot be reopened."""
        if self._state in _FINISHED:
            return

        logger.debug("Disconnecting %r", self)
        self._set_state(SessionState.CLOSING)
        self._reconnect.cancel()
        self._heartbeat.stop()

        self._events.publish(EVENT_CLOSE)
        self._fail_waiters()

        transport = self._transport
        if transport is not None:
            transport.send(self._codec.encode_packet(PacketType.KICK))
            self._close_timer = self._scheduler.call_later(
                self._config.close_grace_delay, self._close
            )
        else:
            self._close()

    async def wait_ready(self, timeout: float | None = None) -> None:
        """Wait for the first handshake to complete.

        Raises:
            KitConnectionError: If the session closes first.
            KitTimeoutError: If *timeout* expires.
        """
        if self._ready_fired and self._state not in _FINISHED:
            return
        if self._state in _FINISHED:
            raise KitConnectionError(f"session is {self._state.value}")

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._ready_waiters.append(fut)
        try:
            await asyncio.wait_for(fut, timeout)
        except TimeoutError:
            raise KitTimeoutError(f"session not ready after {timeout}s") from None
        finally:
            if fut in self._ready_waiters:
                self._ready_waiters.remove(fut)

    async def wait_closed(self) -> None:
        """Wait until the session reaches CLOSED."""
        if self._state is SessionState.CLOSED:
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._closed_waiters.append(fut)
        await fut

    def get_stats(self) -> dict[str, Any]:
        return {
            "url": self._config.url,
            "state": self._state.value,
            "session_id": self._session_id,
            "heartbeat_interval": self._heartbeat.interval,
            "heartbeat_active": self._heartbeat.active,
            "reconnect_attempts": self._reconnect.attempts,
            "reconnect_max_attempts": self._reconnect.max_attempts,
            "reconnect_pending": self._reconnect.pending,
            "pending_requests": len(self._pending),
            "outbound": self._outbound.get_stats(),
        }

    # -- Internal: connect ----------------------------------------------------

    def _connect(self) -> None:
        self._set_state(SessionState.CONNECTING)
        logger.debug("Opening transport to %s", self._config.url)

        transport = self._transport_factory(self._config.url)
        self._transport = transport
        self._decoder = self._codec.new_decoder()
        transport.bind(
            TransportCallbacks(
                on_open=functools.partial(self._on_transport_open, transport),
                on_message=functools.partial(self._on_transport_message, transport),
                on_error=functools.partial(self._on_transport_error, transport),
                on_close=functools.partial(self._on_transport_close, transport),
            )
        )

    def _reconnect_now(self) -> None:
        if self._state is not SessionState.CONNECTING:
            return
        logger.info(
            "Reconnect attempt %d/%d",
            self._reconnect.attempts,
            self._reconnect.max_attempts,
        )
        self._open_transport()

    def _open_transport(self) -> None:
        try:
            self._connect()
        except Exception as exc:
            logger.warning("Could not open transport: %s", exc)
            self._teardown_transport()
            self._recover()

    # -- Internal: transport events -------------------------------------------

    def _on_transport_open(self, transport: Transport) -> None:
        if transport is not self._transport or self._state is not SessionState.CONNECTING:
            return
        logger.debug("Transport open, handshaking (sid=%r)", self._session_id)
        transport.send(self._codec.encode_handshake(self._session_id))

    def _on_transport_message(self, transport: Transport, data: bytes) -> None:
        if transport is not self._transport or self._decoder is None:
            return
        try:
            packets = self._decoder.feed(data)
        except KitProtocolError as exc:
            logger.error("Undecodable stream from server: %s", exc)
            self._on_transport_error(transport, f"protocol error: {exc}")
            return

        for packet in packets:
            # A handler may have torn the transport down or started closing.
            if transport is not self._transport or self._state in _FINISHED:
                break
            self._on_packet(packet)

    def _on_transport_error(self, transport: Transport, reason: str) -> None:
        if transport is not self._transport:
            return
        if self._state is SessionState.CLOSING:
            self._close()
            return
        logger.warning("Transport error: %s", reason)
        self._teardown_transport()
        self._events.publish(EVENT_TRANSPORT_ERROR, reason)
        self._recover()

    def _on_transport_close(self, transport: Transport, reason: str) -> None:
        if transport is not self._transport:
            return
        if self._state is SessionState.CLOSING:
            self._close()
            return
        logger.info("Transport closed: %s", reason or "no reason")
        self._teardown_transport()
        self._events.publish(EVENT_TRANSPORT_CLOSE, reason)
        self._recover()

    def _recover(self) -> None:
        """Schedule the next reconnect attempt, or give up."""
        if self._state in _FINISHED:
            return
        self._set_state(SessionState.CONNECTING)

        if self._reconnect.schedule(self._reconnect_now):
            self._events.publish(
                EVENT_RECONNECTING, self._reconnect.attempts + 1, self._reconnect.delay
            )
            return

        logger.error(
            "Reconnect failed after %d attempts, closing session",
            self._reconnect.attempts,
        )
        self.disconnect()

    # -- Internal: packet handlers --------------------------------------------

    def _on_packet(self, packet: Packet) -> None:
        handler = self._packet_handlers.get(packet.type)
        if handler is None:
            logger.warning("Unexpected %s packet from server", packet.type.name)
            return
        handler(packet.body)

    def _on_handshake(self, body: bytes) -> None:
        if self._state is not SessionState.CONNECTING:
            logger.warning("Ignoring handshake while %s", self._state.value)
            return

        try:
            info = self._codec.decode_handshake(body)
        except KitProtocolError as exc:
            logger.warning("Malformed handshake from server: %s", exc)
            info = {}

        code = info.get("code")
        if code is not None and code != HANDSHAKE_OK:
            logger.warning("Handshake returned code %s", code)

        sid = info.get("sid")
        if isinstance(sid, str) and sid:
            self._session_id = sid
        else:
            logger.warning("Handshake carries no session id")

        self._set_state(SessionState.OPEN)
        self._heartbeat.start(_heartbeat_seconds(info.get("hb")))
        self._send_now(self._codec.encode_packet(PacketType.HANDSHAKE_ACK))

        for packet in self._outbound.drain():
            self._send_now(packet)

        reconnected = self._ready_fired
        self._reconnect.reset()
        if reconnected:
            logger.info("Reconnected, session %s resumed", self._session_id)
            self._events.publish(EVENT_RECONNECTED)
        else:
            self._ready_fired = True
            waiters, self._ready_waiters = self._ready_waiters, []
            for fut in waiters:
                if not fut.done():
                    fut.set_result(None)
            logger.info("Session %s ready", self._session_id)
            self._events.publish(EVENT_READY)

    def _on_heartbeat(self, body: bytes) -> None:
        pass

    def _on_data(self, body: bytes) -> None:
        try:
            msg = self._codec.decode_data(body)
        except KitProtocolError as exc:
            logger.warning("Dropping undecodable data frame: %s", exc)
            return

        if not msg.id:
            self._events.publish(msg.route, msg.body)
            return

        callback = self._pending.pop(msg.id)
        if callback is None:
            logger.debug("No pending request for response %d, dropped", msg.id)
            return
        try:
            callback(msg.body)
        except Exception:
            logger.exception("Response callback for request %d failed", msg.id)

    def _on_kick(self, body: bytes) -> None:
        logger.info("Session closed by server")
        self.disconnect()

    # -- Internal: send -------------------------------------------------------

    def _send_or_buffer(self, packet: bytes) -> None:
        if self._state is SessionState.OPEN:
            self._send_now(packet)
        else:
            self._outbound.enqueue(packet)

    def _send_now(self, packet: bytes) -> None:
        if self._transport is not None:
            self._transport.send(packet)

    def _send_heartbeat(self) -> None:
        self._send_now(self._codec.encode_packet(PacketType.HEARTBEAT))

    # -- Internal: teardown ---------------------------------------------------

    def _teardown_transport(self) -> None:
        """Release the current transport without changing session state."""
        self._heartbeat.stop()
        transport = self._transport
        if transport is None:
            return
        self._transport = None
        self._decoder = None
        transport.unbind()
        try:
            transport.close()
        except Exception as exc:
            logger.debug("Error closing transport: %s", exc)

    def _fail_waiters(self) -> None:
        """Fail every pending ``call`` and ``wait_ready`` awaiter."""
        for fut in self._call_waiters:
            if not fut.done():
                fut.set_exception(
                    KitConnectionError("session closed before the response arrived")
                )
        for fut in self._ready_waiters:
            if not fut.done():
                fut.set_exception(
                    KitConnectionError("session closed before it became ready")
                )
        self._ready_waiters = []

    def _close(self) -> None:
        if self._state is SessionState.CLOSED:
            return
        self._set_state(SessionState.CLOSED)

        if self._close_timer is not None:
            self._close_timer.cancel()
            self._close_timer = None
        self._reconnect.cancel()
        self._teardown_transport()

        dropped = self._pending.clear()
        if dropped:
            logger.debug("%d requests still pending at close, dropped", dropped)
        self._outbound.clear()

        waiters, self._closed_waiters = self._closed_waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)
        logger.info("Session closed")

    # -- State management -----------------------------------------------------

    def _set_state(self, new_state: SessionState) -> None:
        if new_state is self._state:
            return
        old = self._state
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)


def _heartbeat_seconds(value: Any) -> float:
    """Heartbeat interval from the handshake; 0 (disabled) when unusable."""
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or value < 0:
        logger.warning("Ignoring invalid heartbeat interval %r", value)
        return 0.0
    return float(value)
