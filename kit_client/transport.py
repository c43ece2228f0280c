# =============================================================================
# KIT Python Client -- Transport Adapters
# =============================================================================
#
# A transport is a socket-like byte pipe: it opens itself on construction,
# accepts ``send(bytes)`` / ``close()``, and reports open / message / error /
# close through one bound set of callbacks.  The session is agnostic to what
# is underneath; WebSocketTransport is the stock implementation.
# =============================================================================

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import websockets
import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from ._logging import logger
from .constants import CONNECTION_TIMEOUT, WS_CLOSE_NORMAL


@dataclass(frozen=True, slots=True)
class TransportCallbacks:
    """Event sinks a transport reports to."""

    on_open: Callable[[], Any]
    on_message: Callable[[bytes], Any]
    on_error: Callable[[str], Any]
    on_close: Callable[[str], Any]


class Transport(ABC):
    """Socket-like transport contract consumed by the session."""

    @abstractmethod
    def bind(self, callbacks: TransportCallbacks) -> None:
        """Attach the callback set, replacing any previous one."""

    @abstractmethod
    def unbind(self) -> None:
        """Detach callbacks; no further events are delivered."""

    @abstractmethod
    def send(self, data: bytes) -> None:
        """Queue *data* for transmission.  Never blocks."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection and release its resources."""


TransportFactory = Callable[[str], Transport]


class WebSocketTransport(Transport):
    """Binary WebSocket transport on top of ``websockets``.

    Must be created from inside a running event loop.  Opening starts
    immediately; ``send`` calls made before the socket is open are queued
    and written in order once it is.

    Args:
        url: WebSocket URL, e.g. ``"ws://localhost:12345/websocket"``.
        open_timeout: Seconds allowed for the opening handshake.
        extra_headers: Additional HTTP headers for the upgrade request.
    """

    def __init__(
        self,
        url: str,
        *,
        open_timeout: float = CONNECTION_TIMEOUT,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        self._url = url
        self._open_timeout = open_timeout
        self._extra_headers = extra_headers or {}

        self._callbacks: TransportCallbacks | None = None
        self._ws: websockets.asyncio.client.ClientConnection | None = None
        self._outgoing: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closing = False

        self._writer_task: asyncio.Task[None] | None = None
        self._task = asyncio.get_running_loop().create_task(self._run())

    # -- Properties -----------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing

    # -- Transport contract ---------------------------------------------------

    def bind(self, callbacks: TransportCallbacks) -> None:
        self._callbacks = callbacks

    def unbind(self) -> None:
        self._callbacks = None

    def send(self, data: bytes) -> None:
        if self._closing:
            logger.debug("Send on closing transport dropped (%d bytes)", len(data))
            return
        self._outgoing.put_nowait(data)

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._callbacks = None
        if self._ws is None:
            # Still opening; abandon the attempt.
            self._task.cancel()
        else:
            # Writer flushes what is queued, then closes the socket.
            self._outgoing.put_nowait(None)

    async def wait_closed(self) -> None:
        """Wait until the underlying connection task has finished."""
        await asyncio.gather(self._task, return_exceptions=True)

    # -- Internal: connection task --------------------------------------------

    async def _run(self) -> None:
        try:
            ws = await websockets.asyncio.client.connect(
                self._url,
                additional_headers=self._extra_headers,
                max_size=2**20,  # 1 MB, a read may carry several packets
                open_timeout=self._open_timeout,
            )
        except Exception as exc:
            logger.debug("Failed to connect to %s: %s", self._url, exc)
            self._emit("on_error", f"failed to connect: {exc}")
            return

        self._ws = ws
        self._writer_task = asyncio.create_task(self._write_loop(ws))
        if not self._closing:
            self._emit("on_open")

        try:
            async for message in ws:
                if isinstance(message, str):
                    message = message.encode("utf-8")
                self._emit("on_message", message)
        except ConnectionClosedError as exc:
            logger.debug("WebSocket closed abnormally: %s", exc)
            self._emit("on_error", str(exc))
        except asyncio.CancelledError:
            await ws.close(WS_CLOSE_NORMAL, "Client disconnect")
            raise
        else:
            logger.debug(
                "WebSocket closed: code=%s reason=%s", ws.close_code, ws.close_reason
            )
            self._emit("on_close", f"{ws.close_code} {ws.close_reason}".strip())
        finally:
            if not self._closing and not self._writer_task.done():
                self._writer_task.cancel()

    async def _write_loop(
        self, ws: websockets.asyncio.client.ClientConnection
    ) -> None:
        while True:
            data = await self._outgoing.get()
            if data is None:
                await ws.close(WS_CLOSE_NORMAL, "Client disconnect")
                return
            try:
                await ws.send(data)
            except ConnectionClosed:
                logger.debug("Send failed: connection closed")
                return

    def _emit(self, name: str, *args: Any) -> None:
        callbacks = self._callbacks
        if callbacks is None:
            return
        try:
            getattr(callbacks, name)(*args)
        except Exception:
            logger.exception("Transport callback %s failed", name)
