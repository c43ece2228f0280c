# =============================================================================
# KIT Python Client -- Event Emitter
# =============================================================================
#
# Minimal publish/subscribe used for server pushes and session lifecycle
# notifications.  Handlers are plain callables; coroutine results are
# scheduled on the running loop.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Callable

from ._logging import logger

Handler = Callable[..., Any]


class _OnceHandler:
    """Wraps a handler so it unsubscribes itself before its first call."""

    __slots__ = ("emitter", "event", "fn")

    def __init__(self, emitter: EventEmitter, event: str, fn: Handler) -> None:
        self.emitter = emitter
        self.event = event
        self.fn = fn

    def __call__(self, *args: Any) -> Any:
        self.emitter.unsubscribe(self.event, self)
        return self.fn(*args)


class EventEmitter:
    """Mapping of event name to an ordered list of handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, event: str, fn: Handler) -> Handler:
        self._handlers[event].append(fn)
        return fn

    def subscribe_once(self, event: str, fn: Handler) -> Handler:
        """Register *fn* for the next delivery of *event* only."""
        self._handlers[event].append(_OnceHandler(self, event, fn))
        return fn

    def unsubscribe(self, event: str | None = None, fn: Handler | None = None) -> None:
        """Remove handlers.

        With no arguments every handler is dropped; with only *event* all
        handlers of that event; otherwise the first registration of *fn*
        (including one made through :meth:`subscribe_once`).
        """
        if event is None:
            self._handlers.clear()
            return
        if fn is None:
            self._handlers.pop(event, None)
            return

        handlers = self._handlers.get(event)
        if not handlers:
            return
        for i, h in enumerate(handlers):
            if h is fn or (isinstance(h, _OnceHandler) and h.fn is fn):
                del handlers[i]
                break
        if not handlers:
            del self._handlers[event]

    def on(self, event: str) -> Callable[[Handler], Handler]:
        """Decorator form of :meth:`subscribe`.

        Example::

            @session.on("chat")
            def handle(body):
                print(body)
        """

        def decorator(fn: Handler) -> Handler:
            return self.subscribe(event, fn)

        return decorator

    def publish(self, event: str, *args: Any) -> int:
        """Deliver *args* to every handler of *event*.

        Handler exceptions are logged and do not stop delivery to the
        remaining handlers.  Returns the number of handlers invoked.
        """
        handlers = self._handlers.get(event)
        if not handlers:
            return 0

        snapshot = list(handlers)
        for handler in snapshot:
            try:
                result = handler(*args)
                if asyncio.iscoroutine(result):
                    self._fire_task(result)
            except Exception:
                logger.exception("Handler error for '%s'", event)
        return len(snapshot)

    def listeners(self, event: str) -> list[Handler]:
        return list(self._handlers.get(event, ()))

    def has_listeners(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
