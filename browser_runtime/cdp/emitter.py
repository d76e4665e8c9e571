"""Minimal event emitter shared by sessions, contexts and realms.

Handlers are called synchronously in registration order. A handler that returns
an awaitable is scheduled as a task on the running loop; its failure is logged,
never re-raised into `emit()`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

_LOGGER = logging.getLogger("browser_runtime.cdp.emitter")

Handler = Callable[[Any], Any]


class EventEmitter:
    def __init__(self) -> None:
        self._handlers: dict[str, list[tuple[Handler, bool]]] = {}
        self._tasks: set[asyncio.Future] = set()

    def on(self, event: str, handler: Handler) -> Handler:
        self._handlers.setdefault(event, []).append((handler, False))
        return handler

    def once(self, event: str, handler: Handler) -> Handler:
        self._handlers.setdefault(event, []).append((handler, True))
        return handler

    def off(self, event: str, handler: Handler) -> None:
        entries = self._handlers.get(event)
        if not entries:
            return
        for i, (fn, _once) in enumerate(entries):
            if fn == handler:
                del entries[i]
                break
        if not entries:
            self._handlers.pop(event, None)

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def emit(self, event: str, payload: Any = None) -> bool:
        entries = self._handlers.get(event)
        if not entries:
            return False
        snapshot = list(entries)
        for handler, once in snapshot:
            if once:
                self.off(event, handler)
            try:
                result = handler(payload)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.debug("handler for %s failed: %s", event, exc, exc_info=True)
                continue
            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result), event)
        return True

    def _track(self, task: asyncio.Future, event: str) -> None:
        self._tasks.add(task)

        def _done(fut: asyncio.Future) -> None:
            self._tasks.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                _LOGGER.debug("async handler for %s failed: %s", event, exc, exc_info=exc)

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait until every handler task scheduled so far (and any they spawn) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["EventEmitter", "Handler"]
