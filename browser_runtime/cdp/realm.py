from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from .codec import JsFunction
from .emitter import EventEmitter
from .errors import ContextDestroyedError
from .handle import ElementHandle, JSHandle
from .session_cdp import CdpSessionLike

if TYPE_CHECKING:
    from .execution_context import ExecutionContext


class Realm:
    """Owner of zero-or-one execution context (a frame world or a worker).

    Forwards `consoleapicalled` and `bindingcalled` from its current context on
    `self.emitter`, and produces handles for results returned by reference.
    """

    def __init__(self, session: CdpSessionLike, environment: Any = None) -> None:
        self.session = session
        self.environment = environment
        self.emitter = EventEmitter()
        self._context: ExecutionContext | None = None
        self._context_ready: asyncio.Event | None = None
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def context(self) -> ExecutionContext | None:
        return self._context

    def set_context(self, context: ExecutionContext) -> None:
        previous = self._context
        if previous is not None and previous is not context:
            previous.dispose()
        self._context = context
        context.on("consoleapicalled", lambda event: self.emitter.emit("consoleapicalled", event))
        context.on("bindingcalled", lambda event: self.emitter.emit("bindingcalled", event))
        context.once("disposed", lambda _: self._on_context_disposed(context))
        self._ready_event().set()
        self.emitter.emit("context", context)

    def clear_context(self) -> None:
        self._context = None
        self._ready_event().clear()

    async def execution_context(self) -> ExecutionContext:
        if self._disposed:
            raise ContextDestroyedError()
        while self._context is None:
            await self._ready_event().wait()
            if self._disposed:
                raise ContextDestroyedError()
        return self._context

    def create_handle(self, remote_object: dict[str, Any]) -> JSHandle:
        if (remote_object or {}).get("subtype") == "node":
            return ElementHandle(self, remote_object)
        return JSHandle(self, remote_object)

    async def evaluate(self, page_function: str | JsFunction, *args: Any) -> Any:
        context = await self.execution_context()
        return await context.evaluate(page_function, *args)

    async def evaluate_handle(self, page_function: str | JsFunction, *args: Any) -> JSHandle:
        context = await self.execution_context()
        return await context.evaluate_handle(page_function, *args)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        context = self._context
        if context is not None:
            context.dispose()
        self._ready_event().set()
        self.emitter.emit("disposed")

    def _on_context_disposed(self, context: ExecutionContext) -> None:
        if self._context is context:
            self.clear_context()

    def _ready_event(self) -> asyncio.Event:
        if self._context_ready is None:
            self._context_ready = asyncio.Event()
        return self._context_ready


__all__ = ["Realm"]
