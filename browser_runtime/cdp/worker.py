from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .acquisition import ContextKind
from .codec import JsFunction
from .config import RuntimeConfig
from .errors import ProtocolError, TargetCloseError
from .execution_context import ExecutionContext
from .handle import JSHandle
from .realm import Realm
from .session_cdp import EXCEPTION_THROWN, EXECUTION_CONTEXT_CREATED, SESSION_DISCONNECTED, CdpSessionLike

_LOGGER = logging.getLogger("browser_runtime.cdp.worker")

SERVICE_WORKER = "service_worker"
SHARED_WORKER = "shared_worker"

ConsoleCallback = Callable[[str, list[JSHandle], Any], Any]
ExceptionCallback = Callable[[dict[str, Any]], Any]


class WebWorker:
    """Wires one worker target session to a realm with a single execution context.

    With acquisition disabled the context comes from the first
    `Runtime.executionContextCreated`; otherwise a context carrying the worker
    sentinel is installed immediately and acquires its id on first use.
    """

    def __init__(
        self,
        session: CdpSessionLike,
        url: str,
        target_id: str,
        target_type: str,
        console_api_called: ConsoleCallback,
        exception_thrown: ExceptionCallback,
        *,
        config: RuntimeConfig | None = None,
    ) -> None:
        self.url = url
        self._session = session
        self._target_id = target_id
        self._target_type = target_type
        self._config = config or RuntimeConfig.from_env()
        self._console_api_called = console_api_called
        self._realm = Realm(session, environment=self)
        self._enable_task: asyncio.Future | None = None

        self._realm.emitter.on("consoleapicalled", self._on_console_api)
        session.on(EXCEPTION_THROWN, exception_thrown)
        session.once(SESSION_DISCONNECTED, self._on_disconnected)

        if self._config.acquisition_enabled:
            if self._config.debug:
                _LOGGER.info("worker %s (%s): installing unacquired context", target_id, target_type)
            self._install_context({"id": int(ContextKind.WORKER)})
        else:
            session.once(EXECUTION_CONTEXT_CREATED, self._on_context_created)
            self._enable_task = asyncio.ensure_future(self._enable_runtime())

    @property
    def session(self) -> CdpSessionLike:
        return self._session

    @property
    def target_id(self) -> str:
        return self._target_id

    @property
    def target_type(self) -> str:
        return self._target_type

    def main_realm(self) -> Realm:
        return self._realm

    async def evaluate(self, page_function: str | JsFunction, *args: Any) -> Any:
        return await self._realm.evaluate(page_function, *args)

    async def evaluate_handle(self, page_function: str | JsFunction, *args: Any) -> JSHandle:
        return await self._realm.evaluate_handle(page_function, *args)

    async def close(self) -> None:
        if self._target_type in (SERVICE_WORKER, SHARED_WORKER):
            # These workers do not stop from inside; close the target and detach.
            connection = self._session.connection
            if connection is None:
                raise TargetCloseError("Worker session is already detached")
            await connection.send("Target.closeTarget", {"targetId": self._target_id})
            await connection.send("Target.detachFromTarget", {"sessionId": self._session.session_id})
            return
        await self.evaluate(JsFunction("() => { self.close(); }"))

    def _install_context(self, payload: dict[str, Any]) -> None:
        self._realm.set_context(ExecutionContext(self._session, payload, self._realm, config=self._config))

    def _on_context_created(self, event: dict[str, Any]) -> None:
        context = (event or {}).get("context") or {}
        self._install_context(context)

    async def _enable_runtime(self) -> None:
        # The target may close before all execution contexts are reported.
        try:
            await self._session.send("Runtime.enable")
        except ProtocolError as exc:
            _LOGGER.debug("Runtime.enable failed for worker %s: %s", self._target_id, exc)

    def _on_console_api(self, event: dict[str, Any]) -> Any:
        # An awaitable result is scheduled by the realm emitter.
        try:
            args = [self._realm.create_handle(obj) for obj in event.get("args") or []]
            return self._console_api_called(str(event.get("type") or "log"), args, event.get("stackTrace"))
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("console callback failed: %s", exc)
            return None

    def _on_disconnected(self, _event: Any) -> None:
        self._realm.dispose()

    def __repr__(self) -> str:
        return f"WebWorker({self.url!r}, type={self._target_type!r})"


__all__ = ["SERVICE_WORKER", "SHARED_WORKER", "WebWorker"]
