"""Execution context: evaluate in one remote realm, install bindings, acquire ids.

Events emitted:
- "disposed": once, when the context is torn down.
- "consoleapicalled": `Runtime.consoleAPICalled` params for this context id.
- "bindingcalled": `Runtime.bindingCalled` params for bindings this layer does not own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .acquisition import Acquired, ContextIdState, Unacquired, acquire_context_id, state_from_id
from .binding import (
    ADD_PAGE_BINDING,
    BINDING_PREFIX,
    INTERNAL_BINDING_TYPE,
    Binding,
    BindingInstallResult,
    ForeignCall,
    QueryHandler,
    aria_bindings,
    decode_binding_payload,
)
from .codec import (
    JsFunction,
    convert_argument,
    create_evaluation_error,
    rewrite_error,
    source_url_for,
    stringify_function,
    value_from_remote_object,
    with_source_url,
)
from .config import RuntimeConfig
from .emitter import EventEmitter
from .errors import AcquisitionError, ContextDestroyedError, ProtocolError
from .handle import JSHandle
from .mutex import Mutex
from .script_injector import ScriptInjector
from .script_injector import script_injector as default_script_injector
from .session_cdp import (
    BINDING_CALLED,
    CONSOLE_API_CALLED,
    EXECUTION_CONTEXT_DESTROYED,
    EXECUTION_CONTEXTS_CLEARED,
    SESSION_DISCONNECTED,
    CdpSessionLike,
)

if TYPE_CHECKING:
    from .realm import Realm

_LOGGER = logging.getLogger("browser_runtime.cdp.execution_context")


class _HandleSlot:
    """Owns at most one pending-or-resolved handle.

    Replacing the occupant schedules its release and returns immediately.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future | None = None
        self._releases: set[asyncio.Future] = set()

    @property
    def current(self) -> asyncio.Future | None:
        return self._future

    def replace(self, future: asyncio.Future) -> None:
        previous = self._future
        self._future = future
        if previous is not None:
            previous.add_done_callback(self._release)

    def clear(self) -> None:
        self._future = None

    def _release(self, previous: asyncio.Future) -> None:
        if previous.cancelled() or previous.exception() is not None:
            return
        handle = previous.result()
        if not isinstance(handle, JSHandle):
            return
        task = asyncio.ensure_future(handle.dispose())
        self._releases.add(task)
        task.add_done_callback(self._releases.discard)


class ExecutionContext(EventEmitter):
    def __init__(
        self,
        session: CdpSessionLike,
        context_payload: dict[str, Any],
        realm: Realm,
        *,
        config: RuntimeConfig | None = None,
        script_injector: ScriptInjector | None = None,
        query_handler: QueryHandler | None = None,
    ) -> None:
        super().__init__()
        self._session = session
        self._realm = realm
        self._config = config or RuntimeConfig.from_env()
        self._state: ContextIdState = state_from_id(context_payload.get("id", -1))
        self._name: str | None = context_payload.get("name") or None
        aux = context_payload.get("auxData") or {}
        # Needed by Page.createIsolatedWorld when acquiring.
        self.frame_id: str | None = aux.get("frameId") or None

        self._injector = script_injector or default_script_injector
        self._builtin_bindings = aria_bindings(query_handler)
        self._bindings: dict[str, Binding] = {}
        self._bindings_installed = False
        self._utility = _HandleSlot()
        self._mutex = Mutex()
        self._acquiring: asyncio.Future | None = None
        self._disposed = False

        self._subscriptions: list[tuple[str, Callable[[Any], Any]]] = []
        self._subscribe(BINDING_CALLED, self._on_binding_called)
        if not self._config.acquisition_enabled:
            self._subscribe(EXECUTION_CONTEXT_DESTROYED, self._on_context_destroyed)
            self._subscribe(EXECUTION_CONTEXTS_CLEARED, self._on_contexts_cleared)
        self._subscribe(CONSOLE_API_CALLED, self._on_console_api)
        self._subscribe(SESSION_DISCONNECTED, self._on_disconnected)

    # ─────────────────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def id(self) -> int:
        return self._state.id

    @property
    def state(self) -> ContextIdState:
        return self._state

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def realm(self) -> Realm:
        return self._realm

    @property
    def session(self) -> CdpSessionLike:
        return self._session

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def bindings(self) -> Mapping[str, Binding]:
        return MappingProxyType(self._bindings)

    @property
    def bindings_installed(self) -> bool:
        return self._bindings_installed

    def clear(self, new_id: int) -> None:
        """Recycle the context in place for a new remote id, keeping listeners attached."""
        if self._disposed:
            return
        self._state = state_from_id(new_id)
        self._bindings = {}
        self._bindings_installed = False
        self._utility.clear()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        for event, handler in self._subscriptions:
            self._session.off(event, handler)
        self._subscriptions.clear()
        self.emit("disposed")
        self.remove_all_listeners()

    def _subscribe(self, event: str, handler: Callable[[Any], Any]) -> None:
        self._session.on(event, handler)
        self._subscriptions.append((event, handler))

    # ─────────────────────────────────────────────────────────────────────────
    # Context id acquisition
    # ─────────────────────────────────────────────────────────────────────────

    async def acquire_context_id(self) -> None:
        """Obtain a real context id; concurrent callers share one attempt."""
        if self._disposed:
            raise ContextDestroyedError()
        if isinstance(self._state, Acquired):
            return
        if self._acquiring is None:
            task = asyncio.ensure_future(self._acquire())
            self._acquiring = task
            task.add_done_callback(self._acquisition_done)
        await asyncio.shield(self._acquiring)

    def _acquisition_done(self, task: asyncio.Future) -> None:
        if self._acquiring is task:
            self._acquiring = None

    async def _acquire(self) -> None:
        state = self._state
        if not isinstance(state, Unacquired):
            return
        context_id = await acquire_context_id(
            self._session,
            state.kind,
            mode=self._config.acquisition_mode,
            frame_id=self.frame_id,
            name=self._name,
            debug=self._config.debug,
        )
        if self._disposed:
            raise ContextDestroyedError()
        if self._state == state:
            self._state = Acquired(context_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Evaluation
    # ─────────────────────────────────────────────────────────────────────────

    async def evaluate(self, page_function: str | JsFunction, *args: Any) -> Any:
        """Evaluate and return the result by value.

        A string is evaluated as an expression (extra args are ignored); a
        JsFunction is called with `args` encoded by the value codec::

            await context.evaluate("1 + 2")  # 3
            await context.evaluate(JsFunction("(a, b) => a * b"), 6, 7)  # 42
        """
        return await self._evaluate(True, page_function, args)

    async def evaluate_handle(self, page_function: str | JsFunction, *args: Any) -> JSHandle:
        """Like `evaluate`, but return a handle to the remote result."""
        return await self._evaluate(False, page_function, args)

    async def _evaluate(
        self,
        return_by_value: bool,
        page_function: str | JsFunction,
        args: tuple[Any, ...],
        *,
        retried: bool = False,
    ) -> Any:
        if self._disposed:
            raise ContextDestroyedError()

        state = self._state
        if isinstance(state, Unacquired):
            if retried:
                raise AcquisitionError(f"Execution context has no id after acquisition ({state.kind.name})")
            await self.acquire_context_id()
            return await self._evaluate(return_by_value, page_function, args, retried=True)

        source_url = source_url_for(page_function)
        if isinstance(page_function, str):
            method = "Runtime.evaluate"
            params: dict[str, Any] = {
                "expression": with_source_url(page_function, source_url),
                "contextId": state.context_id,
                "returnByValue": return_by_value,
                "awaitPromise": True,
                "userGesture": True,
            }
        elif isinstance(page_function, JsFunction):
            arguments = [await convert_argument(self, arg) for arg in args]
            method = "Runtime.callFunctionOn"
            params = {
                "functionDeclaration": with_source_url(stringify_function(page_function), source_url),
                "executionContextId": state.context_id,
                "arguments": arguments,
                "returnByValue": return_by_value,
                "awaitPromise": True,
                "userGesture": True,
            }
        else:
            raise TypeError(f"Expected a JavaScript expression or JsFunction, got {type(page_function).__name__}")

        try:
            response = await self._session.send(method, params)
        except ProtocolError as exc:
            if self._disposed:
                raise ContextDestroyedError() from exc
            response = rewrite_error(exc)
        if self._disposed:
            raise ContextDestroyedError()

        details = response.get("exceptionDetails")
        if details:
            raise create_evaluation_error(details)

        remote_object = response.get("result") or {"type": "undefined"}
        if return_by_value:
            return value_from_remote_object(remote_object)
        return self._realm.create_handle(remote_object)

    # ─────────────────────────────────────────────────────────────────────────
    # Bindings
    # ─────────────────────────────────────────────────────────────────────────

    async def add_binding(self, binding: Binding) -> None:
        """Install `binding` in this context; failures are logged, never raised."""
        result = await self._install_binding(binding)
        if result.error is None:
            return
        if result.context_gone:
            if self._config.debug:
                _LOGGER.info("add_binding %s skipped, context is gone: %s", binding.name, result.error)
            return
        _LOGGER.debug("add_binding %s failed: %s", binding.name, result.error)

    async def _install_binding(self, binding: Binding) -> BindingInstallResult:
        if binding.name in self._bindings or self._disposed:
            return BindingInstallResult(binding.name, installed=False)

        async with self._mutex:
            # A concurrent install of the same name may have finished while we waited.
            if binding.name in self._bindings or self._disposed:
                return BindingInstallResult(binding.name, installed=False)
            try:
                if self._name:
                    params = {"name": BINDING_PREFIX + binding.name, "executionContextName": self._name}
                else:
                    await self.acquire_context_id()
                    params = {"name": BINDING_PREFIX + binding.name, "executionContextId": self.id}
                await self._session.send("Runtime.addBinding", params)

                if binding.init_source:
                    await self.evaluate(binding.init_source)
                else:
                    await self.evaluate(ADD_PAGE_BINDING, INTERNAL_BINDING_TYPE, binding.name, BINDING_PREFIX)
            except Exception as exc:  # noqa: BLE001
                return BindingInstallResult(binding.name, installed=False, error=exc)

            self._bindings[binding.name] = binding
            return BindingInstallResult(binding.name, installed=True)

    async def _add_binding_without_throwing(self, binding: Binding) -> None:
        # Environments without binding support must not break context setup.
        try:
            await self.add_binding(binding)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("built-in binding %s unavailable: %s", binding.name, exc)

    @property
    def utility_handle(self) -> asyncio.Future:
        """Shared future for the injected utility bundle handle.

        The first access requests the built-in query bindings; every access lets
        the script injector re-inject when its source changed, in which case the
        previous handle is released in the background.
        """
        if self._disposed:
            raise ContextDestroyedError()

        pending: asyncio.Future | None = None
        if not self._bindings_installed:
            pending = asyncio.gather(*(self._add_binding_without_throwing(b) for b in self._builtin_bindings))
            self._bindings_installed = True

        def inject(script: str) -> None:
            self._utility.replace(asyncio.ensure_future(self._evaluate_utility(pending, script)))

        self._injector.inject(inject, force=self._utility.current is None)
        current = self._utility.current
        if current is None:
            raise RuntimeError("Script injector did not provide the utility script")
        return current

    async def _evaluate_utility(self, pending: asyncio.Future | None, script: str) -> JSHandle:
        if pending is not None:
            await pending
        return await self.evaluate_handle(script)

    # ─────────────────────────────────────────────────────────────────────────
    # Session events
    # ─────────────────────────────────────────────────────────────────────────

    async def _on_binding_called(self, event: dict[str, Any]) -> None:
        if event.get("executionContextId") != self.id:
            return
        call = decode_binding_payload(event.get("payload"))
        if call is None:
            # Called by page script directly, or before our wrapper was installed.
            return
        if isinstance(call, ForeignCall) or call.name not in self._bindings:
            self.emit("bindingcalled", event)
            return
        binding = self._bindings[call.name]
        try:
            await binding.run(self, call.seq, call.args, call.is_trivial)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("binding %s failed for seq=%s: %s", call.name, call.seq, exc, exc_info=True)

    def _on_console_api(self, event: dict[str, Any]) -> None:
        if event.get("executionContextId") != self.id:
            return
        self.emit("consoleapicalled", event)

    def _on_context_destroyed(self, event: dict[str, Any]) -> None:
        if event.get("executionContextId") == self.id:
            self.dispose()

    def _on_contexts_cleared(self, _event: Any) -> None:
        self.dispose()

    def _on_disconnected(self, _event: Any) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return f"ExecutionContext(id={self.id}, name={self._name!r}, disposed={self._disposed})"


__all__ = ["ExecutionContext"]
