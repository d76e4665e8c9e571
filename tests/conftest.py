from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

import pytest

from browser_runtime.cdp.config import AcquisitionMode, RuntimeConfig
from browser_runtime.cdp.emitter import EventEmitter
from browser_runtime.cdp.execution_context import ExecutionContext
from browser_runtime.cdp.realm import Realm
from browser_runtime.cdp.script_injector import ScriptInjector


class DummyConnection:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self.calls.append((method, params or {}))
        return {}


class DummySession(EventEmitter):
    """Session double: records every command, answers from `responses`.

    A response may be a dict, an exception instance (raised), or a callable
    taking the params (sync or async) and returning either of those.
    """

    def __init__(self, session_id: str = "S1") -> None:
        super().__init__()
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.responses: dict[str, Any] = {}
        self._session_id = session_id
        self._connection: DummyConnection | None = DummyConnection()

    @property
    def connection(self) -> DummyConnection | None:
        return self._connection

    @property
    def session_id(self) -> str:
        return self._session_id

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        params = params or {}
        self.calls.append((method, params))
        response = self.responses.get(method, {})
        if callable(response):
            response = response(params)
            if inspect.isawaitable(response):
                response = await response
        if isinstance(response, BaseException):
            raise response
        return response

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    def params_for(self, method: str) -> list[dict[str, Any]]:
        return [params for m, params in self.calls if m == method]


@pytest.fixture
def session() -> DummySession:
    return DummySession()


@pytest.fixture
def make_context(session: DummySession) -> Callable[..., ExecutionContext]:
    def _make(
        context_id: int = 5,
        *,
        name: str | None = None,
        frame_id: str | None = "F1",
        mode: AcquisitionMode = AcquisitionMode.ALWAYS_ISOLATED,
        injector: ScriptInjector | None = None,
        query_handler: Any = None,
    ) -> ExecutionContext:
        realm = Realm(session)
        payload: dict[str, Any] = {"id": context_id}
        if name:
            payload["name"] = name
        if frame_id:
            payload["auxData"] = {"frameId": frame_id}
        context = ExecutionContext(
            session,
            payload,
            realm,
            config=RuntimeConfig(acquisition_mode=mode),
            script_injector=injector or ScriptInjector(),
            query_handler=query_handler,
        )
        realm.set_context(context)
        return context

    return _make
