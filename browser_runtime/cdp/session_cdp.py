"""CDP session contract and a thin asyncio implementation over `websockets`.

The evaluation layer only relies on `CdpSessionLike`; `CdpConnection` and
`CdpSession` are one concrete provider (flattened sessions, one socket).
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any, Protocol
from urllib.error import URLError
from urllib.request import urlopen

from .config import RuntimeConfig
from .emitter import EventEmitter
from .errors import ProtocolError, TargetCloseError

_LOGGER = logging.getLogger("browser_runtime.cdp.session")

SESSION_DISCONNECTED = "CDPSession.Disconnected"

EXECUTION_CONTEXT_CREATED = "Runtime.executionContextCreated"
EXECUTION_CONTEXT_DESTROYED = "Runtime.executionContextDestroyed"
EXECUTION_CONTEXTS_CLEARED = "Runtime.executionContextsCleared"
BINDING_CALLED = "Runtime.bindingCalled"
CONSOLE_API_CALLED = "Runtime.consoleAPICalled"
EXCEPTION_THROWN = "Runtime.exceptionThrown"


class CommandSender(Protocol):
    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]: ...


class CdpSessionLike(Protocol):
    """What the evaluation layer needs from a session."""

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]: ...

    def on(self, event: str, handler: Callable[[Any], Any]) -> Any: ...

    def once(self, event: str, handler: Callable[[Any], Any]) -> Any: ...

    def off(self, event: str, handler: Callable[[Any], Any]) -> None: ...

    @property
    def connection(self) -> CommandSender | None: ...

    @property
    def session_id(self) -> str: ...


def _import_websockets():
    try:
        import websockets

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "CDP connections require the 'websockets' Python package. Install it (pip install websockets)."
        ) from exc


def protocol_error_message(method: str, error: dict[str, Any]) -> str:
    message = f"Protocol error ({method}): {error.get('message') or 'Unknown error'}"
    data = error.get("data")
    if data:
        message += f" {data}"
    return message


def discover_ws_url(port: int = 9222, *, host: str = "127.0.0.1", timeout: float = 2.0) -> str:
    """Read the browser-level websocket URL from the DevTools HTTP endpoint."""
    url = f"http://{host}:{int(port)}/json/version"
    try:
        with urlopen(url, timeout=timeout) as resp:
            data = json.loads(resp.read().decode())
    except (URLError, TimeoutError, ValueError) as exc:
        raise ProtocolError(f"Cannot reach DevTools endpoint at {url}: {exc}") from exc
    ws_url = data.get("webSocketDebuggerUrl") if isinstance(data, dict) else None
    if not isinstance(ws_url, str) or not ws_url:
        raise ProtocolError(f"DevTools endpoint at {url} did not report webSocketDebuggerUrl")
    return ws_url


class CdpConnection(EventEmitter):
    """Browser-level CDP websocket connection with request/response correlation."""

    def __init__(self, ws: Any, *, url: str = "", config: RuntimeConfig | None = None) -> None:
        super().__init__()
        self._ws = ws
        self.url = url
        self._config = config or RuntimeConfig.from_env()
        self._next_id = 1
        self._pending: dict[int, tuple[asyncio.Future, str]] = {}
        self._sessions: dict[str, CdpSession] = {}
        self._reader: asyncio.Task | None = None
        self._closed = False

    @classmethod
    async def connect(cls, ws_url: str, *, config: RuntimeConfig | None = None) -> CdpConnection:
        websockets = _import_websockets()
        ws = await websockets.connect(ws_url, ping_interval=None, max_size=None, open_timeout=10)
        conn = cls(ws, url=ws_url, config=config)
        conn.start()
        return conn

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.ensure_future(self._read_loop())

    def session(self, session_id: str) -> CdpSession | None:
        return self._sessions.get(session_id)

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        if self._closed:
            raise TargetCloseError(f"Protocol error ({method}): Target closed", method=method)

        msg_id = self._next_id
        self._next_id += 1
        fut = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = (fut, method)

        msg: dict[str, Any] = {"id": msg_id, "method": method, "params": params or {}}
        if session_id:
            msg["sessionId"] = session_id
        try:
            # json.dumps runs before anything hits the wire, so encoding errors surface as-is.
            payload = json.dumps(msg, allow_nan=False)
            await self._ws.send(payload)
        except (TypeError, ValueError):
            self._pending.pop(msg_id, None)
            raise
        except Exception as exc:  # noqa: BLE001
            self._pending.pop(msg_id, None)
            raise ProtocolError(f"Protocol error ({method}): {exc}", method=method) from exc

        limit = self._config.protocol_timeout if timeout is None else float(timeout)
        try:
            return await asyncio.wait_for(fut, timeout=limit)
        except asyncio.TimeoutError as exc:
            raise ProtocolError(f"Protocol error ({method}): timed out after {limit:g}s", method=method) from exc
        finally:
            self._pending.pop(msg_id, None)

    async def create_session(self, target_id: str) -> CdpSession:
        result = await self.send("Target.attachToTarget", {"targetId": target_id, "flatten": True})
        session_id = str(result.get("sessionId") or "")
        session = self._sessions.get(session_id)
        if session is None:
            # attachedToTarget normally arrives first; tolerate transports that reorder it.
            session = CdpSession(self, session_id, target_id=target_id)
            self._sessions[session_id] = session
        return session

    async def close(self) -> None:
        with suppress(Exception):
            await self._ws.close()
        self._on_close()
        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await reader

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._on_message(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("CDP socket closed: %s", exc)
        finally:
            self._on_close()

    def _on_message(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return
        if not isinstance(data, dict):
            return

        method = data.get("method")
        params = data.get("params") if isinstance(data.get("params"), dict) else {}

        if method == "Target.attachedToTarget":
            session_id = str(params.get("sessionId") or "")
            info = params.get("targetInfo") or {}
            if session_id and session_id not in self._sessions:
                self._sessions[session_id] = CdpSession(
                    self, session_id, target_type=str(info.get("type") or ""), target_id=str(info.get("targetId") or "")
                )
        elif method == "Target.detachedFromTarget":
            session = self._sessions.pop(str(params.get("sessionId") or ""), None)
            if session is not None:
                session._on_closed()

        if "id" in data:
            entry = self._pending.get(data.get("id"))
            if entry is None:
                return
            fut, sent_method = entry
            if fut.done():
                return
            error = data.get("error")
            if isinstance(error, dict):
                fut.set_exception(
                    ProtocolError(protocol_error_message(sent_method, error), method=sent_method, code=error.get("code"))
                )
            else:
                result = data.get("result")
                fut.set_result(result if isinstance(result, dict) else {})
            return

        if not isinstance(method, str):
            return
        session_id = data.get("sessionId")
        if session_id:
            session = self._sessions.get(str(session_id))
            if session is not None:
                session.emit(method, params)
            return
        self.emit(method, params)

    def _on_close(self) -> None:
        if self._closed:
            return
        self._closed = True
        pending = list(self._pending.values())
        self._pending.clear()
        for fut, method in pending:
            if not fut.done():
                fut.set_exception(TargetCloseError(f"Protocol error ({method}): Target closed", method=method))
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            session._on_closed()
        self.emit(SESSION_DISCONNECTED)


class CdpSession(EventEmitter):
    """One flattened target session multiplexed over a CdpConnection."""

    def __init__(
        self,
        connection: CdpConnection,
        session_id: str,
        *,
        target_type: str = "",
        target_id: str = "",
    ) -> None:
        super().__init__()
        self._connection: CdpConnection | None = connection
        self._session_id = session_id
        self.target_type = target_type
        self.target_id = target_id

    @property
    def connection(self) -> CdpConnection | None:
        return self._connection

    @property
    def session_id(self) -> str:
        return self._session_id

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        connection = self._connection
        if connection is None:
            raise TargetCloseError(
                f"Protocol error ({method}): Session closed. Most likely the target has been closed.", method=method
            )
        return await connection.send(method, params, session_id=self._session_id)

    async def detach(self) -> None:
        connection = self._connection
        if connection is None:
            raise TargetCloseError("Session already detached. Most likely the target has been closed.")
        await connection.send("Target.detachFromTarget", {"sessionId": self._session_id})

    def _on_closed(self) -> None:
        if self._connection is None:
            return
        self._connection = None
        self.emit(SESSION_DISCONNECTED)


__all__ = [
    "BINDING_CALLED",
    "CONSOLE_API_CALLED",
    "EXCEPTION_THROWN",
    "EXECUTION_CONTEXTS_CLEARED",
    "EXECUTION_CONTEXT_CREATED",
    "EXECUTION_CONTEXT_DESTROYED",
    "SESSION_DISCONNECTED",
    "CdpConnection",
    "CdpSession",
    "CdpSessionLike",
    "CommandSender",
    "discover_ws_url",
    "protocol_error_message",
]
