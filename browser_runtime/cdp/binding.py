"""Host callables exposed to page script through `Runtime.addBinding`.

Wire flow for one call:
- page calls ``globalThis[name](...args)`` (the wrapper installed by ADD_PAGE_BINDING);
- the wrapper stores the args under a sequence number and fires the raw CDP
  binding with a JSON payload ``{type, name, seq, args, isTrivial}``;
- the host decodes it (`decode_binding_payload`), runs the callback and resolves
  the page-side promise through ``globalThis[name].callbacks``.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from .codec import JsFunction
from .handle import JSHandle

if TYPE_CHECKING:
    from .execution_context import ExecutionContext

_LOGGER = logging.getLogger("browser_runtime.cdp.binding")

BINDING_PREFIX = "browser_runtime_"
INTERNAL_BINDING_TYPE = "internal"

ADD_PAGE_BINDING = JsFunction(
    """(type, name, prefix) => {
  if (globalThis[name]) {
    return;
  }
  Object.assign(globalThis, {
    [name](...args) {
      const callHost = globalThis[name];
      callHost.args ??= new Map();
      callHost.callbacks ??= new Map();
      const seq = (callHost.lastSeq ?? 0) + 1;
      callHost.lastSeq = seq;
      callHost.args.set(seq, args);
      globalThis[prefix + name](
        JSON.stringify({
          type,
          name,
          seq,
          args,
          isTrivial: !args.some(value => value instanceof Node),
        })
      );
      return new Promise((resolve, reject) => {
        callHost.callbacks.set(seq, {
          resolve(value) {
            callHost.args.delete(seq);
            resolve(value);
          },
          reject(value) {
            callHost.args.delete(seq);
            reject(value);
          },
        });
      });
    },
  });
}"""
)

_GET_CALL_ARGS = JsFunction("(name, seq) => globalThis[name].args.get(seq)")
_DELIVER_RESULT = JsFunction(
    """(name, seq, result) => {
  const callbacks = globalThis[name].callbacks;
  callbacks.get(seq).resolve(result);
  callbacks.delete(seq);
}"""
)


# ─────────────────────────────────────────────────────────────────────────────
# Payload decoding
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class InternalCall:
    name: str
    seq: int
    args: list[Any]
    is_trivial: bool


@dataclass(frozen=True)
class ForeignCall:
    """Payload that parsed but belongs to someone else (other type marker)."""

    payload: Any


def decode_binding_payload(raw: Any) -> InternalCall | ForeignCall | None:
    """Classify a `Runtime.bindingCalled` payload; None means it was not JSON at all."""
    if not isinstance(raw, str):
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(payload, dict) or payload.get("type") != INTERNAL_BINDING_TYPE:
        return ForeignCall(payload)
    name = payload.get("name")
    if not isinstance(name, str):
        return ForeignCall(payload)
    args = payload.get("args")
    return InternalCall(
        name=name,
        seq=int(payload.get("seq") or 0),
        args=list(args) if isinstance(args, list) else [],
        is_trivial=bool(payload.get("isTrivial", True)),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Binding
# ─────────────────────────────────────────────────────────────────────────────


class Binding:
    def __init__(self, name: str, callback: Callable[..., Any], init_source: str = "") -> None:
        self.name = name
        self.callback = callback
        # Empty means "install the default ADD_PAGE_BINDING wrapper".
        self.init_source = init_source

    async def run(self, context: ExecutionContext, seq: int, args: list[Any], is_trivial: bool) -> None:
        """Run the callback for one page-side call and resolve the page promise.

        Callback failures propagate to the caller (the context logs them); the page
        is not told about host-side failures.
        """
        garbage: list[JSHandle] = []
        try:
            if not is_trivial:
                # Non-trivial calls carry DOM nodes that JSON could not transport.
                handles = await context.evaluate_handle(_GET_CALL_ARGS, self.name, seq)
                garbage.append(handles)
                properties = await handles.get_properties()
                for index, handle in properties.items():
                    position = int(index) if index.isdigit() else -1
                    if 0 <= position < len(args) and handle.remote_object.get("subtype") == "node":
                        args[position] = handle
                    garbage.append(handle)

            result = self.callback(*args)
            if inspect.isawaitable(result):
                result = await result

            await context.evaluate(_DELIVER_RESULT, self.name, seq, result)
        finally:
            for handle in garbage:
                await handle.dispose()

    def __repr__(self) -> str:
        return f"Binding({self.name!r})"


@dataclass(frozen=True)
class BindingInstallResult:
    """Outcome of one install attempt; callers decide whether the error matters."""

    name: str
    installed: bool
    error: Exception | None = None

    @property
    def context_gone(self) -> bool:
        if self.error is None:
            return False
        message = str(self.error)
        return "Execution context was destroyed" in message or "Cannot find context with specified id" in message


# ─────────────────────────────────────────────────────────────────────────────
# Built-in ARIA bindings
# ─────────────────────────────────────────────────────────────────────────────


class QueryHandler(Protocol):
    async def query_one(self, element: JSHandle, selector: str) -> JSHandle | None: ...

    def query_all(self, element: JSHandle, selector: str) -> Any: ...


ARIA_QUERY_SELECTOR = "__ariaQuerySelector"
ARIA_QUERY_SELECTOR_ALL = "__ariaQuerySelectorAll"


def _missing_query_handler(*_args: Any) -> Any:
    raise RuntimeError("No ARIA query handler is configured for this execution context")


def aria_bindings(query_handler: QueryHandler | None) -> tuple[Binding, Binding]:
    """Build the two built-in query bindings on top of an external query engine."""
    if query_handler is None:
        return (
            Binding(ARIA_QUERY_SELECTOR, _missing_query_handler, ""),
            Binding(ARIA_QUERY_SELECTOR_ALL, _missing_query_handler, ""),
        )

    async def query_all(element: JSHandle, selector: str) -> JSHandle:
        found = query_handler.query_all(element, selector)
        if inspect.isawaitable(found):
            found = await found
        results: list[JSHandle] = []
        if hasattr(found, "__aiter__"):
            async for item in found:
                results.append(item)
        else:
            results.extend(found or [])
        return await element.realm.evaluate_handle(JsFunction("(...elements) => elements"), *results)

    return (
        Binding(ARIA_QUERY_SELECTOR, query_handler.query_one, ""),
        Binding(ARIA_QUERY_SELECTOR_ALL, query_all, ""),
    )


__all__ = [
    "ADD_PAGE_BINDING",
    "ARIA_QUERY_SELECTOR",
    "ARIA_QUERY_SELECTOR_ALL",
    "BINDING_PREFIX",
    "INTERNAL_BINDING_TYPE",
    "Binding",
    "BindingInstallResult",
    "ForeignCall",
    "InternalCall",
    "QueryHandler",
    "aria_bindings",
    "decode_binding_payload",
]
