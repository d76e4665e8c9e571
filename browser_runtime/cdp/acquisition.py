"""Context-id acquisition without relying on `Runtime.enable` staying on.

A context created from a synthesized descriptor starts `Unacquired(kind)` and
becomes `Acquired(id)` the first time it needs to evaluate. Strategies:

- ALWAYS_ISOLATED: `Page.createIsolatedWorld` for the frame and world name, adopt
  the new context id. Not available for workers.
- ENABLE_DISABLE: listen for `Runtime.executionContextCreated`, then toggle
  `Runtime.enable` / `Runtime.disable` back to back so the domain is observable
  for as short a window as possible; the listener picks the matching context.
- DISABLED: ids only come from the regular context-created flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Union

from .config import AcquisitionMode
from .errors import AcquisitionError
from .session_cdp import EXECUTION_CONTEXT_CREATED, CdpSessionLike

_LOGGER = logging.getLogger("browser_runtime.cdp.acquisition")


class ContextKind(IntEnum):
    """Realm kind of an unacquired context; values are the legacy sentinel ids."""

    MAIN_WORLD = -1
    UTILITY_WORLD = -2
    WORKER = -3


@dataclass(frozen=True)
class Unacquired:
    kind: ContextKind

    @property
    def id(self) -> int:
        return int(self.kind)


@dataclass(frozen=True)
class Acquired:
    context_id: int

    @property
    def id(self) -> int:
        return self.context_id


ContextIdState = Union[Unacquired, Acquired]


def state_from_id(raw_id: int) -> ContextIdState:
    raw_id = int(raw_id)
    if raw_id >= 0:
        return Acquired(raw_id)
    try:
        return Unacquired(ContextKind(raw_id))
    except ValueError as exc:
        raise ValueError(f"Unknown unacquired context id: {raw_id}") from exc


def matches_created_context(kind: ContextKind, name: str | None, context: dict[str, Any]) -> bool:
    if kind is ContextKind.MAIN_WORLD:
        aux = context.get("auxData") or {}
        return bool(aux.get("isDefault"))
    if kind is ContextKind.UTILITY_WORLD:
        return name == context.get("name")
    return kind is ContextKind.WORKER


async def acquire_context_id(
    session: CdpSessionLike,
    kind: ContextKind,
    *,
    mode: AcquisitionMode,
    frame_id: str | None = None,
    name: str | None = None,
    debug: bool = False,
) -> int:
    """Run one acquisition attempt and return the new context id."""
    if debug:
        _LOGGER.info("acquire_context_id kind=%s name=%s mode=%s", kind.name, name, mode.value)

    if mode is AcquisitionMode.DISABLED:
        raise AcquisitionError(
            f"Context {kind.name} has no id and acquisition is disabled; "
            "wait for Runtime.executionContextCreated instead"
        )

    if mode is AcquisitionMode.ALWAYS_ISOLATED:
        context_id = await _create_isolated_world(session, kind, frame_id=frame_id, name=name, debug=debug)
    else:
        context_id = await _toggle_runtime(session, kind, name=name, debug=debug)

    if context_id is None:
        raise AcquisitionError("acquire_context_id failed: no execution context id was obtained")
    return context_id


async def _create_isolated_world(
    session: CdpSessionLike,
    kind: ContextKind,
    *,
    frame_id: str | None,
    name: str | None,
    debug: bool,
) -> int | None:
    if kind is ContextKind.WORKER:
        raise AcquisitionError("Web workers are not supported in alwaysIsolated mode")

    params: dict[str, Any] = {"frameId": frame_id, "grantUniveralAccess": True}
    if name:
        params["worldName"] = name
    response = await session.send("Page.createIsolatedWorld", params)
    if debug:
        _LOGGER.info("Page.createIsolatedWorld result: %s", response)
    context_id = response.get("executionContextId")
    return int(context_id) if isinstance(context_id, int) else None


async def _toggle_runtime(
    session: CdpSessionLike,
    kind: ContextKind,
    *,
    name: str | None,
    debug: bool,
) -> int | None:
    found: list[int] = []

    def on_context_created(event: dict[str, Any]) -> None:
        if found:
            return
        context = (event or {}).get("context") or {}
        if debug:
            _LOGGER.info("executionContextCreated kind=%s name=%s event_id=%s", kind.name, name, context.get("id"))
        if isinstance(context.get("id"), int) and matches_created_context(kind, name, context):
            found.append(int(context["id"]))

    session.on(EXECUTION_CONTEXT_CREATED, on_context_created)
    try:
        try:
            await session.send("Runtime.enable")
        finally:
            await session.send("Runtime.disable")
    finally:
        session.off(EXECUTION_CONTEXT_CREATED, on_context_created)
    return found[0] if found else None


__all__ = [
    "Acquired",
    "ContextIdState",
    "ContextKind",
    "Unacquired",
    "acquire_context_id",
    "matches_created_context",
    "state_from_id",
]
