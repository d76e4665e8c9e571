from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .codec import JsFunction, value_from_remote_object
from .errors import ProtocolError

if TYPE_CHECKING:
    from .realm import Realm

_LOGGER = logging.getLogger("browser_runtime.cdp.handle")


class JSHandle:
    """Host-side reference to a remote object that was not copied by value."""

    def __init__(self, realm: Realm, remote_object: dict[str, Any]) -> None:
        self._realm = realm
        self._remote_object = dict(remote_object or {})
        self._disposed = False

    @property
    def realm(self) -> Realm:
        return self._realm

    @property
    def remote_object(self) -> dict[str, Any]:
        return self._remote_object

    @property
    def object_id(self) -> str | None:
        return self._remote_object.get("objectId")

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        object_id = self.object_id
        if not object_id:
            return
        try:
            await self._realm.session.send("Runtime.releaseObject", {"objectId": object_id})
        except ProtocolError as exc:
            # The object may already be gone with its context.
            _LOGGER.debug("releaseObject failed: %s", exc)

    async def evaluate(self, page_function: str | JsFunction, *args: Any) -> Any:
        return await self._realm.evaluate(page_function, self, *args)

    async def evaluate_handle(self, page_function: str | JsFunction, *args: Any) -> JSHandle:
        return await self._realm.evaluate_handle(page_function, self, *args)

    async def get_properties(self) -> dict[str, JSHandle]:
        object_id = self.object_id
        if not object_id:
            return {}
        response = await self._realm.session.send(
            "Runtime.getProperties", {"objectId": object_id, "ownProperties": True}
        )
        out: dict[str, JSHandle] = {}
        for prop in response.get("result") or []:
            if not prop.get("enumerable") or "value" not in prop:
                continue
            out[str(prop.get("name"))] = self._realm.create_handle(prop["value"])
        return out

    async def json_value(self) -> Any:
        if not self.object_id:
            return value_from_remote_object(self._remote_object)
        return await self.evaluate(JsFunction("object => object"))

    def __repr__(self) -> str:
        remote = self._remote_object
        if remote.get("objectId"):
            kind = remote.get("subtype") or remote.get("type") or "object"
            return f"JSHandle@{kind}"
        return f"JSHandle:{remote.get('value', remote.get('unserializableValue'))}"


class ElementHandle(JSHandle):
    """Handle whose remote object is a DOM node."""

    def __repr__(self) -> str:
        return f"ElementHandle@{self._remote_object.get('description') or 'node'}"


__all__ = ["ElementHandle", "JSHandle"]
