"""Value codec between host arguments/results and CDP wire shapes.

Encoding targets `Runtime.CallArgument` ({"value"}, {"unserializableValue"},
{"objectId"}); decoding reads `Runtime.RemoteObject`. JavaScript numbers that
JSON cannot carry (NaN, +/-Infinity, -0) and BigInts travel as unserializable
literals in both directions.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import ContextDestroyedError, EvaluationError, HandleError

if TYPE_CHECKING:
    from .execution_context import ExecutionContext

INTERNAL_SOURCE_URL = "browser-runtime:internal"
SOURCE_URL_REGEX = re.compile(r"^[\040\t]*//[@#] sourceURL=\s*(\S*?)\s*$", re.MULTILINE)

# Remote failures that mean "nothing to return", not "evaluation failed".
DEGENERATE_RESULT_MESSAGES = (
    "Object reference chain is too long",
    "Object couldn't be returned by value",
)
CONTEXT_GONE_SUFFIXES = (
    "Cannot find context with specified id",
    "Inspected target navigated or closed",
)

UNDEFINED_RESULT: dict[str, Any] = {"result": {"type": "undefined"}}


class BigInt(int):
    """Integer that must arrive in the page as a BigInt, not a Number."""

    def __repr__(self) -> str:
        return f"BigInt({int(self)})"


@dataclass(frozen=True)
class JsFunction:
    """Page function given by its JavaScript source, e.g. ``JsFunction("(a, b) => a + b")``.

    `source_url` is attached as a ``//# sourceURL=`` trailer so remote stack
    traces point at the caller instead of an anonymous script.
    """

    declaration: str
    source_url: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.declaration, str) or not self.declaration.strip():
            raise ValueError("JsFunction requires a non-empty declaration")


class LazyArg:
    """Argument resolved against the target context right before the call."""

    def __init__(self, get: Callable[[ExecutionContext], Awaitable[Any]]) -> None:
        self._get = get

    async def get(self, context: ExecutionContext) -> Any:
        return await self._get(context)


def source_url_comment(url: str) -> str:
    return f"//# sourceURL={url}"


def with_source_url(text: str, url: str = INTERNAL_SOURCE_URL) -> str:
    if SOURCE_URL_REGEX.search(text):
        return text
    return f"{text}\n{source_url_comment(url)}\n"


def source_url_for(page_function: Any) -> str:
    return getattr(page_function, "source_url", None) or INTERNAL_SOURCE_URL


def stringify_function(page_function: JsFunction) -> str:
    return page_function.declaration.strip()


def unserializable_number(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, BigInt):
        return f"{int(value)}n"
    if not isinstance(value, float):
        return None
    if math.isnan(value):
        return "NaN"
    if value == math.inf:
        return "Infinity"
    if value == -math.inf:
        return "-Infinity"
    if value == 0.0 and math.copysign(1.0, value) < 0:
        return "-0"
    return None


def _ensure_encodable(value: Any) -> None:
    try:
        json.dumps(value, allow_nan=False)
    except ValueError as exc:
        if "Circular reference" in str(exc):
            raise ValueError(f"{exc}. Recursive objects are not allowed.") from exc
        if "Out of range float" in str(exc):
            raise ValueError("NaN and Infinity can only be passed as top-level arguments") from exc
        raise


async def convert_argument(context: ExecutionContext, arg: Any) -> dict[str, Any]:
    """Encode one host argument as a `Runtime.CallArgument`."""
    from .handle import JSHandle

    if isinstance(arg, LazyArg):
        arg = await arg.get(context)

    special = unserializable_number(arg)
    if special is not None:
        return {"unserializableValue": special}

    if isinstance(arg, JSHandle):
        if arg.realm is not context.realm:
            raise HandleError("JSHandles can be evaluated only in the context they were created!")
        if arg.disposed:
            raise HandleError("JSHandle is disposed!")
        remote = arg.remote_object
        if remote.get("unserializableValue"):
            return {"unserializableValue": remote["unserializableValue"]}
        if not remote.get("objectId"):
            return {"value": remote.get("value")}
        return {"objectId": remote["objectId"]}

    _ensure_encodable(arg)
    return {"value": arg}


_SPECIAL_NUMBERS: dict[str, float] = {
    "-0": -0.0,
    "NaN": math.nan,
    "Infinity": math.inf,
    "-Infinity": -math.inf,
}


def value_from_remote_object(remote_object: dict[str, Any]) -> Any:
    """Decode a by-value `Runtime.RemoteObject` (undefined and null both become None)."""
    if remote_object.get("objectId"):
        raise ValueError("Cannot extract value when objectId is given")
    unserializable = remote_object.get("unserializableValue")
    if unserializable:
        if remote_object.get("type") == "bigint":
            return BigInt(int(str(unserializable).replace("n", "")))
        if unserializable in _SPECIAL_NUMBERS:
            return _SPECIAL_NUMBERS[unserializable]
        raise ValueError(f"Unsupported unserializable value: {unserializable}")
    return remote_object.get("value")


def rewrite_error(error: Exception) -> dict[str, Any]:
    """Map an evaluate RPC failure to a degenerate result or the canonical destroyed error."""
    message = str(error)
    if any(fragment in message for fragment in DEGENERATE_RESULT_MESSAGES):
        return {"result": dict(UNDEFINED_RESULT["result"])}
    if message.endswith(CONTEXT_GONE_SUFFIXES):
        raise ContextDestroyedError() from error
    raise error


def _error_details(details: dict[str, Any]) -> tuple[str, str]:
    exception = details.get("exception") or {}
    frames = (details.get("stackTrace") or {}).get("callFrames") or []
    lines = str(exception.get("description") or "").split("\n    at ")
    size = min(len(frames), len(lines) - 1)
    if size > 0:
        lines = lines[:-size]
    name = str(exception.get("className") or "")
    message = "\n".join(lines)
    if name and message.startswith(f"{name}: "):
        message = message[len(name) + 2 :]
    return name, message


def create_evaluation_error(details: dict[str, Any]) -> EvaluationError:
    """Build an EvaluationError from `Runtime.ExceptionDetails`."""
    exception = details.get("exception")
    if not exception:
        return EvaluationError(str(details.get("text") or "Evaluation failed"))

    if (exception.get("type") != "object" or exception.get("subtype") != "error") and not exception.get("objectId"):
        value = value_from_remote_object(exception)
        return EvaluationError(str(value), name="", value=value)

    name, message = _error_details(details)
    frames = (details.get("stackTrace") or {}).get("callFrames") or []
    remote_stack = [
        "at {fn} ({url}:{line}:{col})".format(
            fn=frame.get("functionName") or "<anonymous>",
            url=frame.get("url") or "",
            line=frame.get("lineNumber"),
            col=frame.get("columnNumber"),
        )
        for frame in frames
        if frame.get("url") != INTERNAL_SOURCE_URL
    ]
    return EvaluationError(message, name=name or "Error", remote_stack=remote_stack)


__all__ = [
    "CONTEXT_GONE_SUFFIXES",
    "DEGENERATE_RESULT_MESSAGES",
    "INTERNAL_SOURCE_URL",
    "SOURCE_URL_REGEX",
    "BigInt",
    "JsFunction",
    "LazyArg",
    "convert_argument",
    "create_evaluation_error",
    "rewrite_error",
    "source_url_comment",
    "source_url_for",
    "stringify_function",
    "unserializable_number",
    "value_from_remote_object",
    "with_source_url",
]
