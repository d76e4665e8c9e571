from __future__ import annotations

import asyncio
import math

import pytest

from browser_runtime.cdp.codec import (
    INTERNAL_SOURCE_URL,
    BigInt,
    JsFunction,
    LazyArg,
    convert_argument,
    create_evaluation_error,
    rewrite_error,
    value_from_remote_object,
    with_source_url,
)
from browser_runtime.cdp.errors import (
    CONTEXT_DESTROYED_MESSAGE,
    ContextDestroyedError,
    HandleError,
    ProtocolError,
)
from browser_runtime.cdp.handle import JSHandle
from browser_runtime.cdp.realm import Realm


def _encode(context, value):
    return asyncio.run(convert_argument(context, value))


def test_special_numbers_encode_as_unserializable(make_context) -> None:
    ctx = make_context()
    assert _encode(ctx, math.nan) == {"unserializableValue": "NaN"}
    assert _encode(ctx, math.inf) == {"unserializableValue": "Infinity"}
    assert _encode(ctx, -math.inf) == {"unserializableValue": "-Infinity"}
    assert _encode(ctx, -0.0) == {"unserializableValue": "-0"}
    assert _encode(ctx, BigInt(12345678901234567890)) == {"unserializableValue": "12345678901234567890n"}


def test_plain_values_pass_through(make_context) -> None:
    ctx = make_context()
    assert _encode(ctx, 0.0) == {"value": 0.0}
    assert _encode(ctx, 42) == {"value": 42}
    assert _encode(ctx, True) == {"value": True}
    assert _encode(ctx, None) == {"value": None}
    assert _encode(ctx, {"a": [1, "x"]}) == {"value": {"a": [1, "x"]}}


@pytest.mark.parametrize(
    ("value", "remote"),
    [
        (math.inf, {"type": "number", "unserializableValue": "Infinity"}),
        (-math.inf, {"type": "number", "unserializableValue": "-Infinity"}),
        (BigInt(7), {"type": "bigint", "unserializableValue": "7n"}),
    ],
)
def test_special_values_round_trip(make_context, value, remote) -> None:
    encoded = _encode(make_context(), value)
    assert encoded["unserializableValue"] == remote["unserializableValue"]
    assert value_from_remote_object(remote) == value


def test_nan_and_negative_zero_round_trip(make_context) -> None:
    ctx = make_context()
    nan = value_from_remote_object({"type": "number", **_encode(ctx, math.nan)})
    assert math.isnan(nan)
    neg_zero = value_from_remote_object({"type": "number", **_encode(ctx, -0.0)})
    assert neg_zero == 0.0 and math.copysign(1.0, neg_zero) < 0


def test_decoded_bigint_keeps_its_type() -> None:
    value = value_from_remote_object({"type": "bigint", "unserializableValue": "99n"})
    assert isinstance(value, BigInt)
    assert value == 99


def test_decode_rejects_unknown_unserializable_and_object_ids() -> None:
    with pytest.raises(ValueError, match="Unsupported unserializable value"):
        value_from_remote_object({"type": "number", "unserializableValue": "1e999"})
    with pytest.raises(ValueError, match="objectId"):
        value_from_remote_object({"type": "object", "objectId": "o1"})


def test_undefined_and_null_decode_to_none() -> None:
    assert value_from_remote_object({"type": "undefined"}) is None
    assert value_from_remote_object({"type": "object", "subtype": "null", "value": None}) is None


def test_circular_structure_is_annotated(make_context) -> None:
    data: dict = {}
    data["self"] = data
    with pytest.raises(ValueError, match="Recursive objects are not allowed"):
        _encode(make_context(), data)


def test_lazy_arg_resolves_against_context(make_context) -> None:
    ctx = make_context()
    seen = []

    async def resolve(context):
        seen.append(context)
        return math.inf

    assert _encode(ctx, LazyArg(resolve)) == {"unserializableValue": "Infinity"}
    assert seen == [ctx]


def test_handle_arguments(make_context) -> None:
    ctx = make_context()
    by_ref = JSHandle(ctx.realm, {"type": "object", "objectId": "obj-1"})
    by_value = JSHandle(ctx.realm, {"type": "number", "value": 3})
    special = JSHandle(ctx.realm, {"type": "number", "unserializableValue": "NaN"})
    assert _encode(ctx, by_ref) == {"objectId": "obj-1"}
    assert _encode(ctx, by_value) == {"value": 3}
    assert _encode(ctx, special) == {"unserializableValue": "NaN"}


def test_handle_from_other_realm_is_rejected(make_context, session) -> None:
    ctx = make_context()
    foreign = JSHandle(Realm(session), {"type": "object", "objectId": "obj-2"})
    with pytest.raises(HandleError, match="only in the context they were created"):
        _encode(ctx, foreign)


def test_disposed_handle_is_rejected(make_context) -> None:
    ctx = make_context()
    handle = JSHandle(ctx.realm, {"type": "number", "value": 1})
    asyncio.run(handle.dispose())
    with pytest.raises(HandleError, match="disposed"):
        _encode(ctx, handle)


@pytest.mark.parametrize(
    "message",
    [
        "Protocol error (Runtime.callFunctionOn): Object reference chain is too long",
        "Protocol error (Runtime.callFunctionOn): Object couldn't be returned by value",
    ],
)
def test_rewrite_error_degenerate_results(message) -> None:
    assert rewrite_error(ProtocolError(message)) == {"result": {"type": "undefined"}}


@pytest.mark.parametrize(
    "message",
    [
        "Protocol error (Runtime.evaluate): Cannot find context with specified id",
        "Protocol error (Runtime.evaluate): Inspected target navigated or closed",
    ],
)
def test_rewrite_error_context_gone(message) -> None:
    with pytest.raises(ContextDestroyedError) as excinfo:
        rewrite_error(ProtocolError(message))
    assert str(excinfo.value) == CONTEXT_DESTROYED_MESSAGE


def test_rewrite_error_passes_other_errors_through() -> None:
    error = ProtocolError("Protocol error (Runtime.evaluate): Internal error")
    with pytest.raises(ProtocolError) as excinfo:
        rewrite_error(error)
    assert excinfo.value is error


def test_source_url_trailer() -> None:
    assert with_source_url("1 + 2") == f"1 + 2\n//# sourceURL={INTERNAL_SOURCE_URL}\n"
    tagged = "1 + 2\n//# sourceURL=custom.js"
    assert with_source_url(tagged) == tagged


def test_js_function_requires_source() -> None:
    with pytest.raises(ValueError):
        JsFunction("   ")


def test_evaluation_error_from_error_object() -> None:
    details = {
        "text": "Uncaught",
        "exception": {
            "type": "object",
            "subtype": "error",
            "className": "TypeError",
            "description": "TypeError: x is not a function\n    at foo (app.js:1:2)",
            "objectId": "err-1",
        },
        "stackTrace": {
            "callFrames": [
                {"functionName": "foo", "url": "app.js", "lineNumber": 1, "columnNumber": 2},
                {"functionName": "", "url": INTERNAL_SOURCE_URL, "lineNumber": 0, "columnNumber": 0},
            ]
        },
    }
    error = create_evaluation_error(details)
    assert error.name == "TypeError"
    assert str(error) == "TypeError: x is not a function"
    assert error.remote_stack == ["at foo (app.js:1:2)"]


def test_evaluation_error_from_thrown_value() -> None:
    error = create_evaluation_error({"text": "Uncaught", "exception": {"type": "string", "value": "boom"}})
    assert error.value == "boom"
    assert str(error) == "boom"


def test_evaluation_error_without_exception_uses_text() -> None:
    assert str(create_evaluation_error({"text": "SyntaxError: Unexpected token"})) == "SyntaxError: Unexpected token"


def test_nested_non_finite_numbers_are_rejected(make_context) -> None:
    ctx = make_context()
    with pytest.raises(ValueError, match="top-level"):
        _encode(ctx, [math.nan])
    with pytest.raises(ValueError, match="top-level"):
        _encode(ctx, {"limit": math.inf})
