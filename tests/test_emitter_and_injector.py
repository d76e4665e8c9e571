from __future__ import annotations

import asyncio

from browser_runtime.cdp.emitter import EventEmitter
from browser_runtime.cdp.script_injector import UTILITY_SCRIPT_SOURCE, ScriptInjector


def test_once_handlers_fire_once_and_off_removes() -> None:
    emitter = EventEmitter()
    seen: list = []
    emitter.once("x", lambda payload: seen.append(("once", payload)))
    handler = emitter.on("x", lambda payload: seen.append(("on", payload)))

    emitter.emit("x", 1)
    emitter.off("x", handler)
    assert emitter.emit("x", 2) is False
    assert seen == [("once", 1), ("on", 1)]


def test_failing_handler_does_not_stop_others() -> None:
    emitter = EventEmitter()
    seen: list = []

    def broken(_payload):
        raise RuntimeError("boom")

    emitter.on("x", broken)
    emitter.on("x", seen.append)
    emitter.emit("x", "payload")
    assert seen == ["payload"]


def test_async_handlers_are_drained() -> None:
    async def scenario() -> list:
        emitter = EventEmitter()
        seen: list = []

        async def handler(payload):
            await asyncio.sleep(0)
            seen.append(payload)

        emitter.on("x", handler)
        emitter.emit("x", 1)
        assert seen == []
        await emitter.drain()
        return seen

    assert asyncio.run(scenario()) == [1]


def test_injector_calls_back_only_when_changed_or_forced() -> None:
    injector = ScriptInjector()
    scripts: list[str] = []

    injector.inject(scripts.append)
    assert scripts == []
    injector.inject(scripts.append, force=True)
    assert scripts == [UTILITY_SCRIPT_SOURCE]

    injector.append("module.a = 1;")
    injector.inject(scripts.append)
    injector.inject(scripts.append)
    assert len(scripts) == 2
    assert "module.a = 1;" in scripts[1]

    injector.pop("module.a = 1;")
    assert injector.script == UTILITY_SCRIPT_SOURCE
