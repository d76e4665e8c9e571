"""Supplies the in-page utility bundle evaluated by `ExecutionContext.utility_handle`."""

from __future__ import annotations

from collections.abc import Callable

UTILITY_SCRIPT_SOURCE = """(() => {
  const module = {};
  module.createFunction = (source) => new Function(`return ${source}`)();
  module.isNode = (value) => typeof Node !== 'undefined' && value instanceof Node;
  return module;
})()"""


class ScriptInjector:
    """Holds the utility source plus optional amendments.

    `inject()` calls back only when the script changed since the last injection
    or when the caller forces it (nothing injected yet).
    """

    def __init__(self, source: str = UTILITY_SCRIPT_SOURCE) -> None:
        self._source = source
        self._amendments: list[str] = []
        self._updated = False

    def append(self, statement: str) -> None:
        self._update(lambda: self._amendments.append(statement))

    def pop(self, statement: str) -> None:
        self._update(lambda: self._amendments.remove(statement))

    def inject(self, inject: Callable[[str], None], force: bool = False) -> None:
        if self._updated or force:
            inject(self.script)
        self._updated = False

    @property
    def script(self) -> str:
        if not self._amendments:
            return self._source
        body = "\n".join(f"  {stmt}" for stmt in self._amendments)
        return f"(() => {{\n  const module = {self._source};\n{body}\n  return module;\n}})()"

    def _update(self, callback: Callable[[], None]) -> None:
        callback()
        self._updated = True


script_injector = ScriptInjector()

__all__ = ["UTILITY_SCRIPT_SOURCE", "ScriptInjector", "script_injector"]
