"""Exception taxonomy for the evaluation layer.

- ProtocolError: the remote end answered a command with an error (or never will).
- EvaluationError: remote script threw or rejected.
- ContextDestroyedError: canonical form of every "context is gone" failure.
- AcquisitionError: no usable context id could be obtained.
- HandleError: a handle argument cannot be used in this context.
"""

from __future__ import annotations

from typing import Any

CONTEXT_DESTROYED_MESSAGE = "Execution context was destroyed, most likely because of a navigation."


class CdpError(Exception):
    pass


class ProtocolError(CdpError):
    def __init__(self, message: str, *, method: str | None = None, code: int | None = None) -> None:
        super().__init__(message)
        self.method = method
        self.code = code

    @property
    def message(self) -> str:
        return str(self)


class TargetCloseError(ProtocolError):
    pass


class EvaluationError(CdpError):
    def __init__(
        self,
        message: str,
        *,
        name: str = "Error",
        remote_stack: list[str] | None = None,
        value: Any = None,
    ) -> None:
        super().__init__(message)
        self.name = name
        self.remote_stack = list(remote_stack or [])
        # Set when the page threw something that is not an Error object.
        self.value = value

    def __str__(self) -> str:
        message = super().__str__()
        if self.name and self.name != "Error":
            return f"{self.name}: {message}"
        return message


class ContextDestroyedError(CdpError):
    def __init__(self, message: str = CONTEXT_DESTROYED_MESSAGE) -> None:
        super().__init__(message)


class AcquisitionError(CdpError):
    pass


class HandleError(CdpError):
    pass


__all__ = [
    "CONTEXT_DESTROYED_MESSAGE",
    "AcquisitionError",
    "CdpError",
    "ContextDestroyedError",
    "EvaluationError",
    "HandleError",
    "ProtocolError",
    "TargetCloseError",
]
