from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum


class AcquisitionMode(str, Enum):
    """How an unacquired execution context obtains its id."""

    DISABLED = "disabled"
    ALWAYS_ISOLATED = "alwaysIsolated"
    ENABLE_DISABLE = "enableDisable"


DEFAULT_ACQUISITION_MODE = AcquisitionMode.ALWAYS_ISOLATED
DEFAULT_PROTOCOL_TIMEOUT = 30.0


def _bool_env(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() not in {"", "0", "false", "no", "off"}


def _float_env(name: str, *, default: float, lo: float, hi: float) -> float:
    try:
        val = float(os.environ.get(name) or default)
    except Exception:
        val = default
    return max(lo, min(val, hi))


@dataclass(frozen=True)
class RuntimeConfig:
    acquisition_mode: AcquisitionMode = DEFAULT_ACQUISITION_MODE
    debug: bool = False
    protocol_timeout: float = DEFAULT_PROTOCOL_TIMEOUT

    @staticmethod
    def normalize_mode(raw: str | None) -> AcquisitionMode:
        mode = (raw or "").strip().lower().replace("_", "").replace("-", "")
        if mode in {"0", "off", "disabled", "none"}:
            return AcquisitionMode.DISABLED
        if mode in {"enabledisable", "toggle"}:
            return AcquisitionMode.ENABLE_DISABLE
        if mode in {"alwaysisolated", "isolated", ""}:
            return AcquisitionMode.ALWAYS_ISOLATED
        return DEFAULT_ACQUISITION_MODE

    @property
    def acquisition_enabled(self) -> bool:
        return self.acquisition_mode is not AcquisitionMode.DISABLED

    @classmethod
    def from_env(cls) -> RuntimeConfig:
        return cls(
            acquisition_mode=cls.normalize_mode(os.environ.get("BROWSER_RUNTIME_FIX_MODE")),
            debug=_bool_env("BROWSER_RUNTIME_DEBUG", default=False),
            protocol_timeout=_float_env(
                "BROWSER_RUNTIME_PROTOCOL_TIMEOUT", default=DEFAULT_PROTOCOL_TIMEOUT, lo=1.0, hi=300.0
            ),
        )
