from __future__ import annotations

import pytest

from browser_runtime.cdp.config import AcquisitionMode, RuntimeConfig


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, AcquisitionMode.ALWAYS_ISOLATED),
        ("", AcquisitionMode.ALWAYS_ISOLATED),
        ("alwaysIsolated", AcquisitionMode.ALWAYS_ISOLATED),
        ("always-isolated", AcquisitionMode.ALWAYS_ISOLATED),
        ("enableDisable", AcquisitionMode.ENABLE_DISABLE),
        ("ENABLE_DISABLE", AcquisitionMode.ENABLE_DISABLE),
        ("0", AcquisitionMode.DISABLED),
        ("off", AcquisitionMode.DISABLED),
        ("disabled", AcquisitionMode.DISABLED),
        ("bogus", AcquisitionMode.ALWAYS_ISOLATED),
    ],
)
def test_normalize_mode(raw, expected) -> None:
    assert RuntimeConfig.normalize_mode(raw) is expected


def test_from_env_defaults(monkeypatch) -> None:
    for name in ("BROWSER_RUNTIME_FIX_MODE", "BROWSER_RUNTIME_DEBUG", "BROWSER_RUNTIME_PROTOCOL_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    cfg = RuntimeConfig.from_env()
    assert cfg.acquisition_mode is AcquisitionMode.ALWAYS_ISOLATED
    assert cfg.acquisition_enabled
    assert cfg.debug is False
    assert cfg.protocol_timeout == 30.0


def test_from_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("BROWSER_RUNTIME_FIX_MODE", "off")
    monkeypatch.setenv("BROWSER_RUNTIME_DEBUG", "1")
    monkeypatch.setenv("BROWSER_RUNTIME_PROTOCOL_TIMEOUT", "5000")
    cfg = RuntimeConfig.from_env()
    assert cfg.acquisition_mode is AcquisitionMode.DISABLED
    assert not cfg.acquisition_enabled
    assert cfg.debug is True
    assert cfg.protocol_timeout == 300.0


def test_invalid_timeout_falls_back(monkeypatch) -> None:
    monkeypatch.setenv("BROWSER_RUNTIME_PROTOCOL_TIMEOUT", "soon")
    assert RuntimeConfig.from_env().protocol_timeout == 30.0
