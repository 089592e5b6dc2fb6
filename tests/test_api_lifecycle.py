from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

_BOOT_ENV = [
    "GUILDHALL_CHAIN_ID",
    "GUILDHALL_NODE_ID",
    "GUILDHALL_MODE",
    "GUILDHALL_DB_PATH",
    "GUILDHALL_ORG_CONFIG_PATH",
    "GUILDHALL_LOG_LEVEL",
    "GUILDHALL_ALLOW_UNSIGNED_TXS",
]


class _FakeExecutor(SimpleNamespace):
    """Minimal executor stub for API lifecycle tests."""


def test_create_app_boot_runtime_false_does_not_attach_executor() -> None:
    from guildhall.api.app import create_app

    app = create_app(boot_runtime=False)
    assert getattr(app.state, "executor", None) is None

    # App should still be startable for route/middleware tests.
    with TestClient(app) as _client:
        pass


def test_create_app_boot_runtime_true_attaches_executor(monkeypatch: pytest.MonkeyPatch) -> None:
    from guildhall.api import app as api_app

    # Booting exports the chain config into the environment; restore it afterwards.
    for k in _BOOT_ENV:
        monkeypatch.setenv(k, "")
    monkeypatch.delenv("GUILDHALL_CHAIN_CONFIG_PATH", raising=False)

    def _fake_build_executor():
        return _FakeExecutor(chain_id=4242)

    monkeypatch.setattr(api_app, "build_executor", _fake_build_executor)

    app = api_app.create_app(boot_runtime=True)
    assert getattr(app.state, "executor", None) is not None
    assert getattr(app.state.executor, "chain_id", 0) == 4242

    with TestClient(app) as client:
        # Default chain config is prod: interactive docs are off.
        assert client.get("/docs").status_code == 404
