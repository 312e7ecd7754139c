from __future__ import annotations

import pytest

from deskops.application import DeskOpsApp
from deskops.server import (
    ServerConfig,
    _clear_current_app,
    _current_app_loader,
    create_server,
    run,
)
from tests.support import make_config


def _granian_spy(monkeypatch):
    calls: list[dict[str, object]] = []

    class DummyGranian:
        def __init__(self, target: str, **kwargs):
            calls.append({"target": target, "kwargs": kwargs})

    monkeypatch.setattr("deskops.server.Granian", DummyGranian)
    return calls, DummyGranian


def test_create_server_configures_tls(monkeypatch, tmp_path) -> None:
    app = DeskOpsApp(make_config())
    certificate = tmp_path / "server.crt"
    key = tmp_path / "server.key"
    for path in (certificate, key):
        path.write_text("sample", encoding="utf-8")

    calls, DummyGranian = _granian_spy(monkeypatch)

    config = ServerConfig(host="127.0.0.1", port=9443, certificate_path=certificate, private_key_path=key)
    server = create_server(app, config)
    assert isinstance(server, DummyGranian)
    assert calls and calls[0]["target"] == "deskops.server:_current_app_loader"
    kwargs = calls[0]["kwargs"]
    assert kwargs["address"] == "127.0.0.1"
    assert kwargs["port"] == 9443
    assert kwargs["workers"] == 1
    assert kwargs["ssl_cert"] == certificate
    assert kwargs["ssl_key"] == key
    try:
        assert _current_app_loader() is app
    finally:
        _clear_current_app()


def test_create_server_without_tls(monkeypatch) -> None:
    app = DeskOpsApp(make_config())
    calls, _ = _granian_spy(monkeypatch)

    create_server(app, ServerConfig(profile="development"))

    kwargs = calls[0]["kwargs"]
    assert "ssl_cert" not in kwargs
    assert kwargs["interface"] == "asgi"
    _clear_current_app()


def test_create_server_rejects_missing_tls(tmp_path) -> None:
    app = DeskOpsApp(make_config())
    config = ServerConfig(profile="production", certificate_path=tmp_path / "missing.crt")
    with pytest.raises(RuntimeError, match="TLS assets not found"):
        create_server(app, config)
    with pytest.raises(RuntimeError):
        _current_app_loader()


def test_development_profile_tolerates_missing_tls(monkeypatch, tmp_path) -> None:
    app = DeskOpsApp(make_config())
    calls, _ = _granian_spy(monkeypatch)

    create_server(app, ServerConfig(profile="dev", certificate_path=tmp_path / "missing.crt"))

    assert "ssl_cert" not in calls[0]["kwargs"]
    _clear_current_app()


def test_run_invokes_serve(monkeypatch) -> None:
    app = DeskOpsApp(make_config())
    served = {"called": False}

    class DummyServer:
        def serve(self, target_loader=None, wrap_loader=True) -> None:
            served["called"] = True
            served["loader"] = target_loader
            served["wrap"] = wrap_loader

    def fake_create(app, config=None):
        return DummyServer()

    monkeypatch.setattr("deskops.server.create_server", fake_create)
    run(app)
    assert served["called"] is True
    assert served["loader"] is _current_app_loader
    assert served["wrap"] is False


def test_current_app_loader_without_registration() -> None:
    _clear_current_app()
    with pytest.raises(RuntimeError):
        _current_app_loader()
