"""Granian integration helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import msgspec
from granian import Granian

from .application import DeskOpsApp

_CURRENT_APP: DeskOpsApp | None = None

_DEV_PROFILES: frozenset[str] = frozenset({"development", "dev", "local", "test"})


def _path_state(path: str | Path | None) -> tuple[Path | None, bool]:
    """Return a tuple of the normalized path and whether it exists."""

    if path is None:
        return None, False
    resolved = path if isinstance(path, Path) else Path(path)
    return resolved, resolved.exists()


def _register_current_app(app: DeskOpsApp) -> None:
    global _CURRENT_APP
    _CURRENT_APP = app


def _clear_current_app() -> None:
    global _CURRENT_APP
    _CURRENT_APP = None


def _current_app_loader() -> DeskOpsApp:
    """Return the application registered for the current process."""

    if _CURRENT_APP is None:
        raise RuntimeError("no deskops application registered for Granian")
    return _CURRENT_APP


class ServerConfig(msgspec.Struct, frozen=True):
    host: str = "0.0.0.0"
    port: int = 8080
    interface: str = "asgi"
    workers: int = 1
    certificate_path: str | Path | None = None
    private_key_path: str | Path | None = None
    profile: str = "production"


def _granian_kwargs(cfg: ServerConfig) -> Mapping[str, Any]:
    certificate = _path_state(cfg.certificate_path)
    key = _path_state(cfg.private_key_path)
    if cfg.profile.lower() not in _DEV_PROFILES:
        missing = [
            f"{label} ({path})"
            for label, (path, exists) in (("certificate_path", certificate), ("private_key_path", key))
            if path is not None and not exists
        ]
        if missing:
            raise RuntimeError(f"TLS assets not found for {cfg.profile!r} profile: {', '.join(missing)}")

    kwargs: dict[str, Any] = {
        "address": cfg.host,
        "port": cfg.port,
        "interface": cfg.interface,
        "workers": cfg.workers,
    }
    cert_path, cert_exists = certificate
    key_path, key_exists = key
    if cert_exists and key_exists:
        kwargs["ssl_cert"] = cert_path
        kwargs["ssl_key"] = key_path
    return kwargs


def create_server(app: DeskOpsApp, config: ServerConfig | None = None) -> Granian:
    cfg = config or ServerConfig()
    _register_current_app(app)
    try:
        kwargs = _granian_kwargs(cfg)
        return Granian("deskops.server:_current_app_loader", **kwargs)
    except Exception:
        _clear_current_app()
        raise


def run(app: DeskOpsApp, config: ServerConfig | None = None) -> None:
    server = create_server(app, config)
    try:
        server.serve(target_loader=_current_app_loader, wrap_loader=False)
    finally:
        _clear_current_app()


__all__ = ["ServerConfig", "create_server", "run"]
