"""Observability integration for deskops services."""

from __future__ import annotations

import logging
import time
from contextlib import ExitStack
from typing import TYPE_CHECKING, Any, Mapping
from urllib.parse import urlparse

import msgspec

from .serialization import json_encode

if TYPE_CHECKING:
    from .requests import Request
    from .responses import Response


class ObservabilityConfig(msgspec.Struct, frozen=True):
    """Top-level observability configuration."""

    enabled: bool = True
    opentelemetry_enabled: bool = True
    opentelemetry_tracer: str = "deskops"
    logger_name: str = "deskops.observability"
    request_span_name: str = "deskops.request"
    command_span_name: str = "deskops.command"
    upstream_span_name: str = "deskops.upstream"


class _ObservationContext:
    __slots__ = ("family", "fields", "span", "stack", "start")

    def __init__(
        self,
        *,
        family: str,
        fields: Mapping[str, Any],
        start: float,
        stack: ExitStack | None,
        span: Any | None,
    ) -> None:
        self.family = family
        self.fields = dict(fields)
        self.start = start
        self.stack = stack
        self.span = span

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.start) * 1000.0, 3)

    def close(self, error: BaseException | None = None) -> None:
        if self.span is not None and error is not None:
            record = getattr(self.span, "record_exception", None)
            if callable(record):
                record(error)
        if self.stack is not None:
            self.stack.close()
            self.stack = None


class Observability:
    """Structured logging and optional tracing for requests, commands and upstream calls."""

    def __init__(self, config: ObservabilityConfig | None = None) -> None:
        self.config = config or ObservabilityConfig()
        self._logger = logging.getLogger(self.config.logger_name)
        self._tracer = None
        if self.config.enabled:
            self._prepare_opentelemetry()

    def _prepare_opentelemetry(self) -> None:
        if not self.config.opentelemetry_enabled:
            return
        try:
            from opentelemetry import trace  # type: ignore[import-not-found]
        except ImportError:  # pragma: no cover - optional dependency
            return
        self._tracer = trace.get_tracer(self.config.opentelemetry_tracer)

    # ------------------------------------------------------------------ plumbing
    def _log(self, event: str, fields: Mapping[str, Any], *, level: int = logging.INFO) -> None:
        if not self.config.enabled:
            return
        payload: dict[str, Any] = {"event": event}
        for key, value in fields.items():
            if value is not None:
                payload[key] = value
        self._logger.log(level, json_encode(payload).decode())

    def _start(self, family: str, span_name: str, fields: Mapping[str, Any]) -> _ObservationContext | None:
        if not self.config.enabled:
            return None
        stack: ExitStack | None = None
        span = None
        if self._tracer is not None:
            stack = ExitStack()
            span = stack.enter_context(self._tracer.start_as_current_span(span_name))
            for key, value in fields.items():
                if value is not None:
                    span.set_attribute(f"deskops.{key}", value)
        context = _ObservationContext(
            family=family,
            fields=fields,
            start=time.perf_counter(),
            stack=stack,
            span=span,
        )
        self._log(f"{family}.start", context.fields, level=logging.DEBUG)
        return context

    def _finish(
        self,
        context: _ObservationContext | None,
        outcome: str,
        extra: Mapping[str, Any] | None = None,
        *,
        error: BaseException | None = None,
    ) -> None:
        if context is None:
            return
        fields = dict(context.fields)
        fields.update(extra or {})
        fields["duration_ms"] = context.elapsed_ms()
        if error is not None:
            fields.setdefault("error", type(error).__name__)
        level = logging.WARNING if outcome == "error" else logging.INFO
        self._log(f"{context.family}.{outcome}", fields, level=level)
        context.close(error)

    # ------------------------------------------------------------------ requests
    def on_request_start(self, request: "Request") -> _ObservationContext | None:
        return self._start(
            "request",
            self.config.request_span_name,
            {"method": request.method, "path": request.path},
        )

    def on_request_success(self, context: _ObservationContext | None, response: "Response") -> "Response":
        self._finish(context, "success", {"status": response.status})
        return response

    def on_request_error(
        self,
        context: _ObservationContext | None,
        exc: BaseException,
        *,
        status_code: int,
    ) -> None:
        self._finish(context, "error", {"status": status_code}, error=exc)

    # ------------------------------------------------------------------ commands
    def on_command_start(self, *, verb: str, user_id: str, channel_id: str) -> _ObservationContext | None:
        return self._start(
            "command",
            self.config.command_span_name,
            {"verb": verb, "user_id": user_id, "channel_id": channel_id},
        )

    def on_command_success(self, context: _ObservationContext | None) -> None:
        self._finish(context, "success")

    def on_command_error(self, context: _ObservationContext | None, exc: BaseException, *, category: str) -> None:
        self._finish(context, "error", {"category": category}, error=exc)

    # ------------------------------------------------------------------ upstream
    def on_upstream_start(self, method: str, url: str) -> _ObservationContext | None:
        parsed = urlparse(url)
        return self._start(
            "upstream",
            self.config.upstream_span_name,
            {"method": method, "host": parsed.hostname, "path": parsed.path},
        )

    def on_upstream_success(self, context: _ObservationContext | None, *, status: int, attempts: int) -> None:
        self._finish(context, "success", {"status": status, "attempts": attempts})

    def on_upstream_error(self, context: _ObservationContext | None, exc: BaseException, *, attempts: int) -> None:
        self._finish(context, "error", {"attempts": attempts, "status": getattr(exc, "status", None)}, error=exc)

    # ------------------------------------------------------------------ oauth
    def on_oauth_exchange(self, *, user_id: str | None, outcome: str, detail: str | None = None) -> None:
        level = logging.INFO if outcome == "authorized" else logging.WARNING
        self._log("oauth.exchange", {"user_id": user_id, "outcome": outcome, "detail": detail}, level=level)


__all__ = ["Observability", "ObservabilityConfig"]
