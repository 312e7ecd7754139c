"""Outbound HTTP with bounded timeouts and a single-retry policy."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Mapping

from msgspec import Struct

from .config import RetryConfig
from .exceptions import DeskOpsError, TransportError, UpstreamError
from .http import RETRYABLE_STATUSES, is_retryable, is_success
from .observability import Observability

_IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class OutboundRequest(Struct, frozen=True):
    method: str
    url: str
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes | None = None

    @property
    def idempotent(self) -> bool:
        return self.method.upper() in _IDEMPOTENT_METHODS


class TransportResponse(Struct, frozen=True):
    status: int
    body: bytes = b""
    headers: tuple[tuple[str, str], ...] = ()

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


TransportCallable = Callable[[OutboundRequest, float], Awaitable[TransportResponse] | TransportResponse]


class RetryPolicy:
    """Retry idempotent requests on transport errors and transient statuses."""

    def __init__(
        self,
        *,
        attempts: int = 2,
        backoff: float = 0.2,
        retry_statuses: tuple[int, ...] = RETRYABLE_STATUSES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.backoff = backoff
        self.retry_statuses = tuple(retry_statuses)
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(attempts=config.attempts, backoff=config.backoff, retry_statuses=config.retry_statuses)

    def attempts_for(self, request: OutboundRequest) -> int:
        return self.attempts if request.idempotent else 1

    def should_retry(self, response: TransportResponse) -> bool:
        return not is_success(response.status) and is_retryable(response.status, self.retry_statuses)

    async def pause(self) -> None:
        if self.backoff > 0:
            await self._sleep(self.backoff)


class HTTPClient:
    """Send :class:`OutboundRequest` values through a pluggable transport."""

    def __init__(
        self,
        *,
        timeout: float,
        retry: RetryPolicy | None = None,
        transport: TransportCallable | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.timeout = timeout
        self.retry = retry or RetryPolicy(attempts=1)
        self._transport = transport or urllib_transport
        self._observability = observability or Observability()

    async def send(self, request: OutboundRequest) -> TransportResponse:
        allowed = self.retry.attempts_for(request)
        context = self._observability.on_upstream_start(request.method, request.url)
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._invoke(request)
            except TransportError as exc:
                if attempt < allowed:
                    await self.retry.pause()
                    continue
                self._observability.on_upstream_error(context, exc, attempts=attempt)
                raise
            except DeskOpsError as exc:
                self._observability.on_upstream_error(context, exc, attempts=attempt)
                raise
            if attempt < allowed and self.retry.should_retry(response):
                await self.retry.pause()
                continue
            self._observability.on_upstream_success(context, status=response.status, attempts=attempt)
            return response

    async def _invoke(self, request: OutboundRequest) -> TransportResponse:
        try:
            result = self._transport(request, self.timeout)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"{request.method} {request.url} timed out after {self.timeout:g}s") from exc
        except DeskOpsError:
            raise
        except Exception as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc!r}") from exc
        return result


def raise_for_status(response: TransportResponse, *, action: str) -> TransportResponse:
    """Turn a non-2xx ``response`` into an :class:`UpstreamError`."""

    if is_success(response.status):
        return response
    detail = response.text().strip() or "no response body"
    raise UpstreamError(
        f"{action} failed with status {response.status}: {detail}",
        status=response.status,
        retryable=is_retryable(response.status),
    )


def merge_headers(*groups: Mapping[str, str]) -> tuple[tuple[str, str], ...]:
    merged: dict[str, str] = {}
    for group in groups:
        for key, value in group.items():
            merged[key.lower()] = value
    return tuple(merged.items())


async def urllib_transport(request: OutboundRequest, timeout: float) -> TransportResponse:
    import http.client
    import urllib.error
    import urllib.request

    outbound = urllib.request.Request(
        request.url,
        data=request.body,
        headers=dict(request.headers),
        method=request.method.upper(),
    )

    def _send() -> TransportResponse:
        try:
            with urllib.request.urlopen(outbound, timeout=timeout) as response:
                status = getattr(response, "status", response.getcode())
                return TransportResponse(
                    status=int(status),
                    body=response.read(),
                    headers=tuple(response.headers.items()),
                )
        except urllib.error.HTTPError as exc:
            headers: Any = exc.headers
            return TransportResponse(
                status=exc.code,
                body=exc.read() or b"",
                headers=tuple(headers.items()) if headers is not None else (),
            )
        except urllib.error.URLError as exc:
            raise TransportError(f"Failed to reach {request.url!r}: {exc.reason}") from exc
        except TimeoutError as exc:  # pragma: no cover - depends on network I/O
            raise TransportError(f"{request.method} {request.url} timed out after {timeout:g}s") from exc
        except (OSError, http.client.HTTPException) as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc!r}") from exc

    return await asyncio.to_thread(_send)


__all__ = [
    "HTTPClient",
    "OutboundRequest",
    "RetryPolicy",
    "TransportCallable",
    "TransportResponse",
    "merge_headers",
    "raise_for_status",
    "urllib_transport",
]
