"""Response primitives."""

from __future__ import annotations

from typing import Any, Iterable

import msgspec

from .exceptions import HTTPError
from .http import Status
from .serialization import json_encode

DEFAULT_SECURITY_HEADERS: tuple[tuple[str, str], ...] = (
    ("content-security-policy", "default-src 'self'"),
    ("x-content-type-options", "nosniff"),
    ("referrer-policy", "no-referrer"),
    ("x-frame-options", "DENY"),
    ("cache-control", "no-store"),
)

Headers = tuple[tuple[str, str], ...]


class Response(msgspec.Struct, frozen=True):
    """Immutable response payload."""

    status: int = int(Status.OK)
    headers: Headers = ()
    body: bytes = b""

    def with_headers(self, headers: Iterable[tuple[str, str]]) -> "Response":
        """Return a new response with ``headers`` appended."""

        return Response(status=self.status, headers=self.headers + tuple(headers), body=self.body)

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    def text(self) -> str:
        return self.body.decode("utf-8")


def apply_default_security_headers(
    response: Response,
    *,
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Append default security headers to ``response`` when missing."""

    baseline = tuple(headers or DEFAULT_SECURITY_HEADERS)
    existing = {name.lower() for name, _ in response.headers}
    additions = tuple((name, value) for name, value in baseline if name.lower() not in existing)
    if not additions:
        return response
    return response.with_headers(additions)


def PlainTextResponse(
    text: str,
    *,
    status: int = int(Status.OK),
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Create a plain text response."""

    default_headers = (("content-type", "text/plain; charset=utf-8"),)
    combined = default_headers + tuple(headers or ())
    return apply_default_security_headers(Response(status=status, headers=combined, body=text.encode("utf-8")))


def JSONResponse(
    data: Any,
    *,
    status: int = int(Status.OK),
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Create a JSON response encoded via :mod:`msgspec`."""

    default_headers = (("content-type", "application/json"),)
    combined = default_headers + tuple(headers or ())
    return apply_default_security_headers(Response(status=status, headers=combined, body=json_encode(data)))


def RedirectResponse(location: str, *, status: int = int(Status.FOUND)) -> Response:
    """Create a redirect to ``location``."""

    response = Response(status=status, headers=(("location", location),), body=b"")
    return apply_default_security_headers(response)


def exception_to_response(exc: HTTPError) -> Response:
    response = Response(
        status=exc.status,
        headers=(("content-type", "application/json"),),
        body=exc.to_response_body(),
    )
    return apply_default_security_headers(response)


__all__ = [
    "DEFAULT_SECURITY_HEADERS",
    "JSONResponse",
    "PlainTextResponse",
    "RedirectResponse",
    "Response",
    "apply_default_security_headers",
    "exception_to_response",
]
