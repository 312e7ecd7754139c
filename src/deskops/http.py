"""HTTP status codes and classification helpers."""

from __future__ import annotations

from enum import IntEnum
from http import HTTPStatus as _HTTPStatus


class Status(IntEnum):
    """HTTP status codes used by the service and its upstream clients."""

    OK = 200
    CREATED = 201
    NO_CONTENT = 204
    FOUND = 302
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    TOO_MANY_REQUESTS = 429
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504


RETRYABLE_STATUSES: tuple[int, ...] = (
    int(Status.TOO_MANY_REQUESTS),
    int(Status.BAD_GATEWAY),
    int(Status.SERVICE_UNAVAILABLE),
    int(Status.GATEWAY_TIMEOUT),
)


def ensure_status(status: int | Status) -> int:
    """Normalize ``status`` to an ``int`` and ensure it is within the HTTP range."""

    code = int(status)
    if code < 100 or code > 599:
        raise ValueError(f"Invalid HTTP status code: {status}")
    return code


def reason_phrase(status: int | Status) -> str:
    """Return the HTTP reason phrase for ``status`` if known."""

    try:
        code = ensure_status(status)
    except ValueError:
        return "Unknown Status"
    try:
        return _HTTPStatus(code).phrase
    except ValueError:  # pragma: no cover - non-standard status codes
        return "Unknown Status"


def is_success(status: int | Status) -> bool:
    """Return ``True`` if ``status`` is a 2xx code."""

    code = ensure_status(status)
    return 200 <= code < 300


def is_retryable(status: int | Status, retryable: tuple[int, ...] = RETRYABLE_STATUSES) -> bool:
    """Return ``True`` if an upstream ``status`` is worth one more attempt."""

    return ensure_status(status) in retryable


__all__ = [
    "RETRYABLE_STATUSES",
    "Status",
    "ensure_status",
    "is_retryable",
    "is_success",
    "reason_phrase",
]
