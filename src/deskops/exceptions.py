"""Error taxonomy shared by the command engine and the HTTP surface."""

from __future__ import annotations

from typing import Any

from .http import Status, ensure_status, reason_phrase
from .serialization import json_encode


class DeskOpsError(Exception):
    """Base error type."""


class ConfigurationError(DeskOpsError):
    """Raised when the service configuration cannot be used."""


class CommandInputError(DeskOpsError):
    """Missing or malformed command arguments.

    The message is shown to the invoking user as-is, so it should read as a
    corrective instruction.
    """


class NotConnected(DeskOpsError):
    """Raised when a command needs the caller's own helpdesk session."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User '{user_id}' has not connected a helpdesk account")
        self.user_id = user_id


class UpstreamError(DeskOpsError):
    """A helpdesk or OAuth provider call failed."""

    def __init__(self, detail: str, *, status: int | None = None, retryable: bool = False) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status = status
        self.retryable = retryable


class TransportError(UpstreamError):
    """The upstream could not be reached or did not answer in time."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, retryable=True)


class ChatDeliveryError(DeskOpsError):
    """Raised when a reply cannot be delivered to the chat platform."""


class HTTPError(DeskOpsError):
    """Structured HTTP error that is msgspec serializable."""

    def __init__(self, status: int | Status, detail: Any) -> None:
        status_code = ensure_status(status)
        super().__init__(status_code, detail)
        self.status = status_code
        self.detail = detail
        self.reason = reason_phrase(status_code)

    def to_response_body(self) -> bytes:
        return json_encode({"error": {"status": self.status, "reason": self.reason, "detail": self.detail}})


__all__ = [
    "ChatDeliveryError",
    "CommandInputError",
    "ConfigurationError",
    "DeskOpsError",
    "HTTPError",
    "NotConnected",
    "TransportError",
    "UpstreamError",
]
