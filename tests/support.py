"""Test doubles shared by the deskops test-suite."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from deskops.config import AppConfig, ChatConfig, HelpdeskConfig, RetryConfig
from deskops.credentials import AuthorizedClientHandle
from deskops.exceptions import UpstreamError
from deskops.helpdesk import CommentVisibility, Organization, Ticket, TicketComment, TicketUpdate
from deskops.serialization import json_encode
from deskops.transport import OutboundRequest, TransportResponse


def make_config(**overrides: Any) -> AppConfig:
    helpdesk = overrides.pop(
        "helpdesk",
        HelpdeskConfig(
            url="https://acme.zendesk.com",
            client_id="deskops-client",
            client_secret="s3cret",
            retry=RetryConfig(attempts=2, backoff=0.0),
        ),
    )
    values: dict[str, Any] = {
        "site_url": "https://chat.example.com",
        "command_token": "hook-secret",
        "helpdesk": helpdesk,
        "chat": ChatConfig(server_url="https://chat.example.com", bot_token="bot-token", bot_user_id="bot"),
    }
    values.update(overrides)
    return AppConfig(**values)


def json_response(payload: Any, *, status: int = 200) -> TransportResponse:
    return TransportResponse(status=status, body=json_encode(payload), headers=(("content-type", "application/json"),))


class FakeTransport:
    """Answer outbound requests from queued responses matched by method and URL prefix."""

    def __init__(self) -> None:
        self.calls: list[OutboundRequest] = []
        self._routes: list[tuple[str, str, list[TransportResponse | BaseException]]] = []

    def add(self, method: str, url: str, *responses: TransportResponse | BaseException) -> None:
        self._routes.append((method.upper(), url, list(responses)))

    async def __call__(self, request: OutboundRequest, timeout: float) -> TransportResponse:
        await asyncio.sleep(0)
        self.calls.append(request)
        for method, url, responses in self._routes:
            if method != request.method.upper() or not request.url.startswith(url) or not responses:
                continue
            result = responses.pop(0) if len(responses) > 1 else responses[0]
            if isinstance(result, BaseException):
                raise result
            return result
        return TransportResponse(status=404, body=b"no fake route")

    def requests_to(self, url: str) -> list[OutboundRequest]:
        return [call for call in self.calls if call.url.startswith(url)]


@dataclass
class FakeTicketService:
    """In-memory helpdesk used to exercise the command handlers."""

    tickets: dict[int, Ticket] = field(default_factory=dict)
    organizations: dict[int, Organization] = field(default_factory=dict)
    comments: dict[int, list[TicketComment]] = field(default_factory=dict)
    calls: list[tuple[str, Any]] = field(default_factory=list)
    handles: list[AuthorizedClientHandle] = field(default_factory=list)
    failure: UpstreamError | None = None

    def factory(self, handle: AuthorizedClientHandle) -> "FakeTicketService":
        self.handles.append(handle)
        return self

    def _check(self, name: str, argument: Any) -> None:
        self.calls.append((name, argument))
        if self.failure is not None:
            raise self.failure

    async def fetch_ticket(self, ticket_id: int) -> Ticket:
        self._check("fetch_ticket", ticket_id)
        try:
            return self.tickets[ticket_id]
        except KeyError:
            raise UpstreamError(f"Fetching ticket failed with status 404: ticket {ticket_id} not found", status=404)

    async def fetch_organization(self, organization_id: int) -> Organization:
        self._check("fetch_organization", organization_id)
        return self.organizations[organization_id]

    async def list_comments(self, ticket_id: int) -> list[TicketComment]:
        self._check("list_comments", ticket_id)
        return list(self.comments.get(ticket_id, []))

    async def latest_comment(self, ticket_id: int, visibility: CommentVisibility) -> TicketComment | None:
        self._check("latest_comment", (ticket_id, visibility))
        for comment in reversed(self.comments.get(ticket_id, [])):
            if comment.visibility is visibility:
                return comment
        return None

    async def post_comment(self, ticket_id: int, body: str, visibility: CommentVisibility) -> Ticket:
        self._check("post_comment", (ticket_id, body, visibility))
        self.comments.setdefault(ticket_id, []).append(TicketComment(body=body, public=visibility.is_public))
        return self.tickets.get(ticket_id, Ticket(id=ticket_id))

    async def update_ticket(self, ticket_id: int, update: TicketUpdate) -> Ticket:
        self._check("update_ticket", (ticket_id, update))
        return self.tickets.get(ticket_id, Ticket(id=ticket_id))


class LocalHTTPServer:
    """Loopback server answering raw HTTP/1.1 so the urllib transport can be exercised.

    ``reply`` is ``None`` to hang up on every connection right after reading
    the request, otherwise ``(status, body)``.
    """

    def __init__(self, reply: tuple[int, bytes] | None = None) -> None:
        self.reply = reply
        self.connections = 0
        self._server: asyncio.AbstractServer | None = None

    @property
    def url(self) -> str:
        assert self._server is not None
        host, port = self._server.sockets[0].getsockname()[:2]
        return f"http://{host}:{port}"

    async def __aenter__(self) -> "LocalHTTPServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        assert self._server is not None
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        head = await reader.readuntil(b"\r\n\r\n")
        length = 0
        for line in head.decode("latin-1").split("\r\n"):
            name, _, value = line.partition(":")
            if name.strip().lower() == "content-length":
                length = int(value.strip())
        if length:
            await reader.readexactly(length)
        if self.reply is not None:
            status, body = self.reply
            writer.write(
                f"HTTP/1.1 {status} Status\r\nContent-Type: application/json\r\n"
                f"Content-Length: {len(body)}\r\nConnection: close\r\n\r\n".encode("latin-1")
                + body
            )
            await writer.drain()
        writer.close()
        await writer.wait_closed()


def bypass_proxies(monkeypatch: Any) -> None:
    """Keep urllib from routing loopback requests through an environment proxy."""

    for name in ("no_proxy", "NO_PROXY"):
        monkeypatch.setenv(name, "*")


async def closed_port_url() -> str:
    """Return a loopback URL nothing is listening on."""

    server = await asyncio.start_server(lambda reader, writer: None, "127.0.0.1", 0)
    host, port = server.sockets[0].getsockname()[:2]
    server.close()
    await server.wait_closed()
    return f"http://{host}:{port}"


__all__ = [
    "FakeTicketService",
    "FakeTransport",
    "LocalHTTPServer",
    "bypass_proxies",
    "closed_port_url",
    "json_response",
    "make_config",
]
