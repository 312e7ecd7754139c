"""Zendesk v2 API client used by the command handlers."""

from __future__ import annotations

from contextlib import aclosing
from enum import Enum
from typing import Any, AsyncIterator, Callable, Protocol, TypeVar

import msgspec
from msgspec import Struct, structs

from .credentials import AuthorizedClientHandle
from .exceptions import UpstreamError
from .serialization import json_decode, json_encode
from .transport import HTTPClient, OutboundRequest, TransportResponse, merge_headers, raise_for_status

T = TypeVar("T")

MAX_COMMENT_PAGES = 20


class CommentVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value

    @property
    def is_public(self) -> bool:
        return self is CommentVisibility.PUBLIC

    @property
    def label(self) -> str:
        return self.value.capitalize()


class User(Struct, frozen=True):
    id: int
    name: str | None = None
    email: str | None = None


class Organization(Struct, frozen=True):
    id: int
    name: str | None = None


class Ticket(Struct, frozen=True):
    id: int
    subject: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    organization_id: int | None = None
    assignee_id: int | None = None
    requester_id: int | None = None
    assignee: User | None = None
    requester: User | None = None


class TicketComment(Struct, frozen=True):
    id: int | None = None
    body: str | None = None
    public: bool = True
    author_id: int | None = None
    created_at: str | None = None

    @property
    def visibility(self) -> CommentVisibility:
        return CommentVisibility.PUBLIC if self.public else CommentVisibility.PRIVATE


class CommentPayload(Struct, frozen=True):
    body: str
    public: bool


class TicketUpdate(Struct, frozen=True, omit_defaults=True):
    comment: CommentPayload | None = None
    status: str | None = None
    priority: str | None = None


class _TicketEnvelope(Struct, frozen=True):
    ticket: Ticket
    users: list[User] = []


class _OrganizationEnvelope(Struct, frozen=True):
    organization: Organization


class _CommentPage(Struct, frozen=True):
    comments: list[TicketComment] = []
    next_page: str | None = None


class TicketService(Protocol):
    """Operations the command handlers need from the helpdesk."""

    async def fetch_ticket(self, ticket_id: int) -> Ticket:  # pragma: no cover - protocol
        ...

    async def fetch_organization(self, organization_id: int) -> Organization:  # pragma: no cover - protocol
        ...

    async def list_comments(self, ticket_id: int) -> list[TicketComment]:  # pragma: no cover - protocol
        ...

    async def latest_comment(
        self,
        ticket_id: int,
        visibility: CommentVisibility,
    ) -> TicketComment | None:  # pragma: no cover - protocol
        ...

    async def post_comment(
        self,
        ticket_id: int,
        body: str,
        visibility: CommentVisibility,
    ) -> Ticket:  # pragma: no cover - protocol
        ...

    async def update_ticket(self, ticket_id: int, update: TicketUpdate) -> Ticket:  # pragma: no cover - protocol
        ...


TicketServiceFactory = Callable[[AuthorizedClientHandle], TicketService]


class HelpdeskClient:
    """Host-scoped client authenticated by an :class:`AuthorizedClientHandle`."""

    def __init__(self, handle: AuthorizedClientHandle, http: HTTPClient) -> None:
        self.handle = handle
        self._http = http

    async def fetch_ticket(self, ticket_id: int) -> Ticket:
        response = await self._request("GET", f"/tickets/{ticket_id}.json?include=users", action="Fetching ticket")
        envelope = _decode(response, _TicketEnvelope, action="Fetching ticket")
        return _attach_users(envelope.ticket, envelope.users)

    async def fetch_organization(self, organization_id: int) -> Organization:
        response = await self._request(
            "GET",
            f"/organizations/{organization_id}.json",
            action="Fetching organization",
        )
        return _decode(response, _OrganizationEnvelope, action="Fetching organization").organization

    async def list_comments(self, ticket_id: int) -> list[TicketComment]:
        """Return every comment on the ticket, oldest first."""

        comments: list[TicketComment] = []
        async with aclosing(self._comment_pages(ticket_id, "asc")) as pages:
            async for page in pages:
                comments.extend(page)
        return comments

    async def latest_comment(self, ticket_id: int, visibility: CommentVisibility) -> TicketComment | None:
        """Return the newest comment with ``visibility``; ``None`` when the ticket has none."""

        async with aclosing(self._comment_pages(ticket_id, "desc")) as pages:
            async for page in pages:
                for comment in page:
                    if comment.visibility is visibility:
                        return comment
        return None

    async def update_ticket(self, ticket_id: int, update: TicketUpdate) -> Ticket:
        response = await self._request(
            "PUT",
            f"/tickets/{ticket_id}.json",
            action="Updating ticket",
            body=json_encode({"ticket": update}),
        )
        return _decode(response, _TicketEnvelope, action="Updating ticket").ticket

    async def post_comment(self, ticket_id: int, body: str, visibility: CommentVisibility) -> Ticket:
        update = TicketUpdate(comment=CommentPayload(body=body, public=visibility.is_public))
        return await self.update_ticket(ticket_id, update)

    async def _request(self, method: str, path: str, *, action: str, body: bytes | None = None) -> TransportResponse:
        return await self._send(method, f"{self.handle.base_url}{path}", action=action, body=body)

    async def _comment_pages(self, ticket_id: int, sort_order: str) -> AsyncIterator[list[TicketComment]]:
        url = f"{self.handle.base_url}/tickets/{ticket_id}/comments.json?sort_order={sort_order}"
        for _ in range(MAX_COMMENT_PAGES):
            response = await self._send("GET", url, action="Listing comments")
            page = _decode(response, _CommentPage, action="Listing comments")
            yield page.comments
            if not page.next_page:
                return
            if not page.next_page.startswith(self.handle.base_url + "/"):
                raise UpstreamError(f"Listing comments returned a next page outside {self.handle.base_url}")
            url = page.next_page
        raise UpstreamError(f"Ticket #{ticket_id} has more than {MAX_COMMENT_PAGES} pages of comments")

    async def _send(self, method: str, url: str, *, action: str, body: bytes | None = None) -> TransportResponse:
        extra = {"content-type": "application/json"} if body is not None else {}
        request = OutboundRequest(
            method=method,
            url=url,
            headers=merge_headers(self.handle.headers(), extra),
            body=body,
        )
        response = await self._http.send(request)
        return raise_for_status(response, action=action)


def _decode(response: TransportResponse, model: type[T], *, action: str) -> T:
    try:
        return json_decode(response.body, type=model)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        raise UpstreamError(f"{action} returned an unreadable response: {exc}") from exc


def _attach_users(ticket: Ticket, users: list[User]) -> Ticket:
    if not users:
        return ticket
    by_id: dict[int, User] = {user.id: user for user in users}
    changes: dict[str, Any] = {}
    if ticket.assignee_id is not None and ticket.assignee_id in by_id:
        changes["assignee"] = by_id[ticket.assignee_id]
    if ticket.requester_id is not None and ticket.requester_id in by_id:
        changes["requester"] = by_id[ticket.requester_id]
    return structs.replace(ticket, **changes) if changes else ticket


def client_factory(http: HTTPClient) -> TicketServiceFactory:
    """Return a factory that binds a fresh :class:`HelpdeskClient` to each handle."""

    def build(handle: AuthorizedClientHandle) -> TicketService:
        return HelpdeskClient(handle, http)

    return build


__all__ = [
    "MAX_COMMENT_PAGES",
    "CommentPayload",
    "CommentVisibility",
    "HelpdeskClient",
    "Organization",
    "Ticket",
    "TicketComment",
    "TicketService",
    "TicketServiceFactory",
    "TicketUpdate",
    "User",
    "client_factory",
]
