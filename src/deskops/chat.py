"""Replies to the invoking user and the sink that delivers them."""

from __future__ import annotations

from typing import Protocol

import msgspec

from .config import ChatConfig
from .exceptions import ChatDeliveryError, UpstreamError
from .http import is_success
from .serialization import json_encode
from .transport import HTTPClient, OutboundRequest


class AttachmentField(msgspec.Struct, frozen=True):
    title: str
    value: str
    short: bool = True


class Attachment(msgspec.Struct, frozen=True, omit_defaults=True):
    """Slack-style message attachment as understood by Mattermost."""

    text: str
    color: str | None = None
    fields: tuple[AttachmentField, ...] = ()


class Reply(msgspec.Struct, frozen=True):
    """Ephemeral reply shown only to the user who ran the command."""

    text: str = ""
    attachments: tuple[Attachment, ...] = ()


class CommandResponse(msgspec.Struct, frozen=True, omit_defaults=True):
    """Acknowledgement returned to the chat host; empty unless a field is set."""

    response_type: str | None = None
    text: str | None = None


class ChatSink(Protocol):
    async def post_ephemeral(self, user_id: str, channel_id: str, reply: Reply) -> None:  # pragma: no cover
        ...


class MattermostSink:
    """Post ephemeral messages through the Mattermost REST API as the bot user."""

    def __init__(self, config: ChatConfig, http: HTTPClient) -> None:
        self.config = config
        self._http = http

    async def post_ephemeral(self, user_id: str, channel_id: str, reply: Reply) -> None:
        if not self.config.server_url:
            raise ChatDeliveryError("Chat server URL is not configured")
        post: dict[str, object] = {
            "channel_id": channel_id,
            "user_id": self.config.bot_user_id,
            "message": reply.text,
        }
        if reply.attachments:
            post["props"] = {"attachments": reply.attachments}
        request = OutboundRequest(
            method="POST",
            url=self.config.server_url.rstrip("/") + "/api/v4/posts/ephemeral",
            headers=(
                ("authorization", f"Bearer {self.config.bot_token}"),
                ("content-type", "application/json"),
            ),
            body=json_encode({"user_id": user_id, "post": post}),
        )
        try:
            response = await self._http.send(request)
        except UpstreamError as exc:
            raise ChatDeliveryError(f"Could not deliver reply: {exc}") from exc
        if not is_success(response.status):
            raise ChatDeliveryError(f"Chat server rejected reply with status {response.status}: {response.text()}")


__all__ = [
    "Attachment",
    "AttachmentField",
    "ChatSink",
    "CommandResponse",
    "MattermostSink",
    "Reply",
]
