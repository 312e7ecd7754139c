from __future__ import annotations

import pytest
from msgspec import structs

from deskops.chat import CommandResponse, Reply
from deskops.commands import CommandArgs
from deskops.credentials import CredentialMode, CredentialResolver
from deskops.engine import CommandEngine
from deskops.exceptions import ChatDeliveryError, UpstreamError
from deskops.handlers import DESCRIPTION_LIMIT, DETAILS_COLOR, HELP_HEADER, help_text, truncate
from deskops.helpdesk import CommentVisibility, Organization, Ticket, TicketComment, User
from deskops.oauth import OAuthFlowController
from deskops.serialization import json_encode
from deskops.sessions import InMemoryCredentialStore
from deskops.testing import RecordingChatSink
from deskops.transport import HTTPClient
from tests.support import FakeTicketService, FakeTransport, make_config

UPDATE_USAGE = "/zendesk update private <case-number> <comment>"
NOT_CONNECTED = "Your Zendesk account is not connected. Run `/zendesk connect` first."


class _Harness:
    def __init__(self, *, shared: bool = False) -> None:
        config = make_config()
        if shared:
            helpdesk = structs.replace(config.helpdesk, username="agent@acme.test", password="pw")
            config = make_config(helpdesk=helpdesk)
        self.store = InMemoryCredentialStore()
        self.transport = FakeTransport()
        self.tickets = FakeTicketService()
        self.sink = RecordingChatSink()
        http = HTTPClient(timeout=1.0, transport=self.transport)
        self.engine = CommandEngine(
            config,
            resolver=CredentialResolver(config.helpdesk, self.store),
            oauth=OAuthFlowController(config, self.store, http),
            tickets=self.tickets.factory,
            sink=self.sink,
        )

    def connect(self, user_id: str = "u1") -> None:
        self.store.put(user_id, f"{user_id}-token")

    async def run(self, text: str, user_id: str = "u1") -> Reply:
        return await self.engine.run(CommandArgs(command=text, user_id=user_id, channel_id="c1"))


@pytest.mark.asyncio
async def test_execute_posts_reply_and_returns_empty_acknowledgement() -> None:
    harness = _Harness()

    response = await harness.engine.execute(CommandArgs(command="/zendesk help", user_id="u1", channel_id="c1"))

    assert response == CommandResponse()
    assert json_encode(response) == b"{}"
    user_id, channel_id, reply = harness.sink.posts[0]
    assert (user_id, channel_id) == ("u1", "c1")
    assert reply.text.startswith(HELP_HEADER)


@pytest.mark.asyncio
async def test_delivery_failures_do_not_break_the_acknowledgement() -> None:
    harness = _Harness()

    class _BrokenSink:
        async def post_ephemeral(self, user_id: str, channel_id: str, reply: Reply) -> None:
            raise ChatDeliveryError("chat is down")

    harness.engine._sink = _BrokenSink()

    assert await harness.engine.execute(CommandArgs(command="/zendesk help", user_id="u1")) == CommandResponse()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text",
    ["/zendesk", "/zendesk help", "/zendesk frobnicate 1", "/zendesk latest", "", "/jira x"],
)
async def test_unknown_or_empty_commands_show_help(text: str) -> None:
    harness = _Harness()
    reply = await harness.run(text)
    assert reply.text == help_text("zendesk")
    assert harness.tickets.calls == []


def test_help_lists_every_command() -> None:
    text = help_text("zendesk")
    assert text.startswith("###### Mattermost Zendesk Plugin - Slash Command Help\n")
    for usage in (
        "/zendesk status <case-number>",
        "/zendesk details <case-number>",
        "/zendesk latest private <case-number>",
        "/zendesk latest public <case-number>",
        "/zendesk update private <case-number> <comment>",
        "/zendesk update public <case-number> <comment>",
        "/zendesk connect",
        "/zendesk disconnect",
        "/zendesk help",
    ):
        assert f"* `{usage}`" in text


@pytest.mark.asyncio
async def test_status_with_non_numeric_id_makes_no_external_call() -> None:
    harness = _Harness(shared=True)
    harness.connect()

    reply = await harness.run("/zendesk status abc")

    assert reply.text == "Case number must be a positive whole number, got `abc`."
    assert harness.tickets.calls == []
    assert harness.tickets.handles == []
    assert harness.transport.calls == []


@pytest.mark.asyncio
async def test_status_without_id_shows_usage() -> None:
    harness = _Harness()
    reply = await harness.run("/zendesk status")
    assert reply.text == "Please specify a case number in the form `/zendesk status <case-number>`."


@pytest.mark.asyncio
async def test_status_uses_the_callers_session() -> None:
    harness = _Harness(shared=True)
    harness.connect()
    harness.tickets.tickets[42] = Ticket(id=42, status="open")

    reply = await harness.run("/zendesk status 42")

    assert reply.text == "open"
    assert harness.tickets.calls == [("fetch_ticket", 42)]
    assert harness.tickets.handles[0].mode is CredentialMode.USER
    assert harness.tickets.handles[0].authorization == "Bearer u1-token"


@pytest.mark.asyncio
async def test_reads_fall_back_to_the_shared_credential() -> None:
    harness = _Harness(shared=True)
    harness.tickets.tickets[42] = Ticket(id=42, status="pending")

    reply = await harness.run("/zendesk status 42")

    assert reply.text == "pending"
    assert harness.tickets.handles[0].mode is CredentialMode.SHARED


@pytest.mark.asyncio
async def test_reads_require_a_session_without_shared_credential() -> None:
    harness = _Harness()
    reply = await harness.run("/zendesk status 42")
    assert reply.text == NOT_CONNECTED
    assert harness.tickets.calls == []


@pytest.mark.asyncio
async def test_status_reports_missing_status() -> None:
    harness = _Harness()
    harness.connect()
    harness.tickets.tickets[7] = Ticket(id=7)
    assert (await harness.run("/zendesk status 7")).text == "Ticket #7 has no status."


@pytest.mark.asyncio
async def test_upstream_errors_are_shown_to_the_user() -> None:
    harness = _Harness()
    harness.connect()
    harness.tickets.failure = UpstreamError("Fetching ticket failed with status 503: down", status=503)

    reply = await harness.run("/zendesk status 42")

    assert reply.text == "Fetching ticket failed with status 503: down"


@pytest.mark.asyncio
async def test_unexpected_errors_are_contained() -> None:
    harness = _Harness()
    harness.connect()

    def explode(handle):
        raise RuntimeError("boom")

    harness.engine._tickets = explode

    reply = await harness.run("/zendesk status 42")

    assert reply.text == "Something went wrong: boom"


@pytest.mark.asyncio
async def test_details_renders_attachment() -> None:
    harness = _Harness()
    harness.connect()
    harness.tickets.tickets[42] = Ticket(
        id=42,
        subject="Printer on fire",
        description="It is very hot",
        status="open",
        priority="urgent",
        organization_id=3,
        assignee=User(id=1, name="Agent", email="agent@acme.test"),
        requester=User(id=2, name="Customer"),
    )
    harness.tickets.organizations[3] = Organization(id=3, name="Acme")

    reply = await harness.run("/zendesk details 42")

    assert reply.text == ""
    (attachment,) = reply.attachments
    assert attachment.color == DETAILS_COLOR
    assert attachment.text == "[42: Printer on fire](https://acme.zendesk.com/agent/tickets/42)\n\nIt is very hot\n"
    assert [(f.title, f.value) for f in attachment.fields] == [
        ("Status", "open"),
        ("Assignee", "agent@acme.test"),
        ("Requester", "Customer"),
        ("Organization", "Acme"),
        ("Priority", "urgent"),
    ]


@pytest.mark.asyncio
async def test_details_without_organization_skips_lookup() -> None:
    harness = _Harness()
    harness.connect()
    harness.tickets.tickets[5] = Ticket(id=5, subject="Hi")

    reply = await harness.run("/zendesk details 5")

    assert reply.attachments[0].fields == ()
    assert [name for name, _ in harness.tickets.calls] == ["fetch_ticket"]


def test_truncate_respects_limit() -> None:
    long = "x" * (DESCRIPTION_LIMIT + 10)
    assert len(truncate(long, DESCRIPTION_LIMIT)) == DESCRIPTION_LIMIT
    assert truncate(long, DESCRIPTION_LIMIT).endswith("...")
    assert truncate("short", DESCRIPTION_LIMIT) == "short"


@pytest.mark.asyncio
async def test_latest_private_returns_newest_matching_comment() -> None:
    harness = _Harness()
    harness.connect()
    harness.tickets.comments[42] = [
        TicketComment(id=1, body="old note", public=False),
        TicketComment(id=2, body="customer reply", public=True),
        TicketComment(id=3, body="new note", public=False),
        TicketComment(id=4, body="agent reply", public=True),
    ]

    assert (await harness.run("/zendesk latest private 42")).text == "new note"
    assert (await harness.run("/zendesk latest public 42")).text == "agent reply"


@pytest.mark.asyncio
async def test_latest_public_without_public_comments_reports_absence() -> None:
    harness = _Harness()
    harness.connect()
    harness.tickets.comments[42] = [TicketComment(id=1, body="internal", public=False)]

    reply = await harness.run("/zendesk latest public 42")

    assert reply.text == "No public comment found on ticket #42."


@pytest.mark.asyncio
async def test_latest_private_on_empty_ticket_reports_absence() -> None:
    harness = _Harness()
    harness.connect()
    reply = await harness.run("/zendesk latest private 8")
    assert reply.text == "No private comment found on ticket #8."


@pytest.mark.asyncio
async def test_update_private_posts_body_with_internal_whitespace() -> None:
    harness = _Harness()
    harness.connect()

    reply = await harness.run("  /zendesk  update   private   42   hello   world  ")

    assert harness.tickets.calls == [("post_comment", (42, "hello   world", CommentVisibility.PRIVATE))]
    assert reply.text == "Private comment [hello   world] was added to ticket #42"


@pytest.mark.asyncio
async def test_update_public_uses_public_visibility() -> None:
    harness = _Harness()
    harness.connect()

    reply = await harness.run("/zendesk update public 9 Thanks for waiting")

    assert harness.tickets.calls == [("post_comment", (9, "Thanks for waiting", CommentVisibility.PUBLIC))]
    assert reply.text == "Public comment [Thanks for waiting] was added to ticket #9"


@pytest.mark.asyncio
async def test_update_requires_a_session_even_with_shared_credential() -> None:
    harness = _Harness(shared=True)

    reply = await harness.run("/zendesk update public 9 hi")

    assert reply.text == NOT_CONNECTED
    assert harness.tickets.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text, message",
    [
        ("/zendesk update private", f"Please specify a case number in the form `{UPDATE_USAGE}`."),
        ("/zendesk update private 42", f"Please add the comment text in the form `{UPDATE_USAGE}`."),
        ("/zendesk update private x hi", "Case number must be a positive whole number, got `x`."),
    ],
)
async def test_update_validates_input_before_calling_out(text: str, message: str) -> None:
    harness = _Harness()
    harness.connect()

    reply = await harness.run(text)

    assert reply.text == message
    assert harness.tickets.calls == []


@pytest.mark.asyncio
async def test_connect_returns_link() -> None:
    harness = _Harness()
    reply = await harness.run("/zendesk connect")
    link = "https://chat.example.com/plugins/zendesk/user/connect"
    assert reply.text == f"[Click here to link your Zendesk account]({link})"


@pytest.mark.asyncio
async def test_connect_with_arguments_shows_help() -> None:
    harness = _Harness()
    assert (await harness.run("/zendesk connect now")).text == help_text("zendesk")


@pytest.mark.asyncio
async def test_disconnect_forgets_token() -> None:
    harness = _Harness()
    harness.connect()

    assert (await harness.run("/zendesk disconnect")).text == "Your Zendesk account has been disconnected."
    assert harness.store.get("u1") is None
    assert (await harness.run("/zendesk disconnect")).text == "You are not connected to Zendesk."


@pytest.mark.asyncio
async def test_sessions_are_per_user() -> None:
    harness = _Harness()
    harness.connect("u1")
    harness.tickets.tickets[1] = Ticket(id=1, status="open")

    assert (await harness.run("/zendesk status 1", user_id="u1")).text == "open"
    assert (await harness.run("/zendesk status 1", user_id="u2")).text == NOT_CONNECTED
