"""Per-verb command handlers."""

from __future__ import annotations

from typing import Awaitable, Callable

import msgspec

from .chat import Attachment, AttachmentField, Reply
from .commands import Command, Verb, VerbTable, parse_ticket_id
from .config import AppConfig
from .credentials import CredentialPolicy, CredentialResolver
from .exceptions import CommandInputError
from .helpdesk import CommentVisibility, Organization, Ticket, TicketService, TicketServiceFactory
from .oauth import OAuthFlowController

HELP_HEADER = "###### Mattermost Zendesk Plugin - Slash Command Help\n"

DETAILS_COLOR = "#95b7d0"
DESCRIPTION_LIMIT = 3000

VERB_POLICIES: dict[Verb, CredentialPolicy] = {
    Verb.STATUS: CredentialPolicy.SESSION_PREFERRED,
    Verb.DETAILS: CredentialPolicy.SESSION_PREFERRED,
    Verb.LATEST_PRIVATE: CredentialPolicy.SESSION_PREFERRED,
    Verb.LATEST_PUBLIC: CredentialPolicy.SESSION_PREFERRED,
    Verb.UPDATE_PRIVATE: CredentialPolicy.SESSION_REQUIRED,
    Verb.UPDATE_PUBLIC: CredentialPolicy.SESSION_REQUIRED,
}


class CommandContext(msgspec.Struct, frozen=True):
    """Everything a handler needs for one invocation."""

    command: Command
    config: AppConfig
    resolver: CredentialResolver
    tickets: TicketServiceFactory
    oauth: OAuthFlowController

    @property
    def trigger(self) -> str:
        return "/" + self.config.trigger.lstrip("/")

    def usage(self, verb: Verb, suffix: str = "<case-number>") -> str:
        return f"{self.trigger} {' '.join(verb.words)} {suffix}".rstrip()

    def client(self, policy: CredentialPolicy) -> TicketService:
        handle = self.resolver.for_policy(self.command.user_id, policy)
        return self.tickets(handle)


CommandHandler = Callable[[CommandContext], Awaitable[Reply]]


def help_text(trigger: str) -> str:
    trigger = "/" + trigger.lstrip("/")
    lines = (
        f"* `{trigger} status <case-number>` - Retrieve the current status of a case",
        f"* `{trigger} details <case-number>` - Return details of the case",
        f"* `{trigger} latest private <case-number>` - Retrieve the last internal comment posted to a case",
        f"* `{trigger} latest public <case-number>` - Retrieve the last public comment posted to a case",
        f"* `{trigger} update private <case-number> <comment>` - Post an internal comment to a case and notify agents",
        f"* `{trigger} update public <case-number> <comment>` - Post a public comment to a case and notify agents",
        f"* `{trigger} connect` - Connect your Zendesk account",
        f"* `{trigger} disconnect` - Disconnect your Zendesk account",
        f"* `{trigger} help` - Show Help",
    )
    return HELP_HEADER + "\n" + "\n".join(lines) + "\n"


async def execute_help(context: CommandContext) -> Reply:
    return Reply(text=help_text(context.config.trigger))


async def execute_status(context: CommandContext) -> Reply:
    ticket_id = context.command.ticket_id(context.usage(Verb.STATUS))
    client = context.client(VERB_POLICIES[Verb.STATUS])
    ticket = await client.fetch_ticket(ticket_id)
    if ticket.status is None:
        return Reply(text=f"Ticket #{ticket_id} has no status.")
    return Reply(text=ticket.status)


async def execute_details(context: CommandContext) -> Reply:
    ticket_id = context.command.ticket_id(context.usage(Verb.DETAILS))
    client = context.client(VERB_POLICIES[Verb.DETAILS])
    ticket = await client.fetch_ticket(ticket_id)
    organization = None
    if ticket.organization_id is not None:
        organization = await client.fetch_organization(ticket.organization_id)
    return Reply(attachments=(ticket_attachment(ticket, organization, context.config.helpdesk.origin),))


async def execute_latest_private(context: CommandContext) -> Reply:
    return await _latest_comment(context, Verb.LATEST_PRIVATE, CommentVisibility.PRIVATE)


async def execute_latest_public(context: CommandContext) -> Reply:
    return await _latest_comment(context, Verb.LATEST_PUBLIC, CommentVisibility.PUBLIC)


async def execute_update_private(context: CommandContext) -> Reply:
    return await _post_comment(context, Verb.UPDATE_PRIVATE, CommentVisibility.PRIVATE)


async def execute_update_public(context: CommandContext) -> Reply:
    return await _post_comment(context, Verb.UPDATE_PUBLIC, CommentVisibility.PUBLIC)


async def execute_connect(context: CommandContext) -> Reply:
    if context.command.args:
        return await execute_help(context)
    return Reply(text=f"[Click here to link your Zendesk account]({context.oauth.connect_url})")


async def execute_disconnect(context: CommandContext) -> Reply:
    if context.command.args:
        return await execute_help(context)
    if context.oauth.disconnect(context.command.user_id):
        return Reply(text="Your Zendesk account has been disconnected.")
    return Reply(text="You are not connected to Zendesk.")


async def _latest_comment(context: CommandContext, verb: Verb, visibility: CommentVisibility) -> Reply:
    ticket_id = context.command.ticket_id(context.usage(verb))
    client = context.client(VERB_POLICIES[verb])
    comment = await client.latest_comment(ticket_id, visibility)
    if comment is not None:
        return Reply(text=comment.body or "")
    return Reply(text=f"No {visibility.value} comment found on ticket #{ticket_id}.")


async def _post_comment(context: CommandContext, verb: Verb, visibility: CommentVisibility) -> Reply:
    usage = context.usage(verb, "<case-number> <comment>")
    command = context.command
    if not command.args:
        raise CommandInputError(f"Please specify a case number in the form `{usage}`.")
    ticket_id = parse_ticket_id(command.args[0])
    body = command.text_after(1)
    if not body:
        raise CommandInputError(f"Please add the comment text in the form `{usage}`.")
    client = context.client(VERB_POLICIES[verb])
    updated = await client.post_comment(ticket_id, body, visibility)
    return Reply(text=f"{visibility.label} comment [{body}] was added to ticket #{updated.id}")


def ticket_attachment(ticket: Ticket, organization: Organization | None, helpdesk_origin: str) -> Attachment:
    subject = ticket.subject or ""
    text = f"[{ticket.id}: {subject}]({helpdesk_origin}/agent/tickets/{ticket.id})"
    description = truncate(ticket.description or "", DESCRIPTION_LIMIT)
    if description:
        text += "\n\n" + description + "\n"

    fields: list[AttachmentField] = []
    if ticket.status is not None:
        fields.append(AttachmentField(title="Status", value=ticket.status))
    if ticket.assignee is not None and ticket.assignee.email is not None:
        fields.append(AttachmentField(title="Assignee", value=ticket.assignee.email))
    if ticket.requester is not None and ticket.requester.name is not None:
        fields.append(AttachmentField(title="Requester", value=ticket.requester.name))
    if organization is not None and organization.name is not None:
        fields.append(AttachmentField(title="Organization", value=organization.name))
    if ticket.priority is not None:
        fields.append(AttachmentField(title="Priority", value=ticket.priority))
    return Attachment(text=text, color=DETAILS_COLOR, fields=tuple(fields))


def truncate(value: str, limit: int) -> str:
    if len(value) <= limit or limit < 0:
        return value
    if limit > 3:
        return value[: limit - 3] + "..."
    return value[:limit]


def build_verb_table() -> VerbTable[CommandHandler]:
    """Bind every :class:`Verb` to its handler; help doubles as the default."""

    table: VerbTable[CommandHandler] = VerbTable(
        {
            Verb.STATUS: execute_status,
            Verb.DETAILS: execute_details,
            Verb.LATEST_PRIVATE: execute_latest_private,
            Verb.LATEST_PUBLIC: execute_latest_public,
            Verb.UPDATE_PRIVATE: execute_update_private,
            Verb.UPDATE_PUBLIC: execute_update_public,
            Verb.CONNECT: execute_connect,
            Verb.DISCONNECT: execute_disconnect,
            Verb.HELP: execute_help,
        },
        default=execute_help,
    )
    table.require(Verb)
    return table


__all__ = [
    "VERB_POLICIES",
    "CommandContext",
    "CommandHandler",
    "build_verb_table",
    "help_text",
    "ticket_attachment",
    "truncate",
]
