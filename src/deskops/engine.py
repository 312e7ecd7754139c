"""Command dispatch: parse, route, resolve credentials, handle, reply."""

from __future__ import annotations

import logging

from .chat import ChatSink, CommandResponse, Reply
from .commands import Command, CommandArgs, CommandParseError, CommandParser, VerbMatch, VerbRouter, VerbTable
from .config import AppConfig
from .credentials import CredentialResolver
from .exceptions import ChatDeliveryError, CommandInputError, ConfigurationError, NotConnected, UpstreamError
from .handlers import CommandContext, CommandHandler, build_verb_table
from .helpdesk import TicketServiceFactory
from .oauth import OAuthFlowController
from .observability import Observability

logger = logging.getLogger(__name__)


class CommandEngine:
    """Turn one :class:`CommandArgs` into an ephemeral reply and an empty acknowledgement."""

    def __init__(
        self,
        config: AppConfig,
        *,
        resolver: CredentialResolver,
        oauth: OAuthFlowController,
        tickets: TicketServiceFactory,
        sink: ChatSink,
        observability: Observability | None = None,
        table: VerbTable[CommandHandler] | None = None,
    ) -> None:
        self.config = config
        self.parser = CommandParser(config.trigger)
        self.router: VerbRouter[CommandHandler] = VerbRouter(table or build_verb_table())
        self._resolver = resolver
        self._oauth = oauth
        self._tickets = tickets
        self._sink = sink
        self._observability = observability or Observability()

    async def execute(self, args: CommandArgs) -> CommandResponse:
        reply = await self.run(args)
        try:
            await self._sink.post_ephemeral(args.user_id, args.channel_id, reply)
        except ChatDeliveryError as exc:
            logger.warning("reply to %s was not delivered: %s", args.user_id, exc)
        return CommandResponse()

    async def run(self, args: CommandArgs) -> Reply:
        """Produce the reply for ``args`` without delivering it."""

        command, match = self._route(args)
        context = CommandContext(
            command=command,
            config=self.config,
            resolver=self._resolver,
            tickets=self._tickets,
            oauth=self._oauth,
        )
        verb = command.verb.value if command.verb is not None else "default"
        observation = self._observability.on_command_start(
            verb=verb,
            user_id=args.user_id,
            channel_id=args.channel_id,
        )
        try:
            reply = await match.handler(context)
        except CommandInputError as exc:
            self._observability.on_command_error(observation, exc, category="input")
            return Reply(text=str(exc))
        except NotConnected as exc:
            self._observability.on_command_error(observation, exc, category="not_connected")
            return Reply(text=self.not_connected_text())
        except UpstreamError as exc:
            self._observability.on_command_error(observation, exc, category="upstream")
            return Reply(text=str(exc))
        except ConfigurationError as exc:
            self._observability.on_command_error(observation, exc, category="configuration")
            return Reply(text=f"Zendesk is not configured correctly: {exc}")
        except Exception as exc:
            logger.exception("command %r failed", verb)
            self._observability.on_command_error(observation, exc, category="internal")
            return Reply(text=f"Something went wrong: {exc}")
        self._observability.on_command_success(observation)
        return reply

    def not_connected_text(self) -> str:
        trigger = "/" + self.config.trigger.lstrip("/")
        return f"Your Zendesk account is not connected. Run `{trigger} connect` first."

    def _route(self, args: CommandArgs) -> tuple[Command, VerbMatch[CommandHandler]]:
        try:
            line = self.parser.parse(args.command)
        except CommandParseError:
            fallback: VerbMatch[CommandHandler] = VerbMatch(verb=None, handler=self.router.table.default, consumed=0)
            return Command(raw=args.command, user_id=args.user_id, channel_id=args.channel_id, verb=None), fallback
        match = self.router.match(line.args)
        command = Command(
            raw=args.command,
            user_id=args.user_id,
            channel_id=args.channel_id,
            verb=match.verb,
            tokens=line.tokens[match.consumed :],
        )
        return command, match


__all__ = ["CommandEngine"]
