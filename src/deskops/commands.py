"""Command line parsing and verb routing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Iterable, Mapping, Sequence, TypeVar

from msgspec import Struct

from .exceptions import CommandInputError, DeskOpsError

H = TypeVar("H")

VERB_SEPARATOR = "/"

_TOKEN_PATTERN = re.compile(r"\S+")


class Verb(str, Enum):
    """Every command variant the engine knows how to route."""

    STATUS = "status"
    DETAILS = "details"
    LATEST_PRIVATE = "latest/private"
    LATEST_PUBLIC = "latest/public"
    UPDATE_PRIVATE = "update/private"
    UPDATE_PUBLIC = "update/public"
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    HELP = "help"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value

    @property
    def words(self) -> tuple[str, ...]:
        return tuple(self.value.split(VERB_SEPARATOR))


class CommandParseError(DeskOpsError):
    """Raised when a raw line is not addressed to the registered trigger."""

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


class Token(Struct, frozen=True):
    """A whitespace-delimited word and its offsets in the raw line."""

    text: str
    start: int
    end: int


class CommandLine(Struct, frozen=True):
    """Result of parsing a raw line: the trigger plus the argument tokens."""

    raw: str
    trigger: str
    tokens: tuple[Token, ...]

    @property
    def args(self) -> tuple[str, ...]:
        return tuple(token.text for token in self.tokens)


class CommandArgs(Struct, frozen=True):
    """One invocation as delivered by the chat platform."""

    command: str
    user_id: str
    channel_id: str = ""
    team_id: str | None = None
    token: str | None = None


class Command(Struct, frozen=True):
    """An invocation after routing: the matched verb and the tokens left for its handler."""

    raw: str
    user_id: str
    channel_id: str
    verb: Verb | None
    tokens: tuple[Token, ...] = ()

    @property
    def args(self) -> tuple[str, ...]:
        return tuple(token.text for token in self.tokens)

    def text_after(self, count: int) -> str:
        """Return the raw text following the first ``count`` handler tokens.

        Internal whitespace is preserved; only the surrounding whitespace is
        trimmed.
        """

        if count <= 0:
            offset = self.tokens[0].start if self.tokens else len(self.raw)
        elif count > len(self.tokens):
            return ""
        else:
            offset = self.tokens[count - 1].end
        return self.raw[offset:].strip()

    def ticket_id(self, usage: str, *, exact: bool = True) -> int:
        """Parse the leading ticket number or raise :class:`CommandInputError` with ``usage``."""

        args = self.args
        if not args or (exact and len(args) != 1):
            raise CommandInputError(f"Please specify a case number in the form `{usage}`.")
        return parse_ticket_id(args[0])


def parse_ticket_id(value: str) -> int:
    if not value.isascii() or not value.isdigit():
        raise CommandInputError(f"Case number must be a positive whole number, got `{value}`.")
    number = int(value)
    if number <= 0:
        raise CommandInputError(f"Case number must be a positive whole number, got `{value}`.")
    return number


def tokenize(text: str) -> tuple[Token, ...]:
    return tuple(Token(match.group(0), match.start(), match.end()) for match in _TOKEN_PATTERN.finditer(text))


class CommandParser:
    """Split a raw line into tokens and check the trigger word."""

    def __init__(self, trigger: str) -> None:
        normalized = trigger.strip().lstrip("/")
        if not normalized:
            raise ValueError("Command trigger cannot be empty")
        self.trigger = "/" + normalized

    def parse(self, raw: str) -> CommandLine:
        tokens = tokenize(raw)
        if not tokens:
            raise CommandParseError("empty_command")
        if tokens[0].text != self.trigger:
            raise CommandParseError("unknown_trigger")
        return CommandLine(raw=raw, trigger=tokens[0].text, tokens=tokens[1:])


class VerbTable(Generic[H]):
    """Read-only mapping from verb-path to handler with a single default."""

    def __init__(self, handlers: Mapping[Verb | str, H], *, default: H) -> None:
        if default is None:
            raise ValueError("A verb table requires a default handler")
        entries: dict[str, tuple[Verb, H]] = {}
        for key, handler in handlers.items():
            try:
                verb = Verb(key)
            except ValueError as exc:
                raise ValueError(f"Unknown verb-path {key!r} in verb table") from exc
            if handler is None:
                raise ValueError(f"Verb-path {verb.value!r} has no handler")
            entries[verb.value] = (verb, handler)
        self._entries = entries
        self._default = default

    @property
    def default(self) -> H:
        return self._default

    def lookup(self, path: str) -> tuple[Verb, H] | None:
        return self._entries.get(path)

    def verbs(self) -> tuple[Verb, ...]:
        return tuple(verb for verb, _ in self._entries.values())

    def require(self, verbs: Iterable[Verb]) -> None:
        """Raise when any of ``verbs`` has no handler bound."""

        missing = sorted(verb.value for verb in verbs if verb.value not in self._entries)
        if missing:
            raise ValueError(f"Verb table is missing handlers for: {', '.join(missing)}")

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(slots=True, frozen=True)
class VerbMatch(Generic[H]):
    verb: Verb | None
    handler: H
    consumed: int


class VerbRouter(Generic[H]):
    """Resolve argument tokens to a handler by longest verb-path prefix."""

    def __init__(self, table: VerbTable[H], *, separator: str = VERB_SEPARATOR) -> None:
        self.table = table
        self.separator = separator

    def match(self, args: Sequence[str]) -> VerbMatch[H]:
        for n in range(len(args), 0, -1):
            found = self.table.lookup(self.separator.join(args[:n]))
            if found is not None:
                verb, handler = found
                return VerbMatch(verb=verb, handler=handler, consumed=n)
        return VerbMatch(verb=None, handler=self.table.default, consumed=0)

    def resolve(self, args: Sequence[str]) -> tuple[H, list[str]]:
        result = self.match(args)
        return result.handler, list(args[result.consumed :])


__all__ = [
    "VERB_SEPARATOR",
    "Command",
    "CommandArgs",
    "CommandLine",
    "CommandParseError",
    "CommandParser",
    "Token",
    "Verb",
    "VerbMatch",
    "VerbRouter",
    "VerbTable",
    "parse_ticket_id",
    "tokenize",
]
