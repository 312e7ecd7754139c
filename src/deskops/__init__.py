"""Helpdesk slash commands and per-user OAuth for Mattermost."""

from .application import CommandPayload, DeskOpsApp
from .chat import Attachment, AttachmentField, ChatSink, CommandResponse, MattermostSink, Reply
from .commands import Command, CommandArgs, CommandParser, Verb, VerbRouter, VerbTable
from .config import AppConfig, ChatConfig, HelpdeskConfig, RetryConfig, load_config
from .credentials import AuthorizedClientHandle, CredentialMode, CredentialPolicy, CredentialResolver
from .engine import CommandEngine
from .exceptions import (
    ChatDeliveryError,
    CommandInputError,
    ConfigurationError,
    DeskOpsError,
    HTTPError,
    NotConnected,
    TransportError,
    UpstreamError,
)
from .helpdesk import CommentVisibility, HelpdeskClient, Organization, Ticket, TicketComment, TicketService
from .oauth import OAuthFlowController, OAuthOutcome, OAuthState
from .observability import Observability, ObservabilityConfig
from .sessions import CredentialStore, InMemoryCredentialStore, StoredToken
from .testing import RecordingChatSink, TestClient
from .transport import HTTPClient, OutboundRequest, RetryPolicy, TransportResponse

__all__ = [
    "AppConfig",
    "Attachment",
    "AttachmentField",
    "AuthorizedClientHandle",
    "ChatConfig",
    "ChatDeliveryError",
    "ChatSink",
    "Command",
    "CommandArgs",
    "CommandEngine",
    "CommandInputError",
    "CommandParser",
    "CommandPayload",
    "CommandResponse",
    "CommentVisibility",
    "ConfigurationError",
    "CredentialMode",
    "CredentialPolicy",
    "CredentialResolver",
    "CredentialStore",
    "DeskOpsApp",
    "DeskOpsError",
    "HTTPClient",
    "HTTPError",
    "HelpdeskClient",
    "HelpdeskConfig",
    "InMemoryCredentialStore",
    "MattermostSink",
    "NotConnected",
    "OAuthFlowController",
    "OAuthOutcome",
    "OAuthState",
    "Observability",
    "ObservabilityConfig",
    "Organization",
    "OutboundRequest",
    "RecordingChatSink",
    "Reply",
    "RetryConfig",
    "RetryPolicy",
    "StoredToken",
    "TestClient",
    "Ticket",
    "TicketComment",
    "TicketService",
    "TransportError",
    "TransportResponse",
    "UpstreamError",
    "Verb",
    "VerbRouter",
    "VerbTable",
    "load_config",
]
