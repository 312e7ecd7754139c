"""Application configuration objects."""

from __future__ import annotations

import os
from typing import Any, Mapping
from urllib.parse import urlparse

import msgspec
from msgspec import Struct

from .exceptions import ConfigurationError
from .http import RETRYABLE_STATUSES
from .observability import ObservabilityConfig

USER_ID_HEADER = "mattermost-user-id"


class RetryConfig(Struct, frozen=True):
    """Bounded retry policy for idempotent upstream calls."""

    attempts: int = 2
    backoff: float = 0.2
    retry_statuses: tuple[int, ...] = RETRYABLE_STATUSES


class HelpdeskConfig(Struct, frozen=True):
    """Connection settings for the external helpdesk service."""

    url: str = ""
    client_id: str = "mattermost_integration_for_zendesk"
    client_secret: str = ""
    username: str = ""
    password: str = ""
    api_domain: str = "zendesk.com"
    oauth_scope: str = "read write"
    timeout: float = 10.0
    retry: RetryConfig = RetryConfig()

    @property
    def has_shared_credential(self) -> bool:
        return bool(self.username and self.password)

    @property
    def origin(self) -> str:
        """Return ``scheme://host`` of the configured URL, ignoring any path."""

        parsed = _parse_service_url(self.url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def host_label(self) -> str:
        return derive_host_label(self.url)

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.origin}/oauth/authorizations/new"

    @property
    def token_endpoint(self) -> str:
        return f"{self.origin}/oauth/tokens"


class ChatConfig(Struct, frozen=True):
    """Settings for posting ephemeral replies back to the chat server."""

    server_url: str = ""
    bot_token: str = ""
    bot_user_id: str = ""
    timeout: float = 5.0


class AppConfig(Struct, frozen=True):
    """Typed configuration for a :class:`~deskops.application.DeskOpsApp`."""

    site_url: str = "http://localhost:8065"
    plugin_path: str = "/plugins/zendesk"
    trigger: str = "zendesk"
    command_token: str | None = None
    session_ttl: float | None = None
    helpdesk: HelpdeskConfig = HelpdeskConfig()
    chat: ChatConfig = ChatConfig()
    observability: ObservabilityConfig = ObservabilityConfig()

    @property
    def plugin_url(self) -> str:
        return self.site_url.rstrip("/") + "/" + self.plugin_path.strip("/")

    @property
    def redirect_uri(self) -> str:
        return f"{self.plugin_url}/oauth/redirect"

    def validate(self) -> "AppConfig":
        """Fail fast on settings the service cannot run without."""

        problems: list[str] = []
        try:
            derive_host_label(self.helpdesk.url)
        except ConfigurationError as exc:
            problems.append(str(exc))
        if not self.helpdesk.client_id:
            problems.append("Helpdesk OAuth client id is not configured")
        if not self.helpdesk.client_secret:
            problems.append("Helpdesk OAuth client secret is not configured")
        if not self.command_token:
            problems.append("Slash command token is not configured")
        if not self.site_url.strip():
            problems.append("Site URL is not configured")
        if not self.trigger.strip() or any(ch.isspace() for ch in self.trigger):
            problems.append(f"Invalid command trigger {self.trigger!r}")
        if self.helpdesk.timeout <= 0:
            problems.append("Helpdesk timeout must be positive")
        if self.helpdesk.retry.attempts < 1:
            problems.append("Retry attempts must be at least 1")
        if self.session_ttl is not None and self.session_ttl <= 0:
            problems.append("Session TTL must be positive when set")
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self


_ENV_KEYS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("DESKOPS_SITE_URL", ("site_url",)),
    ("DESKOPS_PLUGIN_PATH", ("plugin_path",)),
    ("DESKOPS_TRIGGER", ("trigger",)),
    ("DESKOPS_COMMAND_TOKEN", ("command_token",)),
    ("DESKOPS_SESSION_TTL", ("session_ttl",)),
    ("DESKOPS_HELPDESK_URL", ("helpdesk", "url")),
    ("DESKOPS_CLIENT_ID", ("helpdesk", "client_id")),
    ("DESKOPS_CLIENT_SECRET", ("helpdesk", "client_secret")),
    ("DESKOPS_HELPDESK_USER", ("helpdesk", "username")),
    ("DESKOPS_HELPDESK_PASSWORD", ("helpdesk", "password")),
    ("DESKOPS_HELPDESK_TIMEOUT", ("helpdesk", "timeout")),
    ("DESKOPS_CHAT_URL", ("chat", "server_url")),
    ("DESKOPS_BOT_TOKEN", ("chat", "bot_token")),
    ("DESKOPS_BOT_USER_ID", ("chat", "bot_user_id")),
)


def load_config(environ: Mapping[str, str] | None = None) -> AppConfig:
    """Build an :class:`AppConfig` from ``DESKOPS_*`` environment variables."""

    env = os.environ if environ is None else environ
    raw: dict[str, Any] = {}
    for name, path in _ENV_KEYS:
        value = env.get(name)
        if value is None or value == "":
            continue
        target = raw
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = value
    try:
        return msgspec.convert(raw, type=AppConfig, strict=False)
    except msgspec.ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def _parse_service_url(url: str) -> Any:
    candidate = (url or "").strip()
    if not candidate:
        raise ConfigurationError("Helpdesk URL is not configured")
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        parsed = urlparse(candidate)
        hostname = parsed.hostname
    except ValueError as exc:
        raise ConfigurationError(f"Helpdesk URL {url!r} is not a valid URL") from exc
    if not hostname:
        raise ConfigurationError(f"Helpdesk URL {url!r} has no host")
    return parsed


def derive_host_label(url: str) -> str:
    """Return the leading hostname label of ``url`` (``acme`` for ``acme.zendesk.com``)."""

    hostname = _parse_service_url(url).hostname
    label = hostname.split(".", 1)[0]
    if not label:
        raise ConfigurationError(f"Helpdesk URL {url!r} has no host")
    return label


__all__ = [
    "USER_ID_HEADER",
    "AppConfig",
    "ChatConfig",
    "HelpdeskConfig",
    "RetryConfig",
    "derive_host_label",
    "load_config",
]
