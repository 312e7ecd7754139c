"""Resolve which helpdesk credential a command runs under."""

from __future__ import annotations

import base64
from enum import Enum

from msgspec import Struct

from .config import HelpdeskConfig, derive_host_label
from .exceptions import ConfigurationError, NotConnected
from .sessions import CredentialStore


class CredentialMode(str, Enum):
    SHARED = "shared"
    USER = "user"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class CredentialPolicy(str, Enum):
    """How a handler obtains its credential.

    ``SESSION_REQUIRED`` handlers act only as the invoking user.
    ``SESSION_PREFERRED`` handlers act as the invoking user when connected and
    fall back to the shared service account otherwise.
    """

    SESSION_REQUIRED = "session_required"
    SESSION_PREFERRED = "session_preferred"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class AuthorizedClientHandle(Struct, frozen=True):
    """A credential bound to the helpdesk API host for one request."""

    mode: CredentialMode
    host_label: str
    api_domain: str
    authorization: str
    user_id: str | None = None

    @property
    def base_url(self) -> str:
        return f"https://{self.host_label}.{self.api_domain}/api/v2"

    def headers(self) -> dict[str, str]:
        return {"authorization": self.authorization, "accept": "application/json"}

    def __repr__(self) -> str:
        return (
            f"AuthorizedClientHandle(mode={self.mode.value!r}, host_label={self.host_label!r}, "
            f"api_domain={self.api_domain!r}, user_id={self.user_id!r})"
        )


class CredentialResolver:
    """Build :class:`AuthorizedClientHandle` values from the shared account or a user's token."""

    def __init__(self, config: HelpdeskConfig, store: CredentialStore) -> None:
        self.config = config
        self._store = store

    def is_connected(self, user_id: str) -> bool:
        return self._store.get(user_id) is not None

    def resolve(self, user_id: str) -> AuthorizedClientHandle:
        """Return a handle carrying ``user_id``'s OAuth token or raise :class:`NotConnected`."""

        entry = self._store.get(user_id)
        if entry is None:
            raise NotConnected(user_id)
        return AuthorizedClientHandle(
            mode=CredentialMode.USER,
            host_label=derive_host_label(self.config.url),
            api_domain=self.config.api_domain,
            authorization=f"Bearer {entry.access_token}",
            user_id=user_id,
        )

    def shared(self) -> AuthorizedClientHandle:
        if not self.config.has_shared_credential:
            raise ConfigurationError("No shared helpdesk credential is configured")
        raw = f"{self.config.username}:{self.config.password}".encode("utf-8")
        return AuthorizedClientHandle(
            mode=CredentialMode.SHARED,
            host_label=derive_host_label(self.config.url),
            api_domain=self.config.api_domain,
            authorization="Basic " + base64.b64encode(raw).decode("ascii"),
        )

    def for_policy(self, user_id: str, policy: CredentialPolicy) -> AuthorizedClientHandle:
        try:
            return self.resolve(user_id)
        except NotConnected:
            if policy is CredentialPolicy.SESSION_PREFERRED and self.config.has_shared_credential:
                return self.shared()
            raise


__all__ = [
    "AuthorizedClientHandle",
    "CredentialMode",
    "CredentialPolicy",
    "CredentialResolver",
]
