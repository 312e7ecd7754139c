"""OAuth authorization-code flow against the helpdesk provider."""

from __future__ import annotations

from enum import Enum
from urllib.parse import quote, urlencode

import msgspec
from msgspec import Struct

from .config import AppConfig
from .exceptions import ConfigurationError, UpstreamError
from .http import is_success
from .observability import Observability
from .serialization import json_decode, json_encode
from .sessions import CredentialStore
from .transport import HTTPClient, OutboundRequest

FAILURE_PREFIX = "Something went wrong: "


class OAuthState(str, Enum):
    UNAUTHORIZED = "unauthorized"
    PENDING_CALLBACK = "pending_callback"
    AUTHORIZED = "authorized"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class OAuthExchangeState(Struct, frozen=True):
    """Body of the server-to-server code-for-token request."""

    code: str
    client_id: str
    client_secret: str
    redirect_uri: str
    scope: str
    grant_type: str = "authorization_code"


class OAuthAccessResponse(Struct, frozen=True):
    access_token: str
    token_type: str | None = None
    scope: str | None = None


class OAuthOutcome(Struct, frozen=True):
    state: OAuthState
    message: str
    user_id: str | None = None

    @property
    def connected(self) -> bool:
        return self.state is OAuthState.AUTHORIZED


class OAuthFlowController:
    """Drive connect → callback → token exchange and record the resulting token.

    Nothing is stored between the redirect and the callback; a failed callback
    leaves the store untouched and the user starts again from ``connect``.
    """

    def __init__(
        self,
        config: AppConfig,
        store: CredentialStore,
        http: HTTPClient,
        *,
        observability: Observability | None = None,
    ) -> None:
        self.config = config
        self._store = store
        self._http = http
        self._observability = observability or Observability()

    @property
    def connect_url(self) -> str:
        return f"{self.config.plugin_url}/user/connect"

    def authorization_url(self) -> str:
        helpdesk = self.config.helpdesk
        query = urlencode(
            {
                "response_type": "code",
                "redirect_uri": self.config.redirect_uri,
                "client_id": helpdesk.client_id,
                "scope": helpdesk.oauth_scope,
            },
            quote_via=quote,
        )
        return f"{helpdesk.authorize_endpoint}?{query}"

    def exchange_state(self, code: str) -> OAuthExchangeState:
        helpdesk = self.config.helpdesk
        return OAuthExchangeState(
            code=code,
            client_id=helpdesk.client_id,
            client_secret=helpdesk.client_secret,
            redirect_uri=self.config.redirect_uri,
            scope=helpdesk.oauth_scope,
        )

    async def complete(
        self,
        *,
        user_id: str | None,
        code: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> OAuthOutcome:
        """Handle the provider callback for ``user_id``."""

        if error:
            reason = error_description or error
            return self._failed(user_id, f"Zendesk did not authorize the connection: {reason}", "denied")
        if not code:
            return self._failed(user_id, FAILURE_PREFIX + "missing authorization code", "missing_code")
        if not user_id:
            return self._failed(user_id, FAILURE_PREFIX + "missing Mattermost user identity", "missing_user")
        try:
            token = await self._exchange(code)
        except UpstreamError as exc:
            return self._failed(user_id, str(exc), "exchange_failed")
        except ConfigurationError as exc:
            return self._failed(user_id, FAILURE_PREFIX + str(exc), "misconfigured")
        self._store.put(user_id, token)
        self._observability.on_oauth_exchange(user_id=user_id, outcome=OAuthState.AUTHORIZED.value)
        return OAuthOutcome(
            state=OAuthState.AUTHORIZED,
            message=f"Successfully connected Mattermost account {user_id} with your Zendesk account.",
            user_id=user_id,
        )

    def disconnect(self, user_id: str) -> bool:
        """Forget ``user_id``'s token; ``False`` when there was nothing to forget."""

        return self._store.delete(user_id)

    async def _exchange(self, code: str) -> str:
        payload = json_encode(self.exchange_state(code))
        request = OutboundRequest(
            method="POST",
            url=self.config.helpdesk.token_endpoint,
            headers=(("content-type", "application/json"), ("accept", "application/json")),
            body=payload,
        )
        try:
            response = await self._http.send(request)
        except UpstreamError as exc:
            raise UpstreamError(FAILURE_PREFIX + exc.detail, status=exc.status) from exc
        if not is_success(response.status):
            raise UpstreamError(
                "Could not obtain OAuth access token from Zendesk: " + response.text(),
                status=response.status,
            )
        try:
            decoded = json_decode(response.body, type=OAuthAccessResponse)
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            raise UpstreamError(FAILURE_PREFIX + str(exc), status=response.status) from exc
        if not decoded.access_token:
            raise UpstreamError(FAILURE_PREFIX + "token response did not include an access token")
        return decoded.access_token

    def _failed(self, user_id: str | None, message: str, detail: str) -> OAuthOutcome:
        self._observability.on_oauth_exchange(user_id=user_id, outcome="failed", detail=detail)
        return OAuthOutcome(state=OAuthState.PENDING_CALLBACK, message=message, user_id=user_id)


__all__ = [
    "OAuthAccessResponse",
    "OAuthExchangeState",
    "OAuthFlowController",
    "OAuthOutcome",
    "OAuthState",
]
