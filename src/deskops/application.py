"""Application core."""

from __future__ import annotations

import hmac
import inspect
from typing import Any, Awaitable, Callable, Mapping

import msgspec

from .chat import ChatSink, MattermostSink
from .commands import CommandArgs
from .config import USER_ID_HEADER, AppConfig
from .credentials import CredentialResolver
from .engine import CommandEngine
from .exceptions import ConfigurationError, HTTPError
from .helpdesk import TicketServiceFactory, client_factory
from .http import Status
from .oauth import FAILURE_PREFIX, OAuthFlowController
from .observability import Observability
from .requests import Request
from .responses import JSONResponse, PlainTextResponse, RedirectResponse, Response, exception_to_response
from .routing import Router
from .sessions import CredentialStore, InMemoryCredentialStore
from .transport import HTTPClient, RetryPolicy, TransportCallable

ROUTE_USER_CONNECT = "/user/connect"
ROUTE_OAUTH_REDIRECT = "/oauth/redirect"
ROUTE_OAUTH_COMPLETE = "/oauth/complete"
ROUTE_TEST = "/test"
ROUTE_COMMAND = "/command"


class CommandPayload(msgspec.Struct, frozen=True):
    """Slash command webhook body as posted by the chat server."""

    command: str = ""
    text: str = ""
    user_id: str = ""
    channel_id: str = ""
    team_id: str | None = None
    token: str | None = None

    def to_args(self) -> CommandArgs:
        line = " ".join(part for part in (self.command.strip(), self.text) if part)
        return CommandArgs(
            command=line,
            user_id=self.user_id,
            channel_id=self.channel_id,
            team_id=self.team_id,
            token=self.token,
        )


class DeskOpsApp:
    """ASGI application exposing the OAuth flow and the slash command webhook."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        store: CredentialStore | None = None,
        transport: TransportCallable | None = None,
        sink: ChatSink | None = None,
        tickets: TicketServiceFactory | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.config = (config or AppConfig()).validate()
        self.observability = observability or Observability(self.config.observability)
        self.store: CredentialStore = store or InMemoryCredentialStore(ttl=self.config.session_ttl)
        helpdesk = self.config.helpdesk
        self.helpdesk_http = HTTPClient(
            timeout=helpdesk.timeout,
            retry=RetryPolicy.from_config(helpdesk.retry),
            transport=transport,
            observability=self.observability,
        )
        chat_http = HTTPClient(timeout=self.config.chat.timeout, transport=transport, observability=self.observability)
        self.resolver = CredentialResolver(helpdesk, self.store)
        self.oauth = OAuthFlowController(self.config, self.store, self.helpdesk_http, observability=self.observability)
        self.sink: ChatSink = sink or MattermostSink(self.config.chat, chat_http)
        self.engine = CommandEngine(
            self.config,
            resolver=self.resolver,
            oauth=self.oauth,
            tickets=tickets or client_factory(self.helpdesk_http),
            sink=self.sink,
            observability=self.observability,
        )
        self.router = Router()
        self._startup_hooks: list[Callable[[], Awaitable[None] | None]] = []
        self._shutdown_hooks: list[Callable[[], Awaitable[None] | None]] = []
        self._register_routes()

    def _register_routes(self) -> None:
        self.router.add_route(ROUTE_USER_CONNECT, methods=("GET",), endpoint=self.user_connect, name="user_connect")
        for path in (ROUTE_OAUTH_REDIRECT, ROUTE_OAUTH_COMPLETE):
            self.router.add_route(path, methods=("GET", "POST"), endpoint=self.oauth_complete, name=path)
        self.router.add_route(ROUTE_TEST, methods=("GET",), endpoint=self.liveness, name="test")
        self.router.add_route(ROUTE_COMMAND, methods=("POST",), endpoint=self.command, name="command")

    # ------------------------------------------------------------------ endpoints
    async def user_connect(self, request: Request) -> Response:
        if not request.header(USER_ID_HEADER):
            raise HTTPError(Status.UNAUTHORIZED, {"detail": "not_authorized"})
        try:
            location = self.oauth.authorization_url()
        except ConfigurationError as exc:
            return PlainTextResponse(FAILURE_PREFIX + str(exc))
        return RedirectResponse(location)

    async def oauth_complete(self, request: Request) -> Response:
        try:
            form = await request.form()
        except HTTPError:
            return PlainTextResponse(FAILURE_PREFIX + "could not read the callback parameters")
        outcome = await self.oauth.complete(
            user_id=request.header(USER_ID_HEADER),
            code=form.get("code"),
            error=form.get("error"),
            error_description=form.get("error_description"),
        )
        return PlainTextResponse(outcome.message)

    async def liveness(self, request: Request) -> Response:
        return PlainTextResponse("Hello, world!")

    async def command(self, request: Request) -> Response:
        if request.content_type == "application/json":
            payload = await request.json(CommandPayload)
        else:
            try:
                payload = msgspec.convert(await request.form(), type=CommandPayload)
            except msgspec.ValidationError as exc:
                raise HTTPError(Status.BAD_REQUEST, {"detail": str(exc)}) from exc
        self._check_command_token(request, payload)
        if not payload.user_id:
            raise HTTPError(Status.BAD_REQUEST, {"detail": "missing_user_id"})
        acknowledgement = await self.engine.execute(payload.to_args())
        return JSONResponse(acknowledgement)

    def _check_command_token(self, request: Request, payload: CommandPayload) -> None:
        expected = self.config.command_token or ""
        supplied = payload.token
        if not supplied:
            header = request.header("authorization") or ""
            scheme, _, value = header.partition(" ")
            if scheme.lower() == "token":
                supplied = value.strip()
        if not supplied or not expected or not hmac.compare_digest(supplied, expected):
            raise HTTPError(Status.UNAUTHORIZED, {"detail": "invalid_command_token"})

    # ------------------------------------------------------------------ lifecycle
    def on_startup(self, func: Callable[[], Awaitable[None] | None]) -> Callable[[], Awaitable[None] | None]:
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[[], Awaitable[None] | None]) -> Callable[[], Awaitable[None] | None]:
        self._shutdown_hooks.append(func)
        return func

    async def startup(self) -> None:
        for hook in self._startup_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    async def shutdown(self) -> None:
        for hook in self._shutdown_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    # ------------------------------------------------------------------ request handling
    async def dispatch(
        self,
        method: str,
        path: str,
        *,
        query_string: str | None = None,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        body_loader: Callable[[], Awaitable[bytes]] | None = None,
    ) -> Response:
        request = Request(
            method=method,
            path=path,
            headers=headers or {},
            query_string=query_string or "",
            body=body,
            body_loader=None if body is not None else body_loader,
        )
        observation = self.observability.on_request_start(request)
        try:
            response = await self._handle(request)
        except HTTPError as exc:
            response = exception_to_response(exc)
            if exc.status == int(Status.METHOD_NOT_ALLOWED):
                allowed = ", ".join(self.router.allowed_methods(path))
                response = response.with_headers((("allow", allowed),))
        except Exception as exc:
            self.observability.on_request_error(observation, exc, status_code=int(Status.INTERNAL_SERVER_ERROR))
            raise
        return self.observability.on_request_success(observation, response)

    async def _handle(self, request: Request) -> Response:
        try:
            match = self.router.find(request.method, request.path)
        except LookupError:
            if self.router.allowed_methods(request.path):
                raise HTTPError(
                    Status.METHOD_NOT_ALLOWED,
                    {"detail": f"method {request.method} is not allowed"},
                ) from None
            raise HTTPError(Status.NOT_FOUND, {"detail": "not found"}) from None
        request.path_params = dict(match.params)
        return await match.route.endpoint(request)

    # ------------------------------------------------------------------ interface adapters
    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[[], Awaitable[Mapping[str, Any]]],
        send: Callable[[Mapping[str, Any]], Awaitable[None]],
    ) -> None:
        scope_type = scope.get("type")
        if scope_type == "http":
            await self._handle_http(scope, receive, send)
            return
        if scope_type == "lifespan":
            await self._handle_lifespan(receive, send)
            return
        raise RuntimeError("DeskOpsApp only supports HTTP and lifespan scopes")

    async def _handle_lifespan(
        self,
        receive: Callable[[], Awaitable[Mapping[str, Any]]],
        send: Callable[[Mapping[str, Any]], Awaitable[None]],
    ) -> None:
        while True:
            message = await receive()
            message_type = message.get("type")
            if message_type == "lifespan.startup":
                await self.startup()
                await send({"type": "lifespan.startup.complete"})
            elif message_type == "lifespan.shutdown":
                await self.shutdown()
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _handle_http(
        self,
        scope: Mapping[str, Any],
        receive: Callable[[], Awaitable[Mapping[str, Any]]],
        send: Callable[[Mapping[str, Any]], Awaitable[None]],
    ) -> None:
        headers = {key.decode().lower(): value.decode() for key, value in scope.get("headers", [])}

        async def load_body() -> bytes:
            buffer = bytearray()
            while True:
                message = await receive()
                message_type = message.get("type")
                if message_type == "http.disconnect":
                    break
                if message_type != "http.request":
                    continue
                buffer.extend(message.get("body", b""))
                if not message.get("more_body", False):
                    break
            return bytes(buffer)

        response = await self.dispatch(
            scope["method"],
            scope["path"],
            query_string=(scope.get("query_string") or b"").decode(),
            headers=headers,
            body_loader=load_body,
        )
        await send(
            {
                "type": "http.response.start",
                "status": response.status,
                "headers": [(k.encode("latin-1"), v.encode("latin-1")) for k, v in response.headers],
            }
        )
        await send({"type": "http.response.body", "body": response.body})


__all__ = ["CommandPayload", "DeskOpsApp"]
