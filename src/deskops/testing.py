"""Testing helpers."""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import urlencode

from .application import DeskOpsApp
from .chat import Reply
from .config import USER_ID_HEADER
from .responses import Response
from .serialization import json_encode


class TestClient:
    """Async test client that executes requests in-process."""

    __test__ = False

    def __init__(self, app: DeskOpsApp) -> None:
        self.app = app

    async def __aenter__(self) -> "TestClient":
        await self.app.startup()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.app.shutdown()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        form: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        user_id: str | None = None,
    ) -> Response:
        payload = b""
        request_headers = dict(headers or {})
        if user_id is not None:
            request_headers.setdefault(USER_ID_HEADER, user_id)
        if json is not None:
            payload = json_encode(json)
            request_headers.setdefault("content-type", "application/json")
        elif form is not None:
            payload = urlencode(form, doseq=True).encode("utf-8")
            request_headers.setdefault("content-type", "application/x-www-form-urlencoded")
        query_string = urlencode(query or {}, doseq=True)
        return await self.app.dispatch(
            method,
            path,
            query_string=query_string,
            headers=request_headers,
            body=payload,
        )

    async def get(
        self,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        user_id: str | None = None,
    ) -> Response:
        return await self.request("GET", path, query=query, headers=headers, user_id=user_id)

    async def post(
        self,
        path: str,
        *,
        json: Any | None = None,
        form: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        user_id: str | None = None,
    ) -> Response:
        return await self.request("POST", path, json=json, form=form, headers=headers, user_id=user_id)


class RecordingChatSink:
    """Chat sink that keeps every ephemeral reply in memory."""

    __test__ = False

    def __init__(self) -> None:
        self.posts: list[tuple[str, str, Reply]] = []

    async def post_ephemeral(self, user_id: str, channel_id: str, reply: Reply) -> None:
        self.posts.append((user_id, channel_id, reply))

    @property
    def last(self) -> Reply:
        if not self.posts:
            raise LookupError("No replies recorded")
        return self.posts[-1][2]


__all__ = ["RecordingChatSink", "TestClient"]
