"""Request primitives."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, MutableMapping, TypeVar
from urllib.parse import parse_qsl

import msgspec

from .exceptions import HTTPError
from .http import Status
from .serialization import json_decode

T = TypeVar("T")

BodyLoader = Callable[[], Awaitable[bytes | bytearray | memoryview | None]]

_MAX_FORM_FIELDS = 1024


class Request:
    """Immutable view of an incoming request."""

    __slots__ = (
        "_body",
        "_body_loader",
        "_body_lock",
        "_form_cache",
        "_json_cache",
        "_query_params",
        "_raw_query",
        "headers",
        "method",
        "path",
        "path_params",
    )

    def __init__(
        self,
        *,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        path_params: Mapping[str, str] | None = None,
        query_string: str | None = None,
        body: bytes | None = None,
        body_loader: BodyLoader | None = None,
    ) -> None:
        if body is not None and body_loader is not None:
            raise ValueError("Request body and body_loader are mutually exclusive")
        self.method = method.upper()
        self.path = path
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.path_params = dict(path_params or {})
        self._raw_query = query_string or ""
        self._body: bytes | None = body if body is not None else None
        self._body_loader = body_loader
        self._body_lock = asyncio.Lock()
        self._json_cache: Any = msgspec.UNSET
        self._form_cache: dict[str, str] | None = None
        self._query_params: MutableMapping[str, list[str]] | None = None

    @staticmethod
    def _parse_pairs(raw: str) -> list[tuple[str, str]]:
        try:
            return parse_qsl(raw, keep_blank_values=True, max_num_fields=_MAX_FORM_FIELDS)
        except ValueError as exc:
            raise HTTPError(Status.BAD_REQUEST, {"detail": "too_many_fields"}) from exc

    @property
    def query_params(self) -> MutableMapping[str, list[str]]:
        if self._query_params is None:
            parsed: MutableMapping[str, list[str]] = {}
            for key, value in self._parse_pairs(self._raw_query):
                parsed.setdefault(key, []).append(value)
            self._query_params = parsed
        return self._query_params

    @property
    def content_type(self) -> str:
        return (self.headers.get("content-type") or "").split(";", 1)[0].strip().lower()

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    async def _ensure_body(self) -> bytes:
        if self._body is None:
            loader = self._body_loader
            if loader is None:
                self._body = b""
            else:
                async with self._body_lock:
                    if self._body is None:
                        raw = await loader()
                        if raw is None:
                            self._body = b""
                        elif isinstance(raw, bytes):
                            self._body = raw
                        else:
                            self._body = bytes(raw)
                        self._body_loader = None
        body = self._body
        assert body is not None
        return body

    async def json(self, model: type[T] | None = None) -> T | Any:
        """Decode the JSON body using :mod:`msgspec`."""

        if self._json_cache is msgspec.UNSET:
            body = await self._ensure_body()
            if not body:
                self._json_cache = None
            else:
                try:
                    self._json_cache = json_decode(body)
                except msgspec.DecodeError as exc:
                    raise HTTPError(Status.BAD_REQUEST, {"detail": "invalid_json"}) from exc
        if model is None:
            return self._json_cache
        try:
            return msgspec.convert(self._json_cache, type=model)
        except msgspec.ValidationError as exc:
            raise HTTPError(Status.BAD_REQUEST, {"detail": str(exc)}) from exc

    async def form(self) -> dict[str, str]:
        """Return form values from the query string and a urlencoded body.

        Body values win over query values with the same name; only the first
        value of a repeated field is kept.
        """

        if self._form_cache is None:
            values: dict[str, str] = {}
            if self.method in {"POST", "PUT", "PATCH"} and self.content_type == "application/x-www-form-urlencoded":
                body = await self._ensure_body()
                try:
                    text = body.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise HTTPError(Status.BAD_REQUEST, {"detail": "invalid_form_encoding"}) from exc
                for key, value in self._parse_pairs(text):
                    values.setdefault(key, value)
            for key, items in self.query_params.items():
                if items:
                    values.setdefault(key, items[0])
            self._form_cache = values
        return self._form_cache

    async def text(self) -> str:
        body = await self._ensure_body()
        return body.decode()

    async def body(self) -> bytes:
        return await self._ensure_body()


__all__ = ["BodyLoader", "Request"]
