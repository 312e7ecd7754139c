"""HTTP routing utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Mapping, MutableMapping, Sequence

import rure
from rure.regex import RegexObject

if TYPE_CHECKING:
    from .requests import Request
    from .responses import Response

Endpoint = Callable[["Request"], Awaitable["Response"]]


_PATH_PARAM_PATTERN = re.compile(r"{([a-zA-Z_][a-zA-Z0-9_]*)(?::([a-zA-Z_][a-zA-Z0-9_]*))?}")


@dataclass(slots=True)
class Route:
    path: str
    methods: tuple[str, ...]
    endpoint: Endpoint
    pattern: RegexObject
    param_names: tuple[str, ...]
    name: str | None = None


@dataclass(slots=True)
class RouteMatch:
    route: Route
    params: Mapping[str, str]


class Router:
    def __init__(self) -> None:
        self._routes: list[Route] = []
        self._routes_by_method: dict[str, list[Route]] = {}

    def add_route(
        self,
        path: str,
        *,
        methods: Sequence[str],
        endpoint: Endpoint,
        name: str | None = None,
    ) -> Route:
        pattern, param_names = _compile_path(path)
        normalized_methods = tuple(dict.fromkeys(m.upper() for m in methods))
        route = Route(
            path=path,
            methods=normalized_methods,
            endpoint=endpoint,
            pattern=pattern,
            param_names=param_names,
            name=name,
        )
        self._routes.append(route)
        for method in normalized_methods:
            self._routes_by_method.setdefault(method, []).append(route)
        return route

    def find(self, method: str, path: str) -> RouteMatch:
        method = method.upper()
        for route in self._routes_by_method.get(method, ()):
            params = _match(route, path)
            if params is not None:
                return RouteMatch(route=route, params=params)
        raise LookupError(f"No route matches {method} {path}")

    def allowed_methods(self, path: str) -> tuple[str, ...]:
        """Return every method registered for ``path``; empty when the path is unknown."""

        methods: list[str] = []
        for route in self._routes:
            if _match(route, path) is not None:
                methods.extend(m for m in route.methods if m not in methods)
        return tuple(methods)

    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)


def _match(route: Route, path: str) -> MutableMapping[str, str] | None:
    captures = route.pattern.match(path)
    if captures is None:
        return None
    params: MutableMapping[str, str] = {}
    for name in route.param_names:
        group = captures.group(name)
        if group is None:
            continue
        params[name] = group
    return params


def _compile_path(path: str) -> tuple[RegexObject, tuple[str, ...]]:
    param_names: list[str] = []

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        converter = match.group(2)
        param_names.append(name)
        if converter is None:
            return f"(?P<{name}>[^/]+)"
        if converter == "path":
            return f"(?P<{name}>.*)"
        raise ValueError(f"Unsupported path converter: {converter}")

    pattern = "^" + _PATH_PARAM_PATTERN.sub(replace, path) + "$"
    return rure.compile(pattern), tuple(param_names)


__all__ = ["Endpoint", "Route", "RouteMatch", "Router"]
