from __future__ import annotations

import pytest

from deskops.routing import Router


async def handler(request):  # pragma: no cover - never awaited
    return None


def test_router_matches_exact_paths() -> None:
    router = Router()
    route = router.add_route("/user/connect", methods=["get"], endpoint=handler, name="connect")

    match = router.find("GET", "/user/connect")

    assert match.route is route
    assert route.methods == ("GET",)
    with pytest.raises(LookupError):
        router.find("GET", "/user/connect/extra")


def test_router_matches_path_parameters() -> None:
    router = Router()
    router.add_route("/tickets/{ticket_id}", methods=["GET"], endpoint=handler)
    router.add_route("/static/{path:path}", methods=["GET"], endpoint=handler)

    assert router.find("GET", "/tickets/42").params == {"ticket_id": "42"}
    assert router.find("GET", "/static/a/b.css").params == {"path": "a/b.css"}


def test_router_scopes_routes_by_method() -> None:
    router = Router()
    router.add_route("/command", methods=["POST"], endpoint=handler)

    with pytest.raises(LookupError):
        router.find("GET", "/command")
    assert router.allowed_methods("/command") == ("POST",)
    assert router.allowed_methods("/unknown") == ()


def test_router_deduplicates_methods() -> None:
    router = Router()
    route = router.add_route("/oauth/redirect", methods=["GET", "post", "GET"], endpoint=handler)
    assert route.methods == ("GET", "POST")
    assert router.routes() == (route,)


def test_router_rejects_unknown_converter() -> None:
    with pytest.raises(ValueError):
        Router().add_route("/x/{id:uuid}", methods=["GET"], endpoint=handler)
