"""Tests for HttpResourceTransport."""

import json
from collections.abc import Callable

import httpx
import pytest

from querysync.core.errors import NetworkError, ServerError
from querysync.infrastructure import HttpResourceTransport

BASE_URL = "https://pm.example.com/api"


def make_transport(
    handler: Callable[[httpx.Request], httpx.Response],
) -> HttpResourceTransport:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpResourceTransport(
        client, "/milestones", scoped_path="/projects/{parent_id}/milestones"
    )


class TestHttpResourceTransport:
    """Tests for HttpResourceTransport."""

    @pytest.mark.asyncio
    async def test_scoped_list_unwraps_envelope(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"success": True, "data": [{"id": "m1"}]})

        transport = make_transport(handler)

        rows = await transport.list("p1", status="open")

        assert rows == [{"id": "m1"}]
        assert requests[0].method == "GET"
        assert requests[0].url.path == "/api/projects/p1/milestones"
        assert requests[0].url.params["status"] == "open"

    @pytest.mark.asyncio
    async def test_global_list(self) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json=[])

        await make_transport(handler).list()

        assert paths == ["/api/milestones"]

    @pytest.mark.asyncio
    async def test_write_methods(self) -> None:
        seen: list[tuple[str, str, bytes]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path, request.content))
            if request.method == "DELETE":
                return httpx.Response(204)
            return httpx.Response(200, json={"success": True, "data": {"id": "m3"}})

        transport = make_transport(handler)

        assert await transport.create({"title": "Handover"}) == {"id": "m3"}
        assert await transport.update("m3", {"title": "Done"}) == {"id": "m3"}
        assert await transport.get_one("m3") == {"id": "m3"}
        assert await transport.remove("m3") is None

        assert [(m, p) for m, p, _ in seen] == [
            ("POST", "/api/milestones"),
            ("PUT", "/api/milestones/m3"),
            ("GET", "/api/milestones/m3"),
            ("DELETE", "/api/milestones/m3"),
        ]
        assert json.loads(seen[0][2]) == {"title": "Handover"}

    @pytest.mark.asyncio
    async def test_error_status_raises_server_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"success": False, "error": "Unauthorized"})

        with pytest.raises(ServerError) as exc_info:
            await make_transport(handler).list()

        assert exc_info.value.status_code == 401
        assert exc_info.value.body == {"success": False, "error": "Unauthorized"}
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "error": "Invalid milestone"})

        with pytest.raises(ServerError, match="Invalid milestone"):
            await make_transport(handler).create({})

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with pytest.raises(ServerError):
            await make_transport(handler).list()

    @pytest.mark.asyncio
    async def test_connection_failure_raises_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError) as exc_info:
            await make_transport(handler).list()

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_timeout_raises_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(NetworkError, match="timed out"):
            await make_transport(handler).get_one("m1")
