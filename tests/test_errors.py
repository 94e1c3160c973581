"""Tests for ForwardError and the error middleware."""

import pytest
from aiohttp import web

from json_relay import ForwardError, ForwardErrorKind, error_middleware


def _error(kind=ForwardErrorKind.UPSTREAM_REQUEST_ERROR, committed=False):
    try:
        raise ConnectionRefusedError("refused")
    except ConnectionRefusedError as e:
        try:
            raise ForwardError(
                kind,
                "POST http://orders/x failed",
                "http://orders/x",
                annotation="orders-service",
                committed=committed,
            ) from e
        except ForwardError as forward_error:
            return forward_error


class TestForwardError:
    def test_message_names_the_kind(self):
        assert str(_error()) == "UPSTREAM_REQUEST_ERROR: POST http://orders/x failed"

    @pytest.mark.parametrize(
        "kind, status",
        [
            (ForwardErrorKind.HOST_RESOLUTION_ERROR, 500),
            (ForwardErrorKind.UPSTREAM_REQUEST_ERROR, 502),
            (ForwardErrorKind.UPSTREAM_RESPONSE_ERROR, 502),
        ],
    )
    def test_status(self, kind, status):
        assert _error(kind).status == status

    def test_to_json(self):
        doc = _error().to_json()

        assert doc["status"] == 502
        assert doc["code"] == "UPSTREAM_REQUEST_ERROR"
        assert doc["title"]
        assert doc["detail"] == "POST http://orders/x failed"
        assert doc["meta"]["annotation"] == "orders-service"
        assert doc["meta"]["url"] == "http://orders/x"
        assert "refused" in doc["meta"]["cause"]

    def test_no_cause(self):
        error = ForwardError(ForwardErrorKind.HOST_RESOLUTION_ERROR, "d", "")
        assert error.cause is None
        assert "cause" not in error.to_json()["meta"]


class TestErrorMiddleware:
    async def _client(self, aiohttp_client, error):
        async def handler(request):
            raise error

        app = web.Application(middlewares=[error_middleware])
        app.router.add_get("/", handler)
        return await aiohttp_client(app)

    async def test_uncommitted_error_rendered(self, aiohttp_client):
        client = await self._client(aiohttp_client, _error())

        resp = await client.get("/")

        assert resp.status == 502
        assert resp.content_type == "application/json"
        [entry] = (await resp.json())["errors"]
        assert entry["code"] == "UPSTREAM_REQUEST_ERROR"

    async def test_committed_error_re_raised(self, aiohttp_client):
        seen = []

        @web.middleware
        async def outer(request, handler):
            try:
                return await handler(request)
            except ForwardError as e:
                seen.append(e)
                return web.Response(status=599)

        async def handler(request):
            raise _error(ForwardErrorKind.UPSTREAM_RESPONSE_ERROR, committed=True)

        app = web.Application(middlewares=[outer, error_middleware])
        app.router.add_get("/", handler)
        client = await aiohttp_client(app)

        resp = await client.get("/")

        assert resp.status == 599
        assert seen[0].committed is True

    async def test_other_errors_untouched(self, aiohttp_client):
        client = await self._client(aiohttp_client, web.HTTPNotFound())

        resp = await client.get("/")

        assert resp.status == 404
