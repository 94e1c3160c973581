"""Tests for per-request host, header and debug-flag resolution."""

import pytest
from aiohttp import web
from aiohttp.test_utils import make_mocked_request

from json_relay import ForwardError, ForwardErrorKind, ProxyConfiguration
from json_relay.resolve import (
    DEFAULT_HEADERS,
    merge_headers,
    resolve_debug_header,
    resolve_headers,
    resolve_host,
)


@pytest.fixture
def request_():
    return make_mocked_request("POST", "/orders/42", headers={"X-Region": "eu"})


@pytest.fixture
def response():
    return web.StreamResponse()


class TestResolveHost:
    def test_fixed_host(self, request_, response):
        config = ProxyConfiguration(target_host="http://orders:8080")
        assert resolve_host(config, request_, response) == "http://orders:8080"

    def test_resolver_host(self, request_, response):
        config = ProxyConfiguration(
            target_host=lambda req, resp: f"http://orders-{req.headers['X-Region']}"
        )
        assert resolve_host(config, request_, response) == "http://orders-eu"

    @pytest.mark.parametrize("bad", [42, None, "", b"http://bytes", ["http://a"]])
    def test_non_string_or_empty_is_host_resolution_error(self, request_, response, bad):
        config = ProxyConfiguration(
            target_host=lambda req, resp: bad, annotation="orders-service"
        )

        with pytest.raises(ForwardError) as exc_info:
            resolve_host(config, request_, response, "/orders/42")

        error = exc_info.value
        assert error.kind is ForwardErrorKind.HOST_RESOLUTION_ERROR
        assert repr(bad) in error.detail
        assert "orders-service" in error.detail
        assert error.annotation == "orders-service"
        assert error.url.endswith("/orders/42")

    def test_fixed_non_string_is_error(self, request_, response):
        config = ProxyConfiguration(target_host=42)
        with pytest.raises(ForwardError) as exc_info:
            resolve_host(config, request_, response)
        assert exc_info.value.kind is ForwardErrorKind.HOST_RESOLUTION_ERROR

    def test_raising_resolver_is_host_resolution_error(self, request_, response):
        def broken(req, resp):
            raise LookupError("no healthy instance")

        config = ProxyConfiguration(target_host=broken)

        with pytest.raises(ForwardError) as exc_info:
            resolve_host(config, request_, response)

        error = exc_info.value
        assert error.kind is ForwardErrorKind.HOST_RESOLUTION_ERROR
        assert isinstance(error.cause, LookupError)
        assert "no healthy instance" in error.detail


class TestResolveHeaders:
    def test_defaults_only(self, request_, response):
        config = ProxyConfiguration(target_host="http://a")
        assert resolve_headers(config, request_, response) == dict(DEFAULT_HEADERS)

    def test_extra_headers_are_added(self, request_, response):
        config = ProxyConfiguration(target_host="http://a", extra_headers={"x-api-key": "k"})
        headers = resolve_headers(config, request_, response)

        assert headers["x-api-key"] == "k"
        for name, value in DEFAULT_HEADERS.items():
            assert headers[name] == value

    def test_same_named_key_wins(self, request_, response):
        config = ProxyConfiguration(
            target_host="http://a", extra_headers={"Accept": "application/x-ndjson"}
        )
        headers = resolve_headers(config, request_, response)

        assert headers["Accept"] == "application/x-ndjson"
        assert headers["Content-Type"] == "application/json"

    def test_override_is_case_insensitive(self):
        headers = merge_headers({"content-type": "application/merge-patch+json"})

        assert headers == {
            "Accept": "application/json",
            "content-type": "application/merge-patch+json",
        }

    def test_resolver_headers(self, request_, response):
        config = ProxyConfiguration(
            target_host="http://a",
            extra_headers=lambda req, resp: {"x-region": req.headers["X-Region"]},
        )
        assert resolve_headers(config, request_, response)["x-region"] == "eu"

    def test_resolver_returning_none_means_no_extras(self, request_, response):
        config = ProxyConfiguration(target_host="http://a", extra_headers=lambda req, resp: None)
        assert resolve_headers(config, request_, response) == dict(DEFAULT_HEADERS)

    def test_values_are_stringified(self):
        assert merge_headers({"x-retry-budget": 3})["x-retry-budget"] == "3"


class TestResolveDebugHeader:
    def test_disabled_by_default(self, request_, response):
        config = ProxyConfiguration(target_host="http://a")
        assert resolve_debug_header(config, request_, response) is False

    def test_fixed_true(self, request_, response):
        config = ProxyConfiguration(target_host="http://a", debug_header_enabled=True)
        assert resolve_debug_header(config, request_, response) is True

    def test_resolver(self, request_, response):
        config = ProxyConfiguration(
            target_host="http://a",
            debug_header_enabled=lambda req, resp: "X-Debug" in req.headers,
        )
        assert resolve_debug_header(config, request_, response) is False
