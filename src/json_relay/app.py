"""Wiring a relay into an aiohttp application.

The relay expects two things from the application around it: a parsed JSON
body on the request (`json_body_middleware`) and somewhere for ForwardErrors
to go (`error_middleware`). `create_app()` builds a self-contained relay
application with both; `mount()` hangs one under a path prefix of an
existing application.

Usage:
    app = web.Application()
    mount(app, "/orders", ProxyConfiguration(target_host="http://orders:8080"))
    web.run_app(app)

    # GET /orders/v1/items?page=2 -> GET http://orders:8080/v1/items?page=2
"""

import json
from typing import AsyncIterator, Iterable

import httpx
import logfire
from aiohttp import web

from .compose import JSON_BODY_KEY
from .config import ProxyConfiguration
from .errors import error_middleware
from .forwarder import HTTP_CLIENT_KEY, ForwardingHandler

# Default timeout for the client create_app() makes (seconds)
DEFAULT_TIMEOUT = 300.0

DEFAULT_MIDDLEWARES = (error_middleware,)


@web.middleware
async def json_body_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Decode the JSON request body into request[JSON_BODY_KEY].

    An empty body is stored as None. Malformed JSON is a 400.
    """
    if JSON_BODY_KEY not in request:
        raw = await request.read()
        if not raw:
            request[JSON_BODY_KEY] = None
        else:
            try:
                request[JSON_BODY_KEY] = json.loads(raw)
            except ValueError as e:
                raise web.HTTPBadRequest(text=f"Request body is not valid JSON: {e}") from e
    return await handler(request)


def _client_context(timeout: float):
    async def http_client(app: web.Application) -> AsyncIterator[None]:
        # Long-lived client shared by every request of this app
        app[HTTP_CLIENT_KEY] = httpx.AsyncClient(timeout=timeout)
        logfire.debug("Relay HTTP client opened")
        yield
        await app[HTTP_CLIENT_KEY].aclose()
        logfire.debug("Relay HTTP client closed")

    return http_client


def create_app(
    config: ProxyConfiguration,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    middlewares: Iterable = DEFAULT_MIDDLEWARES,
) -> web.Application:
    """Build an application relaying every path to `config.target_host`.

    Args:
        config: The forwarding rule.
        client: httpx client to send with. If omitted, one is opened on
            startup (with `timeout`) and closed on cleanup.
        timeout: Timeout for the client we open ourselves.
        middlewares: Outer middlewares; json_body_middleware is always
            appended so the body is parsed right before the relay runs.
    """
    # Default client_max_size is 1 MB; 0 = no limit
    app = web.Application(
        client_max_size=0,
        middlewares=[*middlewares, json_body_middleware],
    )
    if client is not None:
        app[HTTP_CLIENT_KEY] = client
    else:
        app.cleanup_ctx.append(_client_context(timeout))

    app.router.add_route("*", "/{tail:.*}", ForwardingHandler(config).handle)
    return app


def mount(
    app: web.Application,
    prefix: str,
    config: ProxyConfiguration,
    **kwargs,
) -> web.Application:
    """Relay everything under `prefix` of `app`; returns the sub-application."""
    relay = create_app(config, **kwargs)
    app.add_subapp(prefix, relay)
    return relay
