"""Stream forwarder - the aiohttp handler that relays one request.

For every inbound request:
1. Resolve the rule's settings into a ForwardingContext (host, headers, path)
2. Compose the outbound request (same method, re-serialized JSON body)
3. Send it with httpx and stream the backend's response straight back,
   status, headers and raw body chunks, without buffering it

Failures are raised as ForwardError for the surrounding middleware to handle.
The upstream response is always closed on the way out, including when the
handler is cancelled because the client went away.
"""

import contextlib
from typing import Any, AsyncIterator, Mapping, Protocol

import httpx
import logfire
from aiohttp import web

from .compose import (
    JSON_BODY_KEY,
    ForwardingContext,
    OutboundRequest,
    compose_request,
    create_context,
    request_id_of,
    strip_mount_prefix,
)
from .config import ProxyConfiguration
from .curl import CURL_HEADER_NAME, curl_header_value
from .errors import ForwardError, ForwardErrorKind
from .observability import log_end, log_error, log_start

# Set on the relay application by create_app()
HTTP_CLIENT_KEY = web.AppKey("relay_http_client", httpx.AsyncClient)

# The relay route's catch-all placeholder; everything routed before it is
# the mount prefix
TAIL_PLACEHOLDER = "/{tail}"

# Hop-by-hop headers describe the backend connection, not the response
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Transport passthrough keys, grouped by the httpx call that takes them.
# Client options get a one-off AsyncClient for that request; "client" sends
# with the given AsyncClient instead of the shared one.
REQUEST_OPTIONS = frozenset({"timeout", "extensions", "params", "cookies"})
SEND_OPTIONS = frozenset({"auth", "follow_redirects"})
CLIENT_OPTIONS = frozenset(
    {"verify", "cert", "proxy", "trust_env", "http1", "http2", "limits", "transport", "mounts"}
)
CLIENT_KEY = "client"


class TransportOptionsError(ValueError):
    pass


def split_transport_options(
    options: Mapping[str, Any],
) -> tuple[dict[str, Any], dict[str, Any], dict[str, Any]]:
    """Split passthrough options into (client, request, send) keyword arguments.

    Raises:
        TransportOptionsError: on keys httpx has no place for, or when both a
            client and client options are given.
    """
    known = REQUEST_OPTIONS | SEND_OPTIONS | CLIENT_OPTIONS | {CLIENT_KEY}
    unknown = sorted(set(options) - known)
    if unknown:
        raise TransportOptionsError(f"Unsupported transport options: {', '.join(unknown)}")

    client_options = {k: v for k, v in options.items() if k in CLIENT_OPTIONS}
    if CLIENT_KEY in options and client_options:
        raise TransportOptionsError(
            f"Pass either a client or client options, not both ({', '.join(sorted(client_options))})"
        )
    if CLIENT_KEY in options:
        client_options[CLIENT_KEY] = options[CLIENT_KEY]

    request_options = {k: v for k, v in options.items() if k in REQUEST_OPTIONS}
    send_options = {k: v for k, v in options.items() if k in SEND_OPTIONS}
    return client_options, request_options, send_options


def routed_prefix(request: web.Request) -> str:
    """The part of the path consumed by routing in front of the relay route.

    Sub-application prefixes are folded into the route's canonical path
    (/v1/api/{tail} for a relay mounted at /api under /v1), so this is
    everything before the tail placeholder.
    """
    resource = request.match_info.route.resource
    if resource is None:
        return ""
    canonical = resource.canonical
    if canonical.endswith(TAIL_PLACEHOLDER):
        return canonical[: -len(TAIL_PLACEHOLDER)]
    return ""


class ChunkSink(Protocol):
    async def write(self, data: bytes) -> None: ...


async def pipe_stream(chunks: AsyncIterator[bytes], sink: ChunkSink) -> int:
    """Copy chunks into `sink` one at a time, returning the byte count.

    The next chunk is only pulled once the previous write has completed,
    so a slow client slows down how fast we read from the backend.
    """
    total = 0
    async for chunk in chunks:
        await sink.write(chunk)
        total += len(chunk)
    return total


def copy_response_headers(source: httpx.Headers, response: web.StreamResponse) -> None:
    """Copy end-to-end backend headers onto the client response.

    Content-Encoding and Content-Length are kept: the body is relayed raw.
    """
    for name, value in source.multi_items():
        if name.lower() not in HOP_BY_HOP_HEADERS:
            response.headers.add(name, value)


class ForwardingHandler:
    """Relays requests according to one ProxyConfiguration.

    Usage:
        relay = ForwardingHandler(config, client=httpx.AsyncClient())
        app.router.add_route("*", "/orders/{tail:.*}", relay.handle)

        # /orders/v1/items -> {target_host}/v1/items

    If no client is given, the one stored under HTTP_CLIENT_KEY on the
    application is used. If no mount_prefix is given, whatever the route
    matched before its {tail} placeholder is stripped.
    """

    def __init__(
        self,
        config: ProxyConfiguration,
        *,
        client: httpx.AsyncClient | None = None,
        mount_prefix: str | None = None,
    ):
        self.config = config
        self._client = client
        self._mount_prefix = mount_prefix

    def client_for(self, request: web.Request) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return request.config_dict[HTTP_CLIENT_KEY]

    def mount_prefix_for(self, request: web.Request) -> str:
        if self._mount_prefix is not None:
            return self._mount_prefix
        return routed_prefix(request)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Relay `request` and return the (already streamed) response."""
        # Created up front so resolvers can read or set headers on it
        response = web.StreamResponse()
        mount_prefix = self.mount_prefix_for(request)

        with logfire.span(
            "relay.forward",
            method=request.method,
            path=request.raw_path,
            annotation=self.config.annotation,
        ) as span:
            try:
                context = create_context(self.config, request, response, mount_prefix)
            except ForwardError as e:
                log_error(
                    self.config.logger,
                    e,
                    strip_mount_prefix(request.raw_path, mount_prefix),
                    request_id_of(request),
                )
                raise

            outbound = compose_request(request, context)
            span.set_attribute("url", outbound.url)
            return await self.forward(request, response, context, outbound, span)

    async def forward(
        self,
        request: web.Request,
        response: web.StreamResponse,
        context: ForwardingContext,
        outbound: OutboundRequest,
        span: logfire.LogfireSpan,
    ) -> web.StreamResponse:
        """Send `outbound` and stream the backend's answer into `response`."""
        # Built before sending so it reflects exactly what goes out
        curl_command = curl_header_value(outbound) if context.debug_header else None
        if context.debug_header and curl_command is None:
            logfire.debug("Omitting {header}: over the size cap", header=CURL_HEADER_NAME)

        log_start(self.config.logger, context, outbound, request.get(JSON_BODY_KEY))
        context = context.start()

        async with contextlib.AsyncExitStack() as stack:
            try:
                client_options, request_options, send_options = split_transport_options(
                    outbound.options
                )
                client = await self._open_client(stack, request, client_options)
            except TransportOptionsError as e:
                raise self._failure(
                    ForwardErrorKind.UPSTREAM_REQUEST_ERROR,
                    f"{outbound.method} {context.url} not sent: {e}",
                    context,
                ) from e

            try:
                http_request = client.build_request(
                    outbound.method,
                    outbound.url,
                    headers=outbound.headers,
                    content=outbound.body.encode(),
                    **request_options,
                )
                upstream = await client.send(http_request, stream=True, **send_options)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise self._failure(
                    ForwardErrorKind.UPSTREAM_REQUEST_ERROR,
                    f"{outbound.method} {context.url} failed: {type(e).__name__}: {e}",
                    context,
                ) from e
            stack.push_async_callback(upstream.aclose)

            try:
                span.set_attribute("status_code", upstream.status_code)
                response.set_status(upstream.status_code, upstream.reason_phrase or None)
                copy_response_headers(upstream.headers, response)
                if curl_command is not None:
                    response.headers[CURL_HEADER_NAME] = curl_command

                await response.prepare(request)
                size = await pipe_stream(upstream.aiter_raw(), response)
                await response.write_eof()
                span.set_attribute("response_size_bytes", size)
            except (httpx.HTTPError, httpx.StreamError, OSError) as e:
                raise self._failure(
                    ForwardErrorKind.UPSTREAM_RESPONSE_ERROR,
                    f"Streaming {context.url} to the client failed: {type(e).__name__}: {e}",
                    context,
                    committed=response.prepared,
                ) from e

        log_end(self.config.logger, context, outbound, upstream.status_code)
        return response

    async def _open_client(
        self,
        stack: contextlib.AsyncExitStack,
        request: web.Request,
        client_options: dict[str, Any],
    ) -> httpx.AsyncClient:
        if CLIENT_KEY in client_options:
            return client_options[CLIENT_KEY]
        shared = self.client_for(request)
        if not client_options:
            return shared

        # One-off client for TLS/proxy/transport settings; closed with the response
        logfire.debug("Opening a per-request client for {options}", options=sorted(client_options))
        try:
            client = httpx.AsyncClient(timeout=shared.timeout, **client_options)
        except (TypeError, ValueError, ImportError, httpx.InvalidURL) as e:
            raise TransportOptionsError(f"Cannot build a client from {sorted(client_options)}: {e}") from e
        return await stack.enter_async_context(client)

    def _failure(
        self,
        kind: ForwardErrorKind,
        detail: str,
        context: ForwardingContext,
        committed: bool = False,
    ) -> ForwardError:
        error = ForwardError(
            kind,
            detail,
            context.url,
            annotation=context.annotation,
            committed=committed,
        )
        log_error(self.config.logger, error, context.url_path, context.request_id)
        return error
