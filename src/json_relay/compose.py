"""Building the outbound request.

Everything here is synchronous and does no network I/O: we resolve the
rule's settings into a ForwardingContext, then turn context + inbound
request into an OutboundRequest descriptor for the forwarder.
"""

import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from aiohttp import web

from .config import ProxyConfiguration
from .resolve import resolve_debug_header, resolve_headers, resolve_host

# Request-scoped storage keys (set by outer middlewares)
JSON_BODY_KEY = "json_body"
TRANSPORT_OPTIONS_KEY = "relay_transport_options"
REQUEST_ID_KEY = "request_id"

REQUEST_ID_HEADER = "X-Request-Id"


@dataclass(frozen=True)
class ForwardingContext:
    """Working state of one forwarding operation.

    Built once per inbound request and passed explicitly through every
    phase. `started_ns` is zero until `start()` stamps it.
    """

    host: str
    headers: Mapping[str, str]
    url_path: str
    body: str
    debug_header: bool = False
    annotation: str = ""
    request_id: str = ""
    started_ns: int = 0

    @property
    def url(self) -> str:
        # Raw concatenation: no slash normalisation at the join
        return f"{self.host}{self.url_path}"

    def start(self) -> "ForwardingContext":
        """Return a copy stamped with the current high-resolution time."""
        return replace(self, started_ns=time.perf_counter_ns())

    def elapsed_ms(self) -> float:
        """Fractional milliseconds since `start()`."""
        return (time.perf_counter_ns() - self.started_ns) / 1e6


@dataclass(frozen=True)
class OutboundRequest:
    """What the forwarder sends: method, url, headers, body, transport options."""

    method: str
    url: str
    headers: Mapping[str, str]
    body: str
    options: Mapping[str, Any] = field(default_factory=dict)


def strip_mount_prefix(raw_path: str, mount_prefix: str) -> str:
    """Remove the mount prefix from the front of a raw path.

    The rest (query string, encoded characters, trailing slashes) is
    returned exactly as received.
    """
    if mount_prefix and raw_path.startswith(mount_prefix):
        return raw_path[len(mount_prefix):]
    return raw_path


def serialize_body(body: Any) -> str:
    """Serialize a parsed JSON body back to compact JSON text.

    An absent body is sent as an empty object, never omitted.
    """
    if body is None:
        body = {}
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def request_id_of(request: web.Request) -> str:
    return request.get(REQUEST_ID_KEY) or request.headers.get(REQUEST_ID_HEADER, "")


def create_context(
    config: ProxyConfiguration,
    request: web.Request,
    response: web.StreamResponse,
    mount_prefix: str = "",
) -> ForwardingContext:
    """Resolve the rule's settings against this request.

    Raises:
        ForwardError: HOST_RESOLUTION_ERROR, before anything else is resolved.
    """
    url_path = strip_mount_prefix(request.raw_path, mount_prefix)
    host = resolve_host(config, request, response, url_path)
    return ForwardingContext(
        host=host,
        headers=resolve_headers(config, request, response),
        url_path=url_path,
        body=serialize_body(request.get(JSON_BODY_KEY)),
        debug_header=resolve_debug_header(config, request, response),
        annotation=config.annotation,
        request_id=request_id_of(request),
    )


def compose_request(request: web.Request, context: ForwardingContext) -> OutboundRequest:
    """Describe the outbound equivalent of `request`."""
    return OutboundRequest(
        method=request.method,
        url=context.url,
        headers=dict(context.headers),
        body=context.body,
        options=dict(request.get(TRANSPORT_OPTIONS_KEY) or {}),
    )
