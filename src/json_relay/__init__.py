"""json_relay - relay parsed JSON requests to a backend and stream the answer back.

Architecture:
- ProxyConfiguration describes one forwarding rule (host, headers, logging)
- ForwardingHandler resolves it per request, sends with httpx, streams back
- ForwardError carries failures to the surrounding aiohttp middleware
"""

from .app import create_app, json_body_middleware, mount
from .compose import (
    JSON_BODY_KEY,
    REQUEST_ID_KEY,
    TRANSPORT_OPTIONS_KEY,
    ForwardingContext,
    OutboundRequest,
)
from .config import Fixed, ProxyConfiguration, ProxyLogger, Resolved, as_setting
from .curl import CURL_HEADER_MAX_LENGTH, CURL_HEADER_NAME
from .errors import ForwardError, ForwardErrorKind, error_middleware
from .forwarder import HTTP_CLIENT_KEY, ForwardingHandler, TransportOptionsError
from .observability import LogfireLogger
from .observability import configure as configure_observability
from .server import RelayServer

__all__ = [
    # Configuration
    "ProxyConfiguration",
    "ProxyLogger",
    "Fixed",
    "Resolved",
    "as_setting",
    # Handler and wiring
    "ForwardingHandler",
    "create_app",
    "mount",
    "json_body_middleware",
    "RelayServer",
    # Errors
    "ForwardError",
    "ForwardErrorKind",
    "error_middleware",
    # Per-request state
    "ForwardingContext",
    "OutboundRequest",
    "JSON_BODY_KEY",
    "TRANSPORT_OPTIONS_KEY",
    "REQUEST_ID_KEY",
    "HTTP_CLIENT_KEY",
    "TransportOptionsError",
    "CURL_HEADER_NAME",
    "CURL_HEADER_MAX_LENGTH",
    # Observability
    "LogfireLogger",
    "configure_observability",
]
__version__ = "0.1.0"
