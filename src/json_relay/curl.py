"""Debug command reconstruction for the x-curl-command response header.

The header holds a percent-encoded curl invocation equivalent to the
outbound request, so a developer can copy it out of the browser's network
tab and replay the backend call by hand. It is never parsed or executed here.
"""

import shlex
from urllib.parse import quote

from .compose import OutboundRequest

CURL_HEADER_NAME = "x-curl-command"

# Servers commonly cap total header size at 8-64 KB
CURL_HEADER_MAX_LENGTH = 40960

# Left unescaped: RFC 3986 unreserved characters plus !*'()
_SAFE = "-_.!~*'()"


def build_curl_command(outbound: OutboundRequest) -> str:
    """Build a shell-quoted curl command for `outbound`."""
    parts = ["curl", "-X", outbound.method, shlex.quote(outbound.url)]
    for name, value in outbound.headers.items():
        parts.extend(["-H", shlex.quote(f"{name}: {value}")])
    parts.extend(["--data-raw", shlex.quote(outbound.body)])
    return " ".join(parts)


def curl_header_value(outbound: OutboundRequest) -> str | None:
    """Encoded header value, or None when it would not fit under the cap."""
    encoded = quote(build_curl_command(outbound), safe=_SAFE)
    if len(encoded) >= CURL_HEADER_MAX_LENGTH:
        return None
    return encoded
