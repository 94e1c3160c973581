"""Forwarding failures and how they reach the client.

A relay never writes an error response itself. Each fallible step raises a
ForwardError, which travels up aiohttp's normal exception path; whatever
middleware sits above the relay decides what the client sees.
`error_middleware` is the stock choice: it renders uncommitted errors as a
JSON error document and lets committed ones abort the connection.
"""

from enum import Enum
from typing import Any

import logfire
from aiohttp import web


class ForwardErrorKind(str, Enum):
    HOST_RESOLUTION_ERROR = "HOST_RESOLUTION_ERROR"
    UPSTREAM_REQUEST_ERROR = "UPSTREAM_REQUEST_ERROR"
    UPSTREAM_RESPONSE_ERROR = "UPSTREAM_RESPONSE_ERROR"


# kind -> (HTTP status, title)
_RENDERING = {
    ForwardErrorKind.HOST_RESOLUTION_ERROR: (
        500,
        "`target_host` could not be resolved to a valid string.",
    ),
    ForwardErrorKind.UPSTREAM_REQUEST_ERROR: (
        502,
        "There was an error while making the proxied request.",
    ),
    ForwardErrorKind.UPSTREAM_RESPONSE_ERROR: (
        502,
        "There was an error while streaming the response.",
    ),
}


class ForwardError(Exception):
    """A classified failure of one forwarding operation.

    The underlying exception, if any, is chained as `__cause__`
    (raise ... from exc) and exposed as `cause`.

    Attributes:
        kind: Which step failed.
        detail: Human-readable description.
        url: The destination URL (may be partial for host errors).
        annotation: The annotation of the rule that failed.
        committed: True if the client response had already started.
    """

    def __init__(
        self,
        kind: ForwardErrorKind,
        detail: str,
        url: str,
        *,
        annotation: str = "",
        committed: bool = False,
    ):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail
        self.url = url
        self.annotation = annotation
        self.committed = committed

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    @property
    def status(self) -> int:
        return _RENDERING[self.kind][0]

    @property
    def title(self) -> str:
        return _RENDERING[self.kind][1]

    def to_json(self) -> dict[str, Any]:
        """Render as one entry of a JSON:API-style `errors` array."""
        meta: dict[str, Any] = {
            "annotation": self.annotation,
            "url": self.url,
        }
        if self.cause is not None:
            meta["cause"] = repr(self.cause)
        return {
            "status": self.status,
            "code": self.kind.value,
            "title": self.title,
            "detail": self.detail,
            "meta": meta,
        }


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Turn ForwardErrors raised below this middleware into responses.

    If the relay already started streaming the response there is nothing
    left to send, so the error is re-raised and aiohttp drops the connection.

    The failure itself is already on the relay.forward span and with the
    rule's logger; only the rendering decision is noted here.
    """
    try:
        return await handler(request)
    except ForwardError as exc:
        if exc.committed:
            logfire.debug("Response already started, dropping connection for {kind}", kind=exc.kind.value)
            raise
        logfire.debug("Rendering {kind} as HTTP {status}", kind=exc.kind.value, status=exc.status)
        return web.json_response({"errors": [exc.to_json()]}, status=exc.status)
