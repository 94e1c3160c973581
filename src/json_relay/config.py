"""Relay configuration - the static-or-dynamic knobs of a forwarding rule.

A ProxyConfiguration is built once when a relay route is set up and is then
shared, read-only, by every request that route handles. Fields that may depend
on the request (target host, extra headers, debug header) are Settings:
either a Fixed value or a Resolved function of (request, response).

Usage:
    config = ProxyConfiguration(
        target_host=lambda request, response: discovery.host_for("orders"),
        extra_headers={"x-api-key": key},
        logger=LogfireLogger(),
        annotation="orders-service",
    )
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Mapping, Protocol, TypeVar, Union

from aiohttp import web

T = TypeVar("T")

# (request, response) -> value
ResolverFunc = Callable[[web.Request, web.StreamResponse], T]


@dataclass(frozen=True)
class Fixed(Generic[T]):
    """A setting with the same value for every request."""

    value: T

    def resolve(self, request: web.Request, response: web.StreamResponse) -> T:
        return self.value


@dataclass(frozen=True)
class Resolved(Generic[T]):
    """A setting computed per request by calling `func(request, response)`."""

    func: ResolverFunc

    def resolve(self, request: web.Request, response: web.StreamResponse) -> T:
        return self.func(request, response)


Setting = Union[Fixed[T], Resolved[T]]


def as_setting(value: Any) -> Setting:
    """Wrap a raw configuration value as a Setting.

    Settings pass through unchanged, callables become Resolved,
    everything else (including None) becomes Fixed.
    """
    if isinstance(value, (Fixed, Resolved)):
        return value
    if callable(value):
        return Resolved(value)
    return Fixed(value)


class ProxyLogger(Protocol):
    """The logging capability a relay writes its request events to.

    Both methods take a structured event mapping and a human-readable
    message, in that order.
    """

    def info(self, event: Mapping[str, Any], message: str) -> None: ...

    def error(self, event: Mapping[str, Any], message: str) -> None: ...


@dataclass(frozen=True)
class ProxyConfiguration:
    """Immutable configuration of one forwarding rule.

    Attributes:
        target_host: Backend host (scheme + authority, optionally a base path),
            fixed or resolved per request. Must resolve to a non-empty string.
        extra_headers: Headers merged over the JSON defaults, fixed or resolved.
        logger: Where start/end/error events go. None disables them.
        debug_header_enabled: Whether to attach the x-curl-command header.
        annotation: Appended to every log message to tell rules apart.
    """

    target_host: Setting[str]
    extra_headers: Setting[Mapping[str, str]] = field(default_factory=lambda: Fixed({}))
    logger: ProxyLogger | None = None
    debug_header_enabled: Setting[bool] = field(default_factory=lambda: Fixed(False))
    annotation: str = ""

    def __post_init__(self) -> None:
        # Accept plain values and callables; store Settings
        for name in ("target_host", "extra_headers", "debug_header_enabled"):
            object.__setattr__(self, name, as_setting(getattr(self, name)))
        if self.annotation is None:
            object.__setattr__(self, "annotation", "")
