"""Per-request resolution of a ProxyConfiguration's dynamic settings."""

from typing import Any, Mapping

from aiohttp import web

from .config import ProxyConfiguration
from .errors import ForwardError, ForwardErrorKind

# By default we only relay JSON
DEFAULT_HEADERS: Mapping[str, str] = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


def resolve_host(
    config: ProxyConfiguration,
    request: web.Request,
    response: web.StreamResponse,
    url_path: str = "",
) -> str:
    """Resolve the target host for this request.

    Raises:
        ForwardError: HOST_RESOLUTION_ERROR if the resolver raised or produced
            anything other than a non-empty string.
    """
    try:
        host = config.target_host.resolve(request, response)
    except Exception as e:
        raise ForwardError(
            ForwardErrorKind.HOST_RESOLUTION_ERROR,
            f"The target_host resolver raised {e!r}. "
            f"Annotation: {config.annotation!r}.",
            url_path,
            annotation=config.annotation,
        ) from e

    if not isinstance(host, str) or not host:
        raise ForwardError(
            ForwardErrorKind.HOST_RESOLUTION_ERROR,
            "The target_host provided either was not a non-empty string, or the "
            f"value returned from invoking it was not (got {host!r}). "
            f"Annotation: {config.annotation!r}.",
            f"{host}{url_path}",
            annotation=config.annotation,
        )
    return host


def merge_headers(extra: Mapping[str, Any] | None) -> dict[str, str]:
    """Merge `extra` over DEFAULT_HEADERS; names compare case-insensitively."""
    extra = extra or {}
    overridden = {name.lower() for name in extra}
    merged = {
        name: value
        for name, value in DEFAULT_HEADERS.items()
        if name.lower() not in overridden
    }
    for name, value in extra.items():
        merged[name] = str(value)
    return merged


def resolve_headers(
    config: ProxyConfiguration,
    request: web.Request,
    response: web.StreamResponse,
) -> dict[str, str]:
    """Resolve extra headers and merge them over the JSON defaults."""
    return merge_headers(config.extra_headers.resolve(request, response))


def resolve_debug_header(
    config: ProxyConfiguration,
    request: web.Request,
    response: web.StreamResponse,
) -> bool:
    return bool(config.debug_header_enabled.resolve(request, response))
