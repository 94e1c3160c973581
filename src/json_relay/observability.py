"""Observability setup and the relay's request events.

Two layers live here:

- `configure()` sets up Logfire for the whole process (tracing, httpx
  instrumentation). The relay's own ambient messages and spans go straight
  to logfire.info/debug/error, never through Python's logging module.
- The start/end/error events of a forwarding operation go to the rule's
  ProxyLogger, if it has one. `LogfireLogger` is the stock implementation.
"""

from typing import Any, Mapping

import logfire

from .compose import ForwardingContext, OutboundRequest
from .config import ProxyLogger
from .errors import ForwardError

# Arrays in logged bodies are cut after this many items
MAX_LOGGED_ITEMS = 20


def configure(
    service_name: str = "json_relay",
    *,
    console: bool = False,
    capture_headers: bool = False,
    environment: str | None = None,
) -> None:
    """Set up Logfire for a relay process.

    Outbound httpx requests are instrumented, so each backend call shows up
    nested under the relay.forward span of the request that caused it, and
    the trace context travels on to the backend.

    Args:
        service_name: Name to identify this relay in traces.
        console: Also print spans and logs (down to debug) to the console.
        capture_headers: Record outbound request/response headers on the
            httpx spans. Off by default: relayed headers often carry keys.
        environment: Deployment environment tag, e.g. "staging".
    """
    logfire.configure(
        service_name=service_name,
        environment=environment,
        send_to_logfire="if-token-present",
        console=logfire.ConsoleOptions(min_log_level="debug") if console else False,
    )
    logfire.instrument_httpx(capture_headers=capture_headers)


class LogfireLogger:
    """ProxyLogger that writes events to Logfire.

    The event mapping becomes the log record's attributes; the message is
    shown verbatim.
    """

    def info(self, event: Mapping[str, Any], message: str) -> None:
        logfire.info("{message}", message=message, **event)

    def error(self, event: Mapping[str, Any], message: str) -> None:
        logfire.error("{message}", message=message, **event)


def summarize_body(body: Any, max_items: int = MAX_LOGGED_ITEMS) -> Any:
    """Copy of a parsed JSON body with every array cut to `max_items`.

    A trailing "... N more items" marker stands in for what was cut,
    so huge payloads don't turn into huge log records.
    """
    if isinstance(body, list):
        summary = [summarize_body(item, max_items) for item in body[:max_items]]
        if len(body) > max_items:
            summary.append(f"... {len(body) - max_items} more items")
        return summary
    if isinstance(body, dict):
        return {key: summarize_body(value, max_items) for key, value in body.items()}
    return body


def annotate(message: str, annotation: str) -> str:
    if annotation:
        return f"{message} {annotation}"
    return message


def log_start(
    logger: ProxyLogger | None,
    context: ForwardingContext,
    outbound: OutboundRequest,
    body: Any,
) -> None:
    """Emit the "Proxy start." event, just before the request goes out."""
    if logger is None:
        return
    logger.info(
        {
            "host": context.host,
            "url_path": context.url_path,
            "url": outbound.url,
            "headers": dict(outbound.headers),
            "body": summarize_body(body if body is not None else {}),
            "request_id": context.request_id,
        },
        annotate(f"Proxy start. {outbound.method} {outbound.url}", context.annotation),
    )


def log_end(
    logger: ProxyLogger | None,
    context: ForwardingContext,
    outbound: OutboundRequest,
    status_code: int,
) -> None:
    """Emit the "Proxy end." event once the response has been flushed."""
    if logger is None:
        return
    logger.info(
        {
            "host": context.host,
            "url_path": context.url_path,
            "status_code": status_code,
            "duration_ms": context.elapsed_ms(),
            "request_id": context.request_id,
        },
        annotate(f"Proxy end. {outbound.method} {outbound.url}", context.annotation),
    )


def log_error(
    logger: ProxyLogger | None,
    error: ForwardError,
    url_path: str,
    request_id: str = "",
) -> None:
    if logger is None:
        return
    logger.error(
        {
            "url_path": url_path,
            "url": error.url,
            "detail": error.detail,
            "request_id": request_id,
        },
        annotate(f"Proxy Error: {error.kind.value}", error.annotation),
    )
