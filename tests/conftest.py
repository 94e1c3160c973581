"""Shared fixtures: fake backends, a recording logger, streams we can watch."""

import asyncio
import json
from typing import Any, Callable, Mapping

import httpx
import logfire
import pytest

from json_relay import ProxyConfiguration

# Keep test runs local and quiet
logfire.configure(send_to_logfire=False, console=False)

BACKEND = "http://backend.internal"


def json_response(status: int, payload: Any, headers: list[tuple[str, str]] | None = None) -> httpx.Response:
    """A backend JSON response whose body is still unread, like one off the wire.

    httpx.Response(json=...) arrives already read, so the relay could not
    stream it.
    """
    body = json.dumps(payload).encode()
    headers = [
        ("content-type", "application/json"),
        ("content-length", str(len(body))),
        *(headers or []),
    ]
    return httpx.Response(status, headers=headers, stream=httpx.ByteStream(body))


class RecordingLogger:
    """ProxyLogger that keeps every call as (level, event, message)."""

    def __init__(self):
        self.calls: list[tuple[str, dict, str]] = []

    def info(self, event: Mapping[str, Any], message: str) -> None:
        self.calls.append(("info", dict(event), message))

    def error(self, event: Mapping[str, Any], message: str) -> None:
        self.calls.append(("error", dict(event), message))

    def messages(self, level: str | None = None) -> list[str]:
        return [m for lvl, _, m in self.calls if level is None or lvl == level]


class TrackingStream(httpx.AsyncByteStream):
    """Backend body that records how far it was read and whether it was closed."""

    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks
        self.produced = 0
        self.closed = False
        self.started = asyncio.Event()

    async def __aiter__(self):
        for chunk in self.chunks:
            self.produced += 1
            self.started.set()
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class Backend:
    """An httpx.MockTransport standing in for the relayed-to service."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response] | None = None):
        self.requests: list[httpx.Request] = []
        self._respond = respond or (lambda request: json_response(200, {"ok": True}))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def backend() -> Backend:
    return Backend()


@pytest.fixture
def make_config():
    def _make(**overrides) -> ProxyConfiguration:
        overrides.setdefault("target_host", BACKEND)
        return ProxyConfiguration(**overrides)

    return _make
