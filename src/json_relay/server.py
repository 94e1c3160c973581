"""Standalone relay server.

Runs the relay application on its own aiohttp site in the caller's event
loop, with one long-lived httpx client for all forwarded requests.
"""

import httpx
import logfire
from aiohttp import web

from .app import DEFAULT_TIMEOUT, create_app, mount
from .config import ProxyConfiguration
from .errors import error_middleware


class RelayServer:
    """Async relay server.

    Usage:
        server = RelayServer(ProxyConfiguration(target_host="http://orders:8080"))
        await server.start()

        # requests to server.base_url + "/v1/items" go to the orders service

        await server.stop()

    With a mount_prefix the relay only answers under that prefix, and the
    prefix is stripped before forwarding.
    """

    def __init__(
        self,
        config: ProxyConfiguration,
        host: str = "127.0.0.1",
        port: int | None = None,
        mount_prefix: str = "",
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the server.

        Args:
            config: The forwarding rule to serve.
            host: Interface to listen on.
            port: Port to listen on; the OS picks a free one if None.
            mount_prefix: Leading path segment stripped before forwarding.
            timeout: httpx timeout for backend requests, in seconds.
        """
        self.config = config
        self.host = host
        self.mount_prefix = mount_prefix.rstrip("/")
        self.timeout = timeout

        self._port: int | None = port
        self._runner: web.AppRunner | None = None
        self._http_client: httpx.AsyncClient | None = None

    def _build_app(self, client: httpx.AsyncClient) -> web.Application:
        if not self.mount_prefix:
            return create_app(self.config, client=client)
        app = web.Application(middlewares=[error_middleware])
        mount(app, self.mount_prefix, self.config, client=client, middlewares=())
        return app

    async def start(self) -> int:
        """Start the server.

        Returns:
            The port number the server is listening on.
        """
        self._http_client = httpx.AsyncClient(timeout=self.timeout)

        self._runner = web.AppRunner(self._build_app(self._http_client))
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self._port or 0)
        await site.start()

        # Port 0 means the OS chose; read back what was bound
        self._port = self._runner.addresses[0][1]

        logfire.info(
            "Relay listening on {base_url}{mount_prefix}",
            base_url=self.base_url,
            mount_prefix=self.mount_prefix,
            annotation=self.config.annotation,
        )
        return self._port

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

        logfire.debug("Relay stopped")

    async def __aenter__(self) -> "RelayServer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    @property
    def base_url(self) -> str:
        if self._port is None or self._runner is None:
            raise RuntimeError("Relay not started")
        return f"http://{self.host}:{self._port}"

    @property
    def port(self) -> int | None:
        return self._port
