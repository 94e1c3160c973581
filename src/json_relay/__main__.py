"""Run a relay from RELAY_* environment variables: python -m json_relay"""

import asyncio

import logfire

from .observability import configure
from .server import RelayServer
from .settings import load_settings


async def serve() -> None:
    settings = load_settings()
    configure(
        console=settings.debug,
        capture_headers=settings.capture_headers,
        environment=settings.environment or None,
    )

    server = RelayServer(
        settings.proxy_configuration(),
        host=settings.host,
        port=settings.port,
        mount_prefix=settings.mount_prefix,
        timeout=settings.timeout,
    )
    await server.start()
    try:
        # Serve until cancelled (Ctrl-C)
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main() -> None:
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logfire.info("Relay interrupted")


if __name__ == "__main__":
    main()
