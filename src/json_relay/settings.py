"""Environment configuration for running a relay standalone.

Environment:
    RELAY_TARGET_HOST   - Backend host to relay to (required)
    RELAY_MOUNT_PREFIX  - Path prefix stripped before forwarding (default "")
    RELAY_ANNOTATION    - Appended to every log message (default "")
    RELAY_DEBUG_HEADER  - Attach x-curl-command to responses (default off)
    RELAY_HOST          - Interface to listen on (default 0.0.0.0)
    RELAY_PORT          - Port to listen on (default 8080)
    RELAY_TIMEOUT       - Backend timeout in seconds (default 300)
    RELAY_LOG_EVENTS    - Log start/end/error events (default on)
    RELAY_DEBUG         - Logfire console output (default off)
    RELAY_CAPTURE_HEADERS - Record outbound headers on httpx spans (default off)
    RELAY_ENVIRONMENT   - Logfire environment tag (default none)
"""

import os
from dataclasses import dataclass
from typing import Mapping

from .config import ProxyConfiguration
from .observability import LogfireLogger

_TRUE = ("1", "true", "yes", "on")


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.lower() in _TRUE


@dataclass(frozen=True)
class Settings:
    target_host: str
    mount_prefix: str = ""
    annotation: str = ""
    debug_header: bool = False
    host: str = "0.0.0.0"
    port: int = 8080
    timeout: float = 300.0
    log_events: bool = True
    debug: bool = False
    capture_headers: bool = False
    environment: str = ""

    def proxy_configuration(self) -> ProxyConfiguration:
        return ProxyConfiguration(
            target_host=self.target_host,
            logger=LogfireLogger() if self.log_events else None,
            debug_header_enabled=self.debug_header,
            annotation=self.annotation,
        )


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Read Settings from the environment (or the given mapping).

    Raises:
        ValueError: if RELAY_TARGET_HOST is missing or a number doesn't parse.
    """
    env = os.environ if env is None else env

    target_host = env.get("RELAY_TARGET_HOST", "")
    if not target_host:
        raise ValueError("RELAY_TARGET_HOST must be set")

    return Settings(
        target_host=target_host,
        mount_prefix=env.get("RELAY_MOUNT_PREFIX", ""),
        annotation=env.get("RELAY_ANNOTATION", ""),
        debug_header=_flag(env, "RELAY_DEBUG_HEADER", False),
        host=env.get("RELAY_HOST", "0.0.0.0"),
        port=int(env.get("RELAY_PORT", "8080")),
        timeout=float(env.get("RELAY_TIMEOUT", "300")),
        log_events=_flag(env, "RELAY_LOG_EVENTS", True),
        debug=_flag(env, "RELAY_DEBUG", False),
        capture_headers=_flag(env, "RELAY_CAPTURE_HEADERS", False),
        environment=env.get("RELAY_ENVIRONMENT", ""),
    )
