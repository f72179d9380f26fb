"""Readiness server entry point — ``python -m readiness.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from readiness.core.config.settings import Settings, get_settings
from readiness.core.server.app import VERSION, create_app

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class InsecureBindError(RuntimeError):
    """Raised when the server would listen on a public interface without opt-in."""


def is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def check_bind(settings: Settings) -> None:
    """Refuse non-loopback hosts unless READINESS_ALLOW_INSECURE_BIND is set.

    Raises:
        InsecureBindError: The host is public and the override is off.
    """
    if is_loopback_host(settings.readiness_host):
        return
    if not settings.readiness_allow_insecure_bind:
        raise InsecureBindError(
            f"Refusing to serve readiness tools on {settings.readiness_host}: the tools "
            "have no auth layer. Set READINESS_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.warning("Serving on non-loopback host %s without authentication", settings.readiness_host)


def configure_logging(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    return level


def run() -> None:
    """Start the readiness MCP server with Streamable HTTP transport."""
    settings = get_settings()
    configure_logging(settings.readiness_log_level)
    check_bind(settings)

    logger.info(
        "Readiness Engine %s listening on %s:%d",
        VERSION,
        settings.readiness_host,
        settings.readiness_port,
    )
    create_app().run(
        transport="streamable-http",
        host=settings.readiness_host,
        port=settings.readiness_port,
    )


if __name__ == "__main__":
    run()
