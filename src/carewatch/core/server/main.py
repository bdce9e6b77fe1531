"""CareWatch server entry point: ``python -m carewatch.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from carewatch.core.config.settings import Settings, get_settings
from carewatch.core.server.app import create_app

logger = logging.getLogger(__name__)


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def _check_bind(settings: Settings) -> None:
    # No auth layer: only loopback unless explicitly overridden.
    if settings.carewatch_allow_insecure_bind or _is_loopback_host(settings.carewatch_host):
        return
    raise RuntimeError(
        f"Refusing to serve on non-loopback host {settings.carewatch_host!r}. "
        "Set CAREWATCH_ALLOW_INSECURE_BIND=true to override."
    )


def run() -> None:
    """Start the CareWatch MCP server over Streamable HTTP."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.carewatch_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _check_bind(settings)

    logger.info(
        "CareWatch listening on %s:%d", settings.carewatch_host, settings.carewatch_port
    )
    create_app().run(
        transport="streamable-http",
        host=settings.carewatch_host,
        port=settings.carewatch_port,
    )


if __name__ == "__main__":
    run()
