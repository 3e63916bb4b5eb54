"""Programmatic uvicorn entry point for relayproxy.

Reads host and port from the loaded config (0.0.0.0:3000 by default; PORT or
RELAYPROXY_PORT override the port) and starts uvicorn.

When the deploy mode is "managed" the in-process listener is NOT started: the
hosting platform imports ``relayproxy.main:app`` and invokes it per request.

Usage:
    python -m relayproxy.run   # reads .relayproxy/config.yaml
    relayproxy                 # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from relayproxy.config import load_config
from relayproxy.utils.logger import configure_from_env, get_logger

logger = get_logger(__name__)

# HTTP keep-alive timeout in seconds.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the relay server unless a managed platform hosts the app.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    configure_from_env()
    config = load_config()

    if config.deploy_mode == "managed":
        logger.info(
            "Managed deploy mode — in-process listener suppressed",
            app="relayproxy.main:app",
        )
        return

    logger.info(
        "Proxy server starting",
        host=config.proxy.host,
        port=config.proxy.port,
    )
    uvicorn.run(
        "relayproxy.main:app",
        host=config.proxy.host,
        port=config.proxy.port,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
