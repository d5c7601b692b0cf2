"""Serve an application with pounce.

Pounce's ``run()`` takes an import string (e.g., ``"myapp:app"``), but
junction has a live ``Application`` object, so ``pounce.Server`` is
used directly with the ASGI callable.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from junction.app import Application

logger = logging.getLogger("junction.server")


def run_server(
    app: Application,
    host: str = "127.0.0.1",
    port: int = 8000,
    *,
    workers: int = 1,
    log_level: str = "info",
) -> None:
    """Start a pounce server for *app* and block until it stops.

    Args:
        app: The application to serve.
        host: Bind host address.
        port: Bind port number.
        workers: Worker count (0 = auto-detect from CPU count).
        log_level: Level for the ``junction`` loggers (debug, info, warning, ...).
    """
    from pounce.config import ServerConfig
    from pounce.server import Server

    logging.getLogger("junction").setLevel(log_level.upper())
    config = ServerConfig(host=host, port=port, workers=workers)
    logger.info("listening on http://%s:%d (%s)", host, port, app.get("env"))
    server = Server(config, app)
    server.run()
