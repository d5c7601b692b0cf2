"""ASGI handler — translates ASGI scope/messages to junction types.

The only component that touches raw ASGI directly for HTTP. Builds a
Request/Response pair from the scope, runs the application's dispatch,
and sends the finished response back through ASGI send().
"""

from __future__ import annotations

import logging
from contextvars import Token
from typing import TYPE_CHECKING

from junction._internal.asgi import Receive, Scope, Send
from junction.context import request_var
from junction.http.request import Request
from junction.http.response import Response
from junction.server.final import send_error
from junction.server.sender import send_response

if TYPE_CHECKING:
    from junction.app import Application

logger = logging.getLogger("junction.server")


async def handle_request(
    scope: Scope,
    receive: Receive,
    send: Send,
    *,
    app: Application,
) -> None:
    """Process a single HTTP request through the application."""
    if scope["type"] != "http":
        return

    request = Request.from_asgi(scope, receive)
    response = Response(request)
    request.response = response

    token: Token[Request] = request_var.set(request)
    try:
        await app.handle(request, response)
    except Exception:
        logger.exception("500 %s %s", request.method, request.original_url)
        if not response.finished:
            send_error(response, 500, "Internal Server Error")
    finally:
        request_var.reset(token)

    if not response.finished:
        # Dispatch ended through a callback that never answered
        logger.warning(
            "%s %s finished dispatch without a response", request.method, request.original_url
        )
        response.end()

    await send_response(response, send, head=request.method == "HEAD")
