"""The final handler — what runs when a router stack is exhausted.

Without an error it answers ``404 Cannot <METHOD> <path>``. With one it
picks a status from the error, logs it through the application, and
answers with a minimal HTML page (the traceback in development).
"""

import html
import logging
import traceback
from collections.abc import Callable
from http import HTTPStatus
from typing import Any

from junction._internal.types import Done
from junction._internal.urls import get_pathname
from junction.errors import HTTPError, NotFound
from junction.http.request import Request
from junction.http.response import Response

logger = logging.getLogger("junction.server")

_DOCUMENT = (
    "<!DOCTYPE html>\n"
    '<html lang="en">\n'
    "<head>\n"
    '<meta charset="utf-8">\n'
    "<title>Error</title>\n"
    "</head>\n"
    "<body>\n"
    "<pre>{message}</pre>\n"
    "</body>\n"
    "</html>\n"
)


def error_status(err: Any) -> int:
    """HTTP status for *err*: its own 4xx/5xx status, else 500."""
    if isinstance(err, HTTPError):
        return err.status
    for attr in ("status", "status_code"):
        status = getattr(err, attr, None)
        if isinstance(status, int) and 400 <= status < 600:
            return status
    return 500


def error_headers(err: Any) -> tuple[tuple[str, str], ...]:
    if isinstance(err, HTTPError):
        return tuple(err.headers)
    return ()


def _error_message(err: Any, status: int, env: str) -> str:
    if env == "development":
        if isinstance(err, BaseException):
            return "".join(traceback.format_exception(err)).rstrip()
        return str(err)
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return str(status)


def render_error(message: str) -> str:
    """HTML document carrying *message* (escaped, newlines kept)."""
    body = html.escape(message).replace("\n", "<br>").replace("  ", " &nbsp;")
    return _DOCUMENT.format(message=body)


def final_handler(
    request: Request,
    response: Response,
    *,
    env: str = "development",
    on_error: Callable[[Any], None] | None = None,
) -> Done:
    """Build the ``done`` callback used when no callback is supplied.

    Args:
        request: The request being dispatched.
        response: Its response.
        env: The application's ``env`` setting; ``development`` shows
            tracebacks.
        on_error: Called with the error before responding (the
            application's error logger).
    """

    def done(err: Any = None) -> None:
        if err is not None:
            status = error_status(err)
            headers = error_headers(err)
            message = _error_message(err, status, env)
            if on_error is not None:
                on_error(err)
        else:
            path = get_pathname(request.original_url) or request.original_url
            missing = NotFound(f"Cannot {request.method} {path}")
            status = missing.status
            headers = missing.headers
            message = missing.detail

        if response.finished:
            logger.debug("cannot send %d, response already finished", status)
            return

        logger.debug("final %d %s %s", status, request.method, request.original_url)
        send_error(response, status, message, headers)

    return done


def send_error(
    response: Response,
    status: int,
    message: str,
    headers: tuple[tuple[str, str], ...] = (),
) -> None:
    """Finish *response* with the error document."""
    response.status_code = status
    for name, value in headers:
        response.set(name, value)
    response.set("Content-Security-Policy", "default-src 'none'")
    response.set("X-Content-Type-Options", "nosniff")
    response.set("Content-Type", "text/html; charset=utf-8")
    response.end(render_error(message))
