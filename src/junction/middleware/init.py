"""Request initialization middleware.

Links the request and response to each other and to the application
currently dispatching them, and sets ``X-Powered-By``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from junction._internal.types import Handler
from junction.routing.signals import Next

if TYPE_CHECKING:
    from junction.app import Application
    from junction.http.request import Request
    from junction.http.response import Response


def init(app: Application) -> Handler:
    """Build middleware that binds requests to *app*."""

    def init_request(request: Request, response: Response, next: Next) -> None:
        if app.enabled("x-powered-by"):
            response.set("X-Powered-By", "Junction")
        request.response = response
        response.request = request
        request.app = app
        response.app = app
        next()

    return init_request
