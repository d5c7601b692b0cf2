"""Query string middleware.

Parses the query string once per request into ``request.query``, using
the parser compiled from the application's ``query parser`` setting.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from junction._internal.types import Handler
from junction.routing.signals import Next

if TYPE_CHECKING:
    from junction.app import Application
    from junction.http.request import Request
    from junction.http.response import Response


def query_parser(app: Application) -> Handler:
    """Build middleware that fills ``request.query`` for *app*.

    A query already parsed by an outer application is left alone.
    """

    def query(request: Request, response: Response, next: Next) -> None:
        if request.query is None:
            _, _, raw = request.url.partition("?")
            parse = app.get("query parser fn")
            request.query = parse(raw.partition("#")[0]) if parse else {}
        next()

    return query
