"""Built-in middleware installed at the front of every application router.

A middleware is any callable matching::

    def mw(request: Request, response: Response, next: Next) -> None

Built-in middleware:
    query_parser -- Parse the query string into ``request.query``
    init -- Link request and response to the application
"""

from junction.middleware.init import init
from junction.middleware.query import query_parser

__all__ = ["init", "query_parser"]
