"""Request-scoped context via ContextVar.

``request_var`` holds the current ``Request`` for this task. It is set
by the ASGI handler before dispatch and reset afterwards; accessing it
outside a request raises ``LookupError``.
"""

from contextvars import ContextVar

from junction.http.request import Request

request_var: ContextVar[Request] = ContextVar("junction_request")
"""The current request. Set by the ASGI handler before dispatch."""


def get_request() -> Request:
    """Return the current request.

    Raises ``LookupError`` if called outside a request context.
    """
    return request_var.get()
