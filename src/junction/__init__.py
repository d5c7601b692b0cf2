"""Junction — an ASGI framework built around an ordered handler stack.

Requests flow through middleware and routes in registration order; each
handler hands control on by calling ``next``.

Basic usage::

    from junction import Application

    app = Application()

    def hello(request, response, next):
        response.send("Hello, World!")

    app.get("/", hello)
    app.run()

Mounting::

    from junction import Router

    api = Router()
    api.get("/users/:id", show_user)
    app.use("/api", api)
"""

__version__ = "0.1.0"
__all__ = [
    "AppConfig",
    "Application",
    "ConfigurationError",
    "HTTPError",
    "HandlerTimeout",
    "JunctionError",
    "Next",
    "NotFound",
    "ParamDecodeError",
    "Request",
    "Response",
    "Route",
    "Router",
    "get_request",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import junction`` fast while providing a clean top-level API.
    """
    if name == "Application":
        from junction.app import Application

        return Application

    if name == "AppConfig":
        from junction.config import AppConfig

        return AppConfig

    if name in ("Request", "Response"):
        from junction import http as _http

        return getattr(_http, name)

    if name in ("Router", "Route", "Next"):
        from junction import routing as _routing

        return getattr(_routing, name)

    if name == "get_request":
        from junction.context import get_request

        return get_request

    if name in (
        "ConfigurationError",
        "HTTPError",
        "HandlerTimeout",
        "JunctionError",
        "NotFound",
        "ParamDecodeError",
    ):
        from junction import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
