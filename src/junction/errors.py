"""Junction exception hierarchy.

Shared across Layer, Route, Router, Application and the server glue so
every module raises and catches the same types.
"""

from dataclasses import dataclass


class JunctionError(Exception):
    """Base for all junction-specific errors."""


class ConfigurationError(JunctionError):
    """Raised when routing or application setup is invalid.

    Always raised synchronously during registration, never at request time.
    """


@dataclass(frozen=True, slots=True)
class HTTPError(JunctionError):
    """An error that maps directly to an HTTP status code.

    Raised by the router, middleware, or handlers and passed through
    ``next(err)``. The default final handler uses ``status`` for the
    response and appends ``headers``.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class NotFound(HTTPError):  # noqa: N818 — conventional name in web frameworks
    """404 — nothing in the stack handled the request."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


class ParamDecodeError(HTTPError):
    """400 — a captured path parameter is not valid percent-encoding."""

    def __init__(self, value: str) -> None:
        super().__init__(status=400, detail=f"Failed to decode param {value!r}")


class HandlerTimeout(HTTPError):
    """503 — a handler neither called ``next`` nor finished in time."""

    def __init__(self, name: str, timeout: float) -> None:
        super().__init__(
            status=503,
            detail=f"Handler {name!r} did not continue within {timeout:g}s",
        )
