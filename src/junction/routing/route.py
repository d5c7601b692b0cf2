"""Route — method-tagged handlers sharing one path.

A Route is mounted in its router's stack as a single Layer whose handler
is :meth:`Route.dispatch`. Inside, it walks its own layers in
registration order, skipping those tagged with another method.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from junction._internal.invoke import invoke
from junction._internal.types import Done, Handler
from junction.routing.layer import Layer
from junction.routing.signals import (
    ABORT_ROUTER,
    CONTINUE,
    AbortRouter,
    Fail,
    Outcome,
    SkipRoute,
)

if TYPE_CHECKING:
    from junction.http.request import Request
    from junction.http.response import Response

logger = logging.getLogger("junction.router.route")

METHODS: tuple[str, ...] = ("get", "post", "put", "delete", "patch", "head", "options")


def flatten(handlers: Iterable[Any]) -> list[Any]:
    """Flatten arbitrarily nested lists/tuples of handlers."""
    flat: list[Any] = []
    for handler in handlers:
        if isinstance(handler, (list, tuple)):
            flat.extend(flatten(handler))
        else:
            flat.append(handler)
    return flat


class Route:
    """Handlers for one path, dispatched by HTTP method.

    Usage::

        route = router.route("/users/:id")
        route.get(load_user, show_user).put(update_user)
    """

    __slots__ = ("_all", "methods", "path", "stack", "timeout")

    def __init__(self, path: Any, *, timeout: float | None = None) -> None:
        logger.debug("new %s", path)
        self.path = path
        self.stack: list[Layer] = []
        self.methods: dict[str, bool] = {}
        self.timeout = timeout
        self._all = False

    def handles_method(self, method: str) -> bool:
        """Whether a request with *method* has a handler here.

        HEAD falls back to GET when no explicit HEAD handler exists.
        """
        if self._all:
            return True
        name = method.lower()
        if name == "head" and "head" not in self.methods:
            name = "get"
        return name in self.methods

    def _options(self) -> list[str]:
        """Declared methods, uppercased, for an automatic ``Allow`` header."""
        return [m.upper() for m in self.methods]

    async def dispatch(self, request: Request, response: Response, done: Done) -> None:
        """Run the handlers matching ``request.method``, then call *done*.

        ``next("route")`` ends this route with no error; ``next("router")``
        is handed to *done* unchanged.
        """
        if not self.stack:
            await invoke(done)
            return

        method = request.method.lower()
        if method == "head" and "head" not in self.methods:
            method = "get"

        request.route = self
        outcome: Outcome = CONTINUE

        for layer in self.stack:
            match outcome:
                case SkipRoute():
                    await invoke(done)
                    return
                case AbortRouter():
                    await invoke(done, ABORT_ROUTER)
                    return

            if layer.method and layer.method != method:
                continue

            if isinstance(outcome, Fail):
                result = await layer.handle_error(
                    outcome.error, request, response, timeout=self.timeout
                )
            else:
                result = await layer.handle_request(request, response, timeout=self.timeout)

            if result is None:
                return
            outcome = result

        match outcome:
            case SkipRoute():
                await invoke(done)
            case _:
                await invoke(done, outcome)

    # -- Registration --

    def all(self, *handlers: Handler) -> Route:
        """Register *handlers* for every method."""
        for handler in self._check(handlers, "all"):
            layer = Layer("/", handler)
            self._all = True
            self.stack.append(layer)
        return self

    def _add(self, method: str, handlers: tuple[Any, ...]) -> Route:
        for handler in self._check(handlers, method):
            logger.debug("%s %s", method, self.path)
            layer = Layer("/", handler)
            layer.method = method
            self.methods[method] = True
            self.stack.append(layer)
        return self

    def _check(self, handlers: tuple[Any, ...], method: str) -> list[Any]:
        flat = flatten(handlers)
        for handler in flat:
            if not callable(handler):
                msg = (
                    f"Route.{method}() requires a callable but got a "
                    f"{type(handler).__name__}"
                )
                raise TypeError(msg)
        return flat

    def get(self, *handlers: Handler) -> Route:
        return self._add("get", handlers)

    def post(self, *handlers: Handler) -> Route:
        return self._add("post", handlers)

    def put(self, *handlers: Handler) -> Route:
        return self._add("put", handlers)

    def delete(self, *handlers: Handler) -> Route:
        return self._add("delete", handlers)

    def patch(self, *handlers: Handler) -> Route:
        return self._add("patch", handlers)

    def head(self, *handlers: Handler) -> Route:
        return self._add("head", handlers)

    def options(self, *handlers: Handler) -> Route:
        return self._add("options", handlers)

    def __repr__(self) -> str:
        return f"Route({self.path!r}, methods={list(self.methods)!r})"
