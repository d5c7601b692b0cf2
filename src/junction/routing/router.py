"""Router — the request dispatch engine.

A router is an ordered stack of layers. ``handle()`` walks the stack
for one request: it matches each layer against the current path, runs
param interceptors for newly bound names, trims mount prefixes off
``request.url`` before descending into middleware, and restores them
when control comes back. Each handler hands control back through its
``next`` continuation; errors flow through that channel to the next
four-argument layer.

All per-request bookkeeping lives in a :class:`_DispatchState` created
inside ``handle()`` — layers and routers are shared by every request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from junction._internal.invoke import invoke
from junction._internal.types import Done, Handler, ParamCallback
from junction._internal.urls import get_pathname, get_proto_host
from junction.errors import JunctionError
from junction.routing.layer import Layer, LayerMatch, run_handler
from junction.routing.route import Route, flatten
from junction.routing.signals import (
    CONTINUE,
    AbortRouter,
    Continue,
    Fail,
    Outcome,
    SkipRoute,
    error_of,
)

if TYPE_CHECKING:
    from junction.http.request import Request
    from junction.http.response import Response

logger = logging.getLogger("junction.router")


@dataclass(slots=True)
class _ParamCall:
    """What the interceptors for one param name did during this request."""

    match: Any
    value: Any
    outcome: Outcome = CONTINUE


@dataclass(slots=True)
class _DispatchState:
    """Request-scoped cursor and URL rewrite bookkeeping for one ``handle()``."""

    proto_host: str
    parent_url: str
    index: int = 0
    removed: str = ""
    slash_added: bool = False
    called: dict[str, _ParamCall] = field(default_factory=dict)
    options: list[str] = field(default_factory=list)

    def trim(self, request: Request, prefix: str) -> None:
        """Strip *prefix* from ``request.url`` and extend ``base_url``."""
        self.removed = prefix
        host = self.proto_host
        request.url = host + request.url[len(host) + len(prefix) :]

        if not host and not request.url.startswith("/"):
            request.url = "/" + request.url
            self.slash_added = True

        request.base_url = self.parent_url + (prefix[:-1] if prefix.endswith("/") else prefix)

    def restore(self, request: Request) -> None:
        """Undo the previous layer's :meth:`trim`."""
        if self.slash_added:
            request.url = request.url[1:]
            self.slash_added = False

        if self.removed:
            host = self.proto_host
            request.base_url = self.parent_url
            request.url = host + self.removed + request.url[len(host) :]
            self.removed = ""


class Router:
    """An ordered stack of middleware and routes.

    Usage::

        router = Router(case_sensitive=True)
        router.use(log_requests)
        router.get("/users/:id", show_user)
        router.param("id", load_user)

        api = Router()
        api.use("/v1", router)

    A router is itself a ``(request, response, next)`` handler, so it can
    be mounted in another router or application with ``use()``.

    Args:
        case_sensitive: Match literal path segments case-sensitively.
        strict: Treat ``/foo`` and ``/foo/`` as different routes.
        merge_params: Expose the parent router's ``request.params``
            underneath this router's own params.
        timeout: Seconds a handler may hold its continuation before the
            request fails with ``HandlerTimeout``. ``None`` waits forever.
    """

    __slots__ = ("case_sensitive", "merge_params", "params", "stack", "strict", "timeout")

    # Mounted dispatchers run a whole sub-stack; per-handler timeouts
    # apply inside them, not around them.
    is_dispatcher = True

    def __init__(
        self,
        *,
        case_sensitive: bool = False,
        strict: bool = False,
        merge_params: bool = False,
        timeout: float | None = None,
    ) -> None:
        self.case_sensitive = case_sensitive
        self.strict = strict
        self.merge_params = merge_params
        self.timeout = timeout
        self.stack: list[Layer] = []
        self.params: dict[str, list[ParamCallback]] = {}

    # -- Registration --

    def param(self, name: str | list[str], fn: ParamCallback) -> Router:
        """Register an interceptor for a named route parameter.

        ``fn(request, response, next, value, name)`` runs before any layer
        that binds *name* sees ``request.params``, at most once per
        distinct value per request.
        """
        if isinstance(name, (list, tuple)):
            for item in name:
                self.param(item, fn)
            return self

        if not isinstance(name, str) or not name:
            msg = f"Router.param() requires a parameter name, got {name!r}"
            raise TypeError(msg)
        if name.startswith(":"):
            name = name[1:]
        if not callable(fn):
            msg = f"invalid param() call for {name}, got {fn!r}"
            raise TypeError(msg)

        self.params.setdefault(name, []).append(fn)
        return self

    def use(self, *args: Any) -> Router:
        """Mount middleware, optionally under a path prefix.

        ``use(fn)``, ``use("/api", fn, other)``, ``use([fn, [other]])``.
        """
        path: str | re.Pattern[str] = "/"
        handlers: tuple[Any, ...] = args
        if args and isinstance(args[0], (str, re.Pattern)):
            path, handlers = args[0], args[1:]

        callbacks = flatten(handlers)
        if not callbacks:
            msg = "Router.use() requires a middleware function"
            raise TypeError(msg)

        for callback in callbacks:
            if not callable(callback):
                msg = (
                    "Router.use() requires a middleware function but got a "
                    f"{type(callback).__name__}"
                )
                raise TypeError(msg)

            layer = Layer(path, callback, sensitive=self.case_sensitive, strict=False, end=False)
            logger.debug("use %s %s", path, layer.name)
            self.stack.append(layer)
        return self

    def route(self, path: str | re.Pattern[str]) -> Route:
        """Create a :class:`Route` for *path* and append it to the stack."""
        route = Route(path, timeout=self.timeout)
        layer = Layer(
            path,
            route.dispatch,
            sensitive=self.case_sensitive,
            strict=self.strict,
            end=True,
        )
        layer.route = route
        self.stack.append(layer)
        return route

    def all(self, path: str | re.Pattern[str], *handlers: Handler) -> Router:
        self.route(path).all(*handlers)
        return self

    def get(self, path: str | re.Pattern[str], *handlers: Handler) -> Router:
        self.route(path).get(*handlers)
        return self

    def post(self, path: str | re.Pattern[str], *handlers: Handler) -> Router:
        self.route(path).post(*handlers)
        return self

    def put(self, path: str | re.Pattern[str], *handlers: Handler) -> Router:
        self.route(path).put(*handlers)
        return self

    def delete(self, path: str | re.Pattern[str], *handlers: Handler) -> Router:
        self.route(path).delete(*handlers)
        return self

    def patch(self, path: str | re.Pattern[str], *handlers: Handler) -> Router:
        self.route(path).patch(*handlers)
        return self

    def head(self, path: str | re.Pattern[str], *handlers: Handler) -> Router:
        self.route(path).head(*handlers)
        return self

    def options(self, path: str | re.Pattern[str], *handlers: Handler) -> Router:
        self.route(path).options(*handlers)
        return self

    # -- Dispatch --

    async def __call__(self, request: Request, response: Response, next: Done) -> None:  # noqa: A002
        await self.handle(request, response, next)

    async def handle(
        self,
        request: Request,
        response: Response,
        done: Done | None = None,
    ) -> None:
        """Dispatch *request* through the stack.

        *done* is called with the pending error (or ``None``) once the
        stack is exhausted or a handler calls ``next("router")``. It is
        not called when a handler finishes the response. Without *done*,
        a pending error is raised to the caller.
        """
        logger.debug("dispatch %s %s", request.method, request.url)

        state = _DispatchState(
            proto_host=get_proto_host(request.url) or "",
            parent_url=request.base_url or "",
        )
        entry_base_url = request.base_url
        entry_params = request.params

        async def finish(err: Any) -> None:
            request.base_url = entry_base_url
            request.params = entry_params

            if request.method == "OPTIONS" and err is None and state.options:
                try:
                    _send_options_response(response, state.options)
                except Exception as exc:
                    await _call_done(done, exc)
                return

            await _call_done(done, err)

        request.base_url = state.parent_url
        request.original_url = request.original_url or request.url

        outcome: Outcome = CONTINUE
        while True:
            if isinstance(outcome, SkipRoute):
                outcome = CONTINUE

            state.restore(request)

            if isinstance(outcome, AbortRouter):
                await finish(None)
                return

            layer_error = error_of(outcome)

            if state.index >= len(self.stack):
                await finish(layer_error)
                return

            path = get_pathname(request.url)
            if path is None:
                await finish(layer_error)
                return

            layer, matched, layer_error = self._next_match(request, path, state, layer_error)
            if layer is None or matched is None:
                await finish(layer_error)
                return

            route = layer.route
            if route is not None:
                request.route = route

            if self.merge_params and entry_params:
                request.params = {**entry_params, **matched.params}
            else:
                request.params = dict(matched.params)

            param_outcome = await self._process_params(layer, state.called, request, response)
            if param_outcome is None:
                return
            if not isinstance(param_outcome, Continue):
                outcome = _carry(layer_error, param_outcome)
                continue

            if route is not None:
                result = await layer.handle_request(request, response)
            else:
                if matched.path:
                    boundary = path[len(matched.path) : len(matched.path) + 1]
                    if boundary and boundary not in "/.":
                        outcome = _carry(layer_error, CONTINUE)
                        continue

                    logger.debug("trim prefix (%s) from url %s", matched.path, request.url)
                    state.trim(request, matched.path)

                logger.debug("%s %s : %s", layer.name, matched.path, request.original_url)
                timeout = None if getattr(layer.handler, "is_dispatcher", False) else self.timeout
                if layer_error is not None:
                    result = await layer.handle_error(
                        layer_error, request, response, timeout=timeout
                    )
                else:
                    result = await layer.handle_request(request, response, timeout=timeout)

            if result is None:
                return
            outcome = result

    def _next_match(
        self,
        request: Request,
        path: str,
        state: _DispatchState,
        layer_error: Any,
    ) -> tuple[Layer | None, LayerMatch | None, Any]:
        """Advance the cursor to the next layer that should run.

        Match errors become the pending error and scanning continues.
        With a pending error, routes never match. A route that doesn't
        handle the method is passed over, collecting its methods for an
        automatic OPTIONS response.
        """
        method = request.method
        while state.index < len(self.stack):
            layer = self.stack[state.index]
            state.index += 1

            try:
                matched = layer.match(path)
            except Exception as exc:
                if layer_error is None:
                    layer_error = exc
                continue

            if matched is None:
                continue

            route = layer.route
            if route is None:
                return layer, matched, layer_error

            if layer_error is not None:
                continue

            has_method = route.handles_method(method)
            if not has_method and method == "OPTIONS":
                _append_methods(state.options, route._options())
            if not has_method and method != "HEAD":
                continue

            return layer, matched, layer_error

        return None, None, layer_error

    async def _process_params(
        self,
        layer: Layer,
        called: dict[str, _ParamCall],
        request: Request,
        response: Response,
    ) -> Outcome | None:
        """Run param interceptors for the names *layer* binds.

        Interceptors for a name run once per distinct value per request;
        a repeat value restores the canonical value and re-surfaces any
        stored error without calling them again.
        """
        if not layer.keys or not self.params:
            return CONTINUE

        for key in layer.keys:
            name = key.name
            value = request.params.get(name)
            callbacks = self.params.get(name)
            if value is None or not callbacks:
                continue

            previous = called.get(name)
            if previous is not None and (
                previous.match == value or isinstance(previous.outcome, Fail)
            ):
                request.params[name] = previous.value
                if not isinstance(previous.outcome, Continue):
                    return previous.outcome
                continue

            call = called[name] = _ParamCall(match=value, value=value)
            for fn in callbacks:
                call.value = request.params.get(name)
                result = await run_handler(
                    lambda nxt, fn=fn, value=value, name=name: fn(request, response, nxt, value, name),
                    getattr(fn, "__name__", "param"),
                    response,
                    self.timeout,
                )
                if result is None:
                    return None
                if not isinstance(result, Continue):
                    call.outcome = result
                    return result
            call.value = request.params.get(name)

        return CONTINUE

    def __repr__(self) -> str:
        return f"<Router {len(self.stack)} layers>"


def _carry(layer_error: Any, outcome: Outcome) -> Outcome:
    """A pending layer error takes precedence over *outcome*."""
    if layer_error is not None:
        return Fail(layer_error)
    return outcome


async def _call_done(done: Done | None, err: Any) -> None:
    if done is not None:
        await invoke(done, err)
        return
    if err is None:
        return
    if isinstance(err, BaseException):
        raise err
    msg = f"Unhandled error in router: {err!r}"
    raise JunctionError(msg)


def _append_methods(methods: list[str], additions: list[str]) -> None:
    for method in additions:
        if method not in methods:
            methods.append(method)


def _send_options_response(response: Response, methods: list[str]) -> None:
    body = ",".join(methods)
    response.set("Allow", body)
    response.send(body)

