"""Junction application class.

An Application owns a Router, a settings store and a set of mounted
sub-applications. It is an ASGI 3.0 callable; ``handle()`` is the
framework-level entry point used by the ASGI glue and by parent
applications.
"""

from __future__ import annotations

import inspect
import logging
import os
import re
from collections.abc import Callable
from typing import Any, Self

from junction._internal.asgi import Receive, Scope, Send
from junction._internal.types import Done, Handler, ParamCallback
from junction.config import AppConfig
from junction.http.request import Request
from junction.http.response import Response
from junction.middleware import init, query_parser
from junction.routing.route import Route, flatten
from junction.routing.router import Router
from junction.routing.signals import Next
from junction.server.final import final_handler
from junction.server.handler import handle_request
from junction.settings import Settings

logger = logging.getLogger("junction.application")


class Application:
    """The junction application.

    Usage::

        app = Application()
        app.get("/users/:id", show_user)

        admin = Application()
        admin.get("/", dashboard)
        app.use("/admin", admin)

    Mounting another application under a path makes it a child: its
    ``mountpath`` and ``parent`` are set, its settings fall back to the
    parent's, and its ``on_mount`` listeners run.
    """

    __slots__ = (
        "_mount_listeners",
        "_shutdown_hooks",
        "_startup_hooks",
        "config",
        "locals",
        "mountpath",
        "parent",
        "router",
        "settings",
    )

    def __init__(self, config: AppConfig | None = None) -> None:
        self.config = config or AppConfig()
        self.settings = Settings()
        self.locals: dict[str, Any] = {"settings": self.settings}
        self.mountpath: str | re.Pattern[str] = "/"
        self.parent: Application | None = None
        self._mount_listeners: list[Callable[[Application], Any]] = []
        self._startup_hooks: list[Callable[..., Any]] = []
        self._shutdown_hooks: list[Callable[..., Any]] = []

        self.router = Router(
            case_sensitive=self.config.case_sensitive_routing,
            strict=self.config.strict_routing,
            timeout=self.config.handler_timeout,
        )
        self.router.use(query_parser(self))
        self.router.use(init(self))

        self._default_configuration()

    def _default_configuration(self) -> None:
        env = self.config.env or os.environ.get("JUNCTION_ENV") or "development"

        if self.config.case_sensitive_routing:
            self.enable("case sensitive routing")
        if self.config.strict_routing:
            self.enable("strict routing")

        self.enable("x-powered-by")
        self.set("etag", "weak")
        self.set("env", env)
        self.set("query parser", "extended")
        self.set("subdomain offset", 2)
        self.set("trust proxy", False)
        self.settings.trust_proxy_default = True
        self.set("jsonp callback name", "callback")

        logger.debug("booting in %s mode", env)
        self.on_mount(self._inherit_settings)

    def _inherit_settings(self, parent: Application) -> None:
        self.settings.inherit(parent.settings)

    # -- Settings --

    def set(self, name: str, value: Any) -> Self:
        """Assign setting *name*.

        ``etag``, ``query parser`` and ``trust proxy`` also compile their
        ``"<name> fn"`` companion.
        """
        logger.debug("set %r to %r", name, value)
        self.settings[name] = value
        return self

    def get(self, name: str | re.Pattern[str], *handlers: Handler) -> Any:
        """Look up setting *name*, or register GET *handlers* for a path.

        ``app.get("env")`` reads a setting; ``app.get("/", fn)`` adds a
        route, the same as ``app.route("/").get(fn)``.
        """
        if not handlers:
            return self.settings.get(name)
        self.router.route(name).get(*handlers)
        return self

    def enabled(self, name: str) -> bool:
        return bool(self.settings.get(name))

    def disabled(self, name: str) -> bool:
        return not self.settings.get(name)

    def enable(self, name: str) -> Self:
        return self.set(name, True)

    def disable(self, name: str) -> Self:
        return self.set(name, False)

    def path(self) -> str:
        """Full mount path of this application through its parents."""
        if self.parent is None:
            return ""
        return self.parent.path() + str(self.mountpath)

    # -- Routing --

    def use(self, *args: Any) -> Self:
        """Mount middleware, routers or applications under a path.

        ``use(fn)``, ``use("/api", fn, other)``, ``use("/blog", blog_app)``.

        Raises:
            TypeError: If no middleware function is given.
        """
        path: str | re.Pattern[str] = "/"
        handlers: tuple[Any, ...] = args
        if args and isinstance(args[0], (str, re.Pattern)):
            path, handlers = args[0], args[1:]

        callbacks = flatten(handlers)
        if not callbacks:
            msg = "app.use() requires a middleware function"
            raise TypeError(msg)

        for callback in callbacks:
            if not isinstance(callback, Application):
                self.router.use(path, callback)
                continue

            logger.debug(".use app under %s", path)
            callback.mountpath = path
            callback.parent = self
            self.router.use(path, _mounted(callback))
            callback._emit_mount(self)
        return self

    def route(self, path: str | re.Pattern[str]) -> Route:
        return self.router.route(path)

    def param(self, name: str | list[str], fn: ParamCallback) -> Self:
        """Register a param interceptor on the application's router."""
        self.router.param(name, fn)
        return self

    def all(self, path: str | re.Pattern[str], *handlers: Handler) -> Self:
        self.router.route(path).all(*handlers)
        return self

    def post(self, path: str | re.Pattern[str], *handlers: Handler) -> Self:
        self.router.route(path).post(*handlers)
        return self

    def put(self, path: str | re.Pattern[str], *handlers: Handler) -> Self:
        self.router.route(path).put(*handlers)
        return self

    def delete(self, path: str | re.Pattern[str], *handlers: Handler) -> Self:
        self.router.route(path).delete(*handlers)
        return self

    def patch(self, path: str | re.Pattern[str], *handlers: Handler) -> Self:
        self.router.route(path).patch(*handlers)
        return self

    def head(self, path: str | re.Pattern[str], *handlers: Handler) -> Self:
        self.router.route(path).head(*handlers)
        return self

    def options(self, path: str | re.Pattern[str], *handlers: Handler) -> Self:
        self.router.route(path).options(*handlers)
        return self

    # -- Mount lifecycle --

    def on_mount(self, func: Callable[["Application"], Any]) -> Callable[["Application"], Any]:
        """Register a listener called with the parent when this app is mounted.

        Usage::

            @admin.on_mount
            def mounted(parent):
                logger.info("admin mounted at %s", admin.mountpath)
        """
        self._mount_listeners.append(func)
        return func

    def _emit_mount(self, parent: "Application") -> None:
        for listener in self._mount_listeners:
            listener(parent)

    # -- Lifecycle hooks --

    def on_startup(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync startup hook via decorator.

        Hooks run in registration order during ASGI lifespan startup,
        before the server begins accepting HTTP requests.

        Usage::

            @app.on_startup
            async def setup():
                await db.connect()
        """
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync shutdown hook via decorator.

        Hooks run in registration order during ASGI lifespan shutdown,
        after the server stops accepting new requests.
        """
        self._shutdown_hooks.append(func)
        return func

    # -- Dispatch --

    async def handle(
        self,
        request: Request,
        response: Response,
        callback: Done | None = None,
    ) -> None:
        """Dispatch *request* through the application's router.

        *callback* receives the pending error (or ``None``) when the
        stack is exhausted. Without it the default final handler answers
        404s and unhandled errors.
        """
        done = callback or final_handler(
            request,
            response,
            env=self.get("env"),
            on_error=self.log_error,
        )
        await self.router.handle(request, response, done)

    def log_error(self, err: Any) -> None:
        """Log an unhandled dispatch error unless ``env`` is ``test``."""
        if self.get("env") == "test":
            return
        if isinstance(err, BaseException):
            logger.error("unhandled error: %s", err, exc_info=err)
        else:
            logger.error("unhandled error: %r", err)

    # -- Server --

    def run(self, host: str | None = None, port: int | None = None) -> None:
        """Start a pounce server for this application.

        Args:
            host: Override bind host.
            port: Override bind port.
        """
        from junction.server.serve import run_server

        run_server(
            self,
            host or self.config.host,
            port or self.config.port,
            workers=self.config.workers,
            log_level=self.config.log_level,
        )

    listen = run

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point.

        Handles lifespan scopes directly, then delegates HTTP scopes to
        the request handler.
        """
        if scope["type"] == "lifespan":
            await self._handle_lifespan(scope, receive, send)
            return

        await handle_request(scope, receive, send, app=self)

    async def _handle_lifespan(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """Run the ASGI lifespan protocol.

        Runs registered startup/shutdown hooks and signals completion
        back to the server.
        """
        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    for hook in self._startup_hooks:
                        result = hook()
                        if inspect.isawaitable(result):
                            await result
                    await send({"type": "lifespan.startup.complete"})
                except Exception as exc:
                    logger.exception("startup hook failed")
                    await send(
                        {
                            "type": "lifespan.startup.failed",
                            "message": str(exc),
                        }
                    )
                    return

            elif msg_type == "lifespan.shutdown":
                for hook in self._shutdown_hooks:
                    result = hook()
                    if inspect.isawaitable(result):
                        await result
                await send({"type": "lifespan.shutdown.complete"})
                return

    def __repr__(self) -> str:
        return f"<Application mountpath={self.mountpath!r} env={self.get('env')!r}>"


def _mounted(app: Application) -> Handler:
    """Wrap *app* as middleware for its parent's router.

    The child's ``init`` middleware rebinds the request to the child;
    the wrapper rebinds it to the parent before continuing there.
    """

    async def mounted_app(request: Request, response: Response, next: Next) -> None:  # noqa: A002
        parent = request.app

        def restore(err: Any = None) -> None:
            request.app = parent
            response.app = parent
            next(err)

        await app.handle(request, response, restore)

    mounted_app.is_dispatcher = True  # type: ignore[attr-defined]
    return mounted_app
