"""Layer — one compiled path pattern wrapping one handler.

Layers are built once at registration time and shared by every request,
so ``match()`` returns a fresh :class:`LayerMatch` instead of storing
the matched prefix and params on the layer.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, cast
from urllib.parse import unquote

from junction._internal.invoke import arity, invoke
from junction._internal.types import Handler
from junction.errors import HandlerTimeout, ParamDecodeError
from junction.routing.pattern import CompiledPattern, Key, compile_path
from junction.routing.signals import CONTINUE, Fail, Next, Outcome

if TYPE_CHECKING:
    from junction.http.request import Request
    from junction.http.response import Response
    from junction.routing.route import Route

logger = logging.getLogger("junction.router.layer")

_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


@dataclass(frozen=True, slots=True)
class LayerMatch:
    """Result of a successful :meth:`Layer.match`.

    ``path`` is the matched prefix (used for trimming mounted paths);
    ``params`` maps key names to decoded values (``None`` for optional
    keys that did not participate).
    """

    path: str
    params: dict[str, str | None] = field(default_factory=dict)


def decode_param(value: str | None) -> str | None:
    """Percent-decode a captured value.

    Raises ``ParamDecodeError`` (400) for malformed escapes or bytes
    that are not valid UTF-8.
    """
    if not value:
        return value
    if _BAD_ESCAPE_RE.search(value):
        raise ParamDecodeError(value)
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError as exc:
        raise ParamDecodeError(value) from exc


def handler_name(handler: Any) -> str:
    return getattr(handler, "__name__", None) or type(handler).__name__.lower() or "<anonymous>"


class Layer:
    """A path matcher bound to a handler.

    The handler's arity picks the path the dispatcher takes: three
    positional parameters ``(request, response, next)`` for a normal
    handler, four ``(error, request, response, next)`` for an error
    handler.
    """

    __slots__ = ("_arity", "handler", "method", "name", "pattern", "route")

    def __init__(
        self,
        path: str | re.Pattern[str],
        handler: Handler,
        *,
        sensitive: bool = False,
        strict: bool = False,
        end: bool = True,
    ) -> None:
        logger.debug("new %s", path)
        self.pattern: CompiledPattern = compile_path(
            path, sensitive=sensitive, strict=strict, end=end
        )
        self.handler = handler
        self.name = handler_name(handler)
        self.method: str | None = None
        self.route: Route | None = None
        self._arity = arity(handler)

    @property
    def keys(self) -> tuple[Key, ...]:
        return self.pattern.keys

    @property
    def is_error_handler(self) -> bool:
        return self._arity == 4

    def match(self, path: str | None) -> LayerMatch | None:
        """Match *path* against this layer's pattern.

        Returns ``None`` on no match. Raises ``ParamDecodeError`` when a
        captured value cannot be decoded; the router treats that as a
        match error, not a crash.
        """
        if path is None:
            return None

        pattern = self.pattern
        if pattern.fast_slash:
            return LayerMatch(path="")
        if pattern.fast_star:
            return LayerMatch(path=path, params={"0": decode_param(path)})

        m = pattern.regex.match(path)
        if m is None:
            return None

        params: dict[str, str | None] = {}
        for key, raw in zip(pattern.keys, m.groups(), strict=False):
            value = decode_param(raw)
            if value is not None or key.name not in params:
                params[key.name] = value
        return LayerMatch(path=m.group(0), params=params)

    async def handle_request(
        self,
        request: Request,
        response: Response,
        *,
        timeout: float | None = None,
    ) -> Outcome | None:
        """Run a normal handler. Error handlers are skipped."""
        if self._arity > 3:
            return CONTINUE
        return await run_handler(
            lambda nxt: self.handler(request, response, nxt),
            self.name,
            response,
            timeout,
        )

    async def handle_error(
        self,
        error: Any,
        request: Request,
        response: Response,
        *,
        timeout: float | None = None,
    ) -> Outcome | None:
        """Run an error handler. Normal handlers pass the error on."""
        if self._arity != 4:
            return Fail(error)
        return await run_handler(
            lambda nxt: self.handler(error, request, response, nxt),
            self.name,
            response,
            timeout,
        )

    def __repr__(self) -> str:
        method = f" {self.method.upper()}" if self.method else ""
        return f"<Layer{method} {self.pattern.source!r} {self.name}>"


async def run_handler(
    call: Callable[[Next], Any],
    name: str,
    response: Response,
    timeout: float | None,
) -> Outcome | None:
    """Run one handler invocation and wait for its continuation.

    *call* receives a fresh :class:`Next` and invokes the user handler
    with it. The handler runs as its own task, so dispatch resumes the
    moment ``next`` is called even if the handler keeps going (awaiting
    ``response.wait_finished()`` to log timings, say).

    Returns the outcome passed to ``next``, ``Fail(exc)`` when the
    handler raises before calling it, or ``None`` when the response
    finishes without ``next`` being called; dispatch ends there.
    """
    nxt = Next(name)
    handler = asyncio.ensure_future(invoke(call, nxt))
    # Only a response finished during this handler ends dispatch early
    finished = None if response.finished else asyncio.ensure_future(response.wait_finished())
    waiters = [f for f in (handler, nxt.future, finished) if f is not None]
    try:
        async with asyncio.timeout(timeout):
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if not nxt.called and handler.done():
                error = handler.exception()
                if error is not None:
                    return Fail(error)
                if not response.finished:
                    await asyncio.wait(waiters[1:], return_when=asyncio.FIRST_COMPLETED)
    except TimeoutError:
        if not nxt.called:
            handler.cancel()
            _detach(handler, name)
            return Fail(HandlerTimeout(name, cast(float, timeout)))
    except asyncio.CancelledError:
        handler.cancel()
        raise
    finally:
        if finished is not None:
            finished.cancel()

    _detach(handler, name)
    return nxt.outcome if nxt.called else None


# Handler tasks still running after dispatch moved on
_detached: set[asyncio.Future[Any]] = set()


def _detach(handler: asyncio.Future[Any], name: str) -> None:
    """Let *handler* run to completion, logging an exception it raises."""

    def report(task: asyncio.Future[Any]) -> None:
        _detached.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("%s raised after handing off the request", name, exc_info=error)

    if handler.done():
        report(handler)
        return
    _detached.add(handler)
    handler.add_done_callback(report)
