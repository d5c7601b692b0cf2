"""Continuation signals — what a handler tells the dispatcher.

Every handler receives a :class:`Next`. Calling it resolves the handler's
outcome exactly once:

- ``next()``                  -> :data:`CONTINUE`
- ``next("route")``           -> :data:`SKIP_ROUTE` (skip the rest of this route)
- ``next("router")``          -> :data:`ABORT_ROUTER` (leave this router)
- ``next(err)``               -> ``Fail(err)``

The string forms are accepted for compatibility; the dispatcher only
ever sees :data:`Outcome` values.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, TypeAlias

logger = logging.getLogger("junction.router")


@dataclass(frozen=True, slots=True)
class Continue:
    """Go on to the next matching layer."""


@dataclass(frozen=True, slots=True)
class SkipRoute:
    """Stop the current route's handlers; the router keeps matching."""


@dataclass(frozen=True, slots=True)
class AbortRouter:
    """Stop the current router; its parent continues without error."""


@dataclass(frozen=True, slots=True)
class Fail:
    """Carry *error* to the next error-handling layer."""

    error: Any


Outcome: TypeAlias = Continue | SkipRoute | AbortRouter | Fail

CONTINUE = Continue()
SKIP_ROUTE = SkipRoute()
ABORT_ROUTER = AbortRouter()


def to_outcome(value: Any = None) -> Outcome:
    """Normalize a value passed to ``next()`` into an :data:`Outcome`."""
    match value:
        case Continue() | SkipRoute() | AbortRouter() | Fail():
            return value
        case None:
            return CONTINUE
        case "route":
            return SKIP_ROUTE
        case "router":
            return ABORT_ROUTER
        case _:
            return Fail(value)


def error_of(outcome: Outcome) -> Any:
    """Return the carried error, or ``None`` for non-failure outcomes."""
    if isinstance(outcome, Fail):
        return outcome.error
    return None


class Next:
    """A one-shot continuation handed to a single handler invocation.

    The handler calls it (synchronously, from any point in its
    lifetime) to hand control back to the dispatcher. The dispatcher
    awaits :attr:`future`. Extra calls after the first are logged and
    ignored because the dispatcher has already moved on.
    """

    __slots__ = ("_future", "name")

    def __init__(self, name: str = "<anonymous>") -> None:
        self.name = name
        self._future: asyncio.Future[Outcome] = asyncio.get_running_loop().create_future()

    def __call__(self, err: Any = None) -> None:
        if self._future.done():
            logger.warning("next() called more than once by %s; ignoring", self.name)
            return
        self._future.set_result(to_outcome(err))

    @property
    def called(self) -> bool:
        return self._future.done()

    @property
    def future(self) -> asyncio.Future[Outcome]:
        return self._future

    @property
    def outcome(self) -> Outcome:
        """The resolved outcome. Only valid once :attr:`called` is true."""
        return self._future.result()

    def __repr__(self) -> str:
        state = repr(self._future.result()) if self._future.done() else "pending"
        return f"<Next {self.name} {state}>"
