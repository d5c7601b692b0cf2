"""Invoke helpers — call sync or async callables uniformly.

Junction handlers, param interceptors and ``done`` callbacks can be
``def`` or ``async def``. Any code that calls a user-provided callable
goes through here so the sync/async check lives in exactly one place.

Usage::

    from junction._internal.invoke import invoke

    result = await invoke(handler, *args, **kwargs)
"""

import inspect
from typing import Any


async def invoke(handler: Any, *args: Any, **kwargs: Any) -> Any:
    """Call a handler and await the result if it's a coroutine."""
    result = handler(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def arity(handler: Any) -> int:
    """Count the positional parameters *handler* accepts.

    ``*args`` counts as unbounded, so a ``(*args)`` handler is treated
    like a normal three-argument handler, never an error handler.
    Objects without an inspectable signature count as three.
    """
    try:
        sig = inspect.signature(handler)
    except (TypeError, ValueError):
        return 3
    count = 0
    for param in sig.parameters.values():
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            count += 1
        elif param.kind is inspect.Parameter.VAR_POSITIONAL:
            return 3
    return count
