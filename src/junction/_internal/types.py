"""Shared type aliases used across junction modules."""

from collections.abc import Callable
from typing import Any, TypeAlias

# Middleware, route or error handler: (request, response, next) or
# (error, request, response, next)
Handler: TypeAlias = Callable[..., Any]

# Param interceptor — (request, response, next, value, name)
ParamCallback: TypeAlias = Callable[..., Any]

# Continuation at the end of a stack — (error | None)
Done: TypeAlias = Callable[..., Any]
