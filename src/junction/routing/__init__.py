"""Routing — layers, routes and the router that dispatches through them.

Patterns are compiled when handlers are registered; dispatch state lives
with each request, never on the shared stack.
"""

from junction.routing.layer import Layer, LayerMatch
from junction.routing.pattern import CompiledPattern, Key, compile_path
from junction.routing.route import Route
from junction.routing.router import Router
from junction.routing.signals import (
    ABORT_ROUTER,
    CONTINUE,
    SKIP_ROUTE,
    AbortRouter,
    Continue,
    Fail,
    Next,
    Outcome,
    SkipRoute,
)

__all__ = [
    "ABORT_ROUTER",
    "CONTINUE",
    "SKIP_ROUTE",
    "AbortRouter",
    "CompiledPattern",
    "Continue",
    "Fail",
    "Key",
    "Layer",
    "LayerMatch",
    "Next",
    "Outcome",
    "Route",
    "Router",
    "SkipRoute",
    "compile_path",
]
