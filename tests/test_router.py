"""Tests for junction.routing.router — the dispatch engine."""

import asyncio
import logging
from typing import Any

import pytest

from junction.errors import HandlerTimeout, ParamDecodeError
from junction.http.request import Request
from junction.http.response import Response
from junction.routing.router import Router


def _make(method: str = "GET", url: str = "/") -> tuple[Request, Response]:
    request = Request(method=method, url=url)
    return request, Response(request)


def _collect() -> tuple[list[Any], Any]:
    errors: list[Any] = []

    def done(err: Any = None) -> None:
        errors.append(err)

    return errors, done


class TestMatching:
    async def test_root_middleware_sees_every_path(self) -> None:
        router = Router()
        seen: list[tuple[str, str]] = []

        def mw(req, res, next):
            seen.append((req.url, req.base_url))
            next()

        router.use(mw)
        request, response = _make(url="/deep/nested/path?x=1")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert seen == [("/deep/nested/path?x=1", "")]
        assert errors == [None]

    async def test_named_param(self) -> None:
        router = Router()
        captured: dict[str, Any] = {}

        def show(req, res, next):
            captured.update(req.params)
            res.send("ok")

        router.get("/user/:id", show)
        request, response = _make(url="/user/42")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert captured == {"id": "42"}
        assert errors == []
        assert response.finished
        assert response.body == b"ok"

    async def test_named_param_does_not_match_longer_literal(self) -> None:
        router = Router()
        called = []
        router.get("/user/:id", lambda req, res, next: called.append(req.url))

        request, response = _make(url="/username")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert called == []
        assert errors == [None]

    async def test_prefix_respects_segment_boundary(self) -> None:
        router = Router()
        seen: list[str] = []

        def mw(req, res, next):
            seen.append(req.url)
            next()

        router.use("/user", mw)

        for url in ("/username", "/user/7", "/user.json", "/user"):
            request, response = _make(url=url)
            errors, done = _collect()
            await router.handle(request, response, done)
            assert errors == [None]

        assert seen == ["/7", "/"]

    async def test_params_replaced_per_layer(self) -> None:
        router = Router()
        seen: list[dict[str, Any]] = []

        def record(req, res, next):
            seen.append(dict(req.params))
            next()

        router.use("/shop/:shop", record)
        router.get("/shop/:shop/item/:item", record)
        request, response = _make(url="/shop/a/item/b")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert seen == [{"shop": "a"}, {"shop": "a", "item": "b"}]
        assert errors == [None]

    async def test_params_restored_after_dispatch(self) -> None:
        router = Router()
        router.get("/x/:id", lambda req, res, next: next())
        request, response = _make(url="/x/1")
        request.params = {"outer": "yes"}
        errors, done = _collect()
        await router.handle(request, response, done)

        assert request.params == {"outer": "yes"}

    async def test_method_mismatch_skips_route(self) -> None:
        router = Router()
        called = []
        router.post("/a", lambda req, res, next: called.append("post"))

        request, response = _make(method="GET", url="/a")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert called == []
        assert errors == [None]

    async def test_head_dispatches_to_get(self) -> None:
        router = Router()
        router.get("/a", lambda req, res, next: res.send("body"))

        request, response = _make(method="HEAD", url="/a")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert errors == []
        assert response.body == b"body"

    async def test_case_sensitive_option(self) -> None:
        router = Router(case_sensitive=True)
        router.get("/About", lambda req, res, next: res.send("about"))

        request, response = _make(url="/about")
        errors, done = _collect()
        await router.handle(request, response, done)
        assert errors == [None]

        request, response = _make(url="/About")
        errors, done = _collect()
        await router.handle(request, response, done)
        assert errors == []

    async def test_strict_option(self) -> None:
        loose = Router()
        loose.get("/a", lambda req, res, next: res.send("a"))
        request, response = _make(url="/a/")
        errors, done = _collect()
        await loose.handle(request, response, done)
        assert response.finished

        strict = Router(strict=True)
        strict.get("/a", lambda req, res, next: res.send("a"))
        request, response = _make(url="/a/")
        errors, done = _collect()
        await strict.handle(request, response, done)
        assert errors == [None]

    async def test_route_is_set_on_request(self) -> None:
        router = Router()
        route = router.route("/r")
        seen = []
        route.get(lambda req, res, next: seen.append(req.route) or res.end())

        request, response = _make(url="/r")
        await router.handle(request, response)

        assert seen == [route]

    async def test_async_handlers(self) -> None:
        router = Router()
        order: list[str] = []

        async def slow(req, res, next):
            await asyncio.sleep(0)
            order.append("slow")
            next()

        async def finish(req, res, next):
            order.append("finish")
            res.send("done")

        router.use(slow)
        router.get("/", finish)
        request, response = _make()
        await router.handle(request, response)

        assert order == ["slow", "finish"]
        assert response.body == b"done"

    async def test_next_called_later_from_callback(self) -> None:
        router = Router()

        def deferred(req, res, next):
            asyncio.get_running_loop().call_soon(next)

        router.use(deferred)
        router.get("/", lambda req, res, next: res.send("after"))
        request, response = _make()
        await router.handle(request, response)

        assert response.body == b"after"

    async def test_next_called_twice_is_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        router = Router()
        calls = []

        def twice(req, res, next):
            next()
            next()

        router.use(twice)
        router.use(lambda req, res, next: calls.append(1) or next())
        request, response = _make()
        errors, done = _collect()
        with caplog.at_level(logging.WARNING, logger="junction.router"):
            await router.handle(request, response, done)

        assert calls == [1]
        assert errors == [None]
        assert "more than once" in caplog.text


class TestContinuation:
    async def test_middleware_resumes_after_downstream_finishes(self) -> None:
        router = Router()
        order: list[str] = []
        logged = asyncio.Event()

        async def timing(req, res, next):
            order.append("before")
            next()
            await res.wait_finished()
            order.append("after")
            logged.set()

        def handler(req, res, next):
            order.append("handler")
            res.send("ok")

        router.use(timing)
        router.get("/", handler)
        request, response = _make()
        errors, done = _collect()
        await asyncio.wait_for(router.handle(request, response, done), 1)
        await asyncio.wait_for(logged.wait(), 1)

        assert order == ["before", "handler", "after"]
        assert response.body == b"ok"
        assert errors == []

    async def test_next_hands_off_before_handler_returns(self) -> None:
        router = Router()
        gate = asyncio.Event()
        order: list[str] = []

        async def lingering(req, res, next):
            next()
            await gate.wait()
            order.append("lingering done")

        router.use(lingering)
        router.get("/", lambda req, res, next: order.append("handler") or res.send("ok"))
        request, response = _make()
        await asyncio.wait_for(router.handle(request, response), 1)

        assert order == ["handler"]
        assert response.finished
        gate.set()
        for _ in range(5):
            await asyncio.sleep(0)
        assert order == ["handler", "lingering done"]

    async def test_error_after_next_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        router = Router()
        raised = asyncio.Event()

        async def late_failure(req, res, next):
            next()
            await asyncio.sleep(0)
            raised.set()
            msg = "too late"
            raise RuntimeError(msg)

        router.use(late_failure)
        router.get("/", lambda req, res, next: res.send("ok"))
        request, response = _make()
        errors, done = _collect()
        with caplog.at_level(logging.ERROR, logger="junction.router.layer"):
            await router.handle(request, response, done)
            await asyncio.wait_for(raised.wait(), 1)
            for _ in range(5):
                await asyncio.sleep(0)

        assert errors == []
        assert response.body == b"ok"
        assert "late_failure raised after handing off the request" in caplog.text

    async def test_error_before_next_still_flows(self) -> None:
        router = Router()

        async def failing(req, res, next):
            await asyncio.sleep(0)
            msg = "early"
            raise ValueError(msg)

        router.use(failing)
        request, response = _make()
        errors, done = _collect()
        await router.handle(request, response, done)

        assert isinstance(errors[0], ValueError)


class TestParamInterceptors:
    async def test_called_once_for_same_value_across_layers(self) -> None:
        router = Router()
        calls: list[tuple[str, str]] = []

        def load(req, res, next, value, name):
            calls.append((name, value))
            next()

        router.param("id", load)
        router.use("/user/:id", lambda req, res, next: next())
        router.get("/user/:id", lambda req, res, next: res.send("ok"))

        request, response = _make(url="/user/42")
        await router.handle(request, response)

        assert calls == [("id", "42")]
        assert response.body == b"ok"

    async def test_runs_before_handler_and_can_rewrite(self) -> None:
        router = Router()
        seen = []

        def to_int(req, res, next, value, name):
            req.params[name] = int(value)
            next()

        router.param(":id", to_int)
        router.get("/item/:id", lambda req, res, next: seen.append(req.params["id"]) or res.end())

        request, response = _make(url="/item/5")
        await router.handle(request, response)

        assert seen == [5]

    async def test_rewritten_value_kept_for_later_layers(self) -> None:
        router = Router()
        seen = []

        def to_int(req, res, next, value, name):
            req.params[name] = int(value)
            next()

        router.param("id", to_int)
        router.use("/item/:id", lambda req, res, next: next())
        router.get("/item/:id", lambda req, res, next: seen.append(req.params["id"]) or res.end())

        request, response = _make(url="/item/5")
        await router.handle(request, response)

        assert seen == [5]

    async def test_interceptors_chain_in_order(self) -> None:
        router = Router()
        order: list[str] = []

        def first(req, res, next, value, name):
            order.append("first")
            next()

        async def second(req, res, next, value, name):
            order.append("second")
            next()

        router.param("id", first)
        router.param("id", second)
        router.get("/:id", lambda req, res, next: order.append("handler") or res.end())

        request, response = _make(url="/1")
        await router.handle(request, response)

        assert order == ["first", "second", "handler"]

    async def test_list_of_names(self) -> None:
        router = Router()
        names: list[str] = []

        def record(req, res, next, value, name):
            names.append(name)
            next()

        router.param(["a", "b"], record)
        router.get("/:a/:b", lambda req, res, next: res.end())

        request, response = _make(url="/x/y")
        await router.handle(request, response)

        assert names == ["a", "b"]

    async def test_error_goes_to_error_handler_and_is_reused(self) -> None:
        router = Router()
        calls = []
        caught = []

        def reject(req, res, next, value, name):
            calls.append(value)
            next(ValueError("bad id"))

        def on_error(err, req, res, next):
            caught.append(str(err))
            next()

        router.param("id", reject)
        router.use("/u/:id", lambda req, res, next: next())
        router.use(on_error)
        router.use("/u/:id", lambda req, res, next: next())

        request, response = _make(url="/u/1")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert calls == ["1"]
        assert caught == ["bad id"]
        assert len(errors) == 1
        assert isinstance(errors[0], ValueError)

    async def test_route_sentinel_from_interceptor_skips_layer(self) -> None:
        router = Router()
        reached = []

        router.param("id", lambda req, res, next, value, name: next("route"))
        router.get("/p/:id", lambda req, res, next: reached.append("first"))
        router.get("/p/other", lambda req, res, next: reached.append("second") or res.end())

        request, response = _make(url="/p/other")
        await router.handle(request, response)

        assert reached == ["second"]

    def test_rejects_non_callable(self) -> None:
        with pytest.raises(TypeError):
            Router().param("id", "nope")  # type: ignore[arg-type]

    def test_rejects_empty_name(self) -> None:
        with pytest.raises(TypeError):
            Router().param("", lambda *a: None)


class TestErrorFlow:
    async def test_error_skips_to_error_handler(self) -> None:
        router = Router()
        events: list[str] = []

        def a(req, res, next):
            events.append("a")
            next(RuntimeError("x"))
            events.append("a-after-next")

        def b(err, req, res, next):
            events.append(f"b:{err}")
            res.send("handled")

        router.use("/a", a)
        router.use("/a", lambda req, res, next: events.append("skipped"))
        router.use("/a", b)

        request, response = _make(url="/a")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert events == ["a", "a-after-next", "b:x"]
        assert errors == []
        assert response.body == b"handled"

    async def test_raised_exception_becomes_error(self) -> None:
        router = Router()
        caught = []

        def boom(req, res, next):
            raise KeyError("missing")

        router.use(boom)
        router.use(lambda err, req, res, next: caught.append(err) or next())

        request, response = _make()
        errors, done = _collect()
        await router.handle(request, response, done)

        assert isinstance(caught[0], KeyError)
        assert errors == [None]

    async def test_async_exception_becomes_error(self) -> None:
        router = Router()

        async def boom(req, res, next):
            await asyncio.sleep(0)
            raise ValueError("async")

        router.use(boom)
        request, response = _make()
        errors, done = _collect()
        await router.handle(request, response, done)

        assert isinstance(errors[0], ValueError)

    async def test_error_handler_skipped_without_error(self) -> None:
        router = Router()
        called = []
        router.use(lambda err, req, res, next: called.append("error"))
        router.use(lambda req, res, next: called.append("normal") or next())

        request, response = _make()
        errors, done = _collect()
        await router.handle(request, response, done)

        assert called == ["normal"]
        assert errors == [None]

    async def test_routes_skipped_while_error_pending(self) -> None:
        router = Router()
        called = []
        router.use(lambda req, res, next: next("boom"))
        router.get("/", lambda req, res, next: called.append("route"))

        request, response = _make()
        errors, done = _collect()
        await router.handle(request, response, done)

        assert called == []
        assert errors == ["boom"]

    async def test_error_handler_can_recover(self) -> None:
        router = Router()
        router.use(lambda req, res, next: next(ValueError()))
        router.use(lambda err, req, res, next: next())
        router.get("/", lambda req, res, next: res.send("recovered"))

        request, response = _make()
        await router.handle(request, response)

        assert response.body == b"recovered"

    async def test_decode_error_is_400(self) -> None:
        router = Router()
        called = []
        caught = []
        router.get("/user/:id", lambda req, res, next: called.append("route"))
        router.use(lambda err, req, res, next: caught.append(err) or res.end())

        request, response = _make(url="/user/%E0%A4%A")
        await router.handle(request, response)

        assert called == []
        assert isinstance(caught[0], ParamDecodeError)
        assert caught[0].status == 400

    async def test_invalid_utf8_is_400(self) -> None:
        router = Router()
        router.get("/f/:name", lambda req, res, next: res.end())
        request, response = _make(url="/f/%FF")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert isinstance(errors[0], ParamDecodeError)

    async def test_unhandled_error_raises_without_done(self) -> None:
        router = Router()
        router.use(lambda req, res, next: next(LookupError("nope")))
        request, response = _make()

        with pytest.raises(LookupError):
            await router.handle(request, response)


class TestSentinels:
    async def test_next_route_skips_rest_of_route(self) -> None:
        router = Router()
        called: list[str] = []

        route = router.route("/a")
        route.get(lambda req, res, next: called.append("first") or next("route"))
        route.get(lambda req, res, next: called.append("skipped"))
        router.get("/a", lambda req, res, next: called.append("second") or res.end())

        request, response = _make(url="/a")
        await router.handle(request, response)

        assert called == ["first", "second"]

    async def test_next_router_leaves_sub_router(self) -> None:
        parent = Router()
        child = Router()
        called: list[str] = []

        child.use(lambda req, res, next: called.append("child") or next("router"))
        child.use(lambda req, res, next: called.append("skipped"))
        parent.use("/c", child)
        parent.use(lambda req, res, next: called.append("parent") or next())

        request, response = _make(url="/c/x")
        errors, done = _collect()
        await parent.handle(request, response, done)

        assert called == ["child", "parent"]
        assert errors == [None]

    async def test_next_router_from_route_handler(self) -> None:
        router = Router()
        called: list[str] = []
        router.get("/a", lambda req, res, next: next("router"))
        router.use(lambda req, res, next: called.append("after"))

        request, response = _make(url="/a")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert called == []
        assert errors == [None]


class TestAutomaticOptions:
    async def test_allow_lists_declared_methods(self) -> None:
        router = Router()
        called = []
        router.get("/a", lambda req, res, next: called.append("get"))
        router.post("/a", lambda req, res, next: called.append("post"))

        request, response = _make(method="OPTIONS", url="/a")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert called == []
        assert errors == []
        assert response.get("Allow") == "GET,POST"
        assert response.body == b"GET,POST"

    async def test_allow_is_deduplicated(self) -> None:
        router = Router()
        router.get("/a", lambda req, res, next: None)
        router.route("/a").get(lambda req, res, next: None).put(lambda req, res, next: None)

        request, response = _make(method="OPTIONS", url="/a")
        await router.handle(request, response)

        assert response.get("Allow") == "GET,PUT"

    async def test_explicit_options_handler_wins(self) -> None:
        router = Router()
        router.get("/a", lambda req, res, next: None)
        router.options("/a", lambda req, res, next: res.status(204).end())

        request, response = _make(method="OPTIONS", url="/a")
        await router.handle(request, response)

        assert response.status_code == 204
        assert response.get("Allow") is None

    async def test_no_routes_falls_through(self) -> None:
        router = Router()
        request, response = _make(method="OPTIONS", url="/nothing")
        errors, done = _collect()
        await router.handle(request, response, done)

        assert errors == [None]
        assert not response.finished


class TestMounting:
    async def test_url_round_trip(self) -> None:
        parent = Router()
        child = Router()
        seen: list[tuple[str, str, str]] = []

        def inner(req, res, next):
            seen.append((req.url, req.base_url, req.original_url))
            next()

        def outer(req, res, next):
            seen.append((req.url, req.base_url, req.original_url))
            res.end()

        child.get("/items", inner)
        parent.use("/api", child)
        parent.use(outer)

        request, response = _make(url="/api/items")
        await parent.handle(request, response)

        assert seen == [
            ("/items", "/api", "/api/items"),
            ("/api/items", "", "/api/items"),
        ]

    async def test_nested_mounts_accumulate_base_url(self) -> None:
        root = Router()
        v1 = Router()
        users = Router()
        seen = []

        users.get("/:id", lambda req, res, next: seen.append((req.base_url, req.url)) or res.end())
        v1.use("/users", users)
        root.use("/v1", v1)

        request, response = _make(url="/v1/users/3")
        await root.handle(request, response)

        assert seen == [("/v1/users", "/3")]

    async def test_trimming_to_empty_adds_slash(self) -> None:
        router = Router()
        seen = []
        router.use("/api", lambda req, res, next: seen.append(req.url) or next())

        request, response = _make(url="/api?q=1")
        await router.handle(request, response, lambda err=None: None)

        assert seen == ["/?q=1"]
        assert request.url == "/api?q=1"

    async def test_absolute_url_keeps_host(self) -> None:
        router = Router()
        seen = []
        router.use("/api", lambda req, res, next: seen.append(req.url) or next())

        request, response = _make(url="http://example.com/api/items")
        await router.handle(request, response, lambda err=None: None)

        assert seen == ["http://example.com/items"]
        assert request.url == "http://example.com/api/items"

    async def test_merge_params(self) -> None:
        parent = Router()
        child = Router(merge_params=True)
        seen = []

        child.get("/posts/:post", lambda req, res, next: seen.append(dict(req.params)) or res.end())
        parent.use("/users/:user", child)

        request, response = _make(url="/users/9/posts/3")
        await parent.handle(request, response)

        assert seen == [{"user": "9", "post": "3"}]

    async def test_without_merge_params_parent_params_hidden(self) -> None:
        parent = Router()
        child = Router()
        seen = []

        child.get("/posts/:post", lambda req, res, next: seen.append(dict(req.params)) or res.end())
        parent.use("/users/:user", child)

        request, response = _make(url="/users/9/posts/3")
        await parent.handle(request, response)

        assert seen == [{"post": "3"}]


class TestRegistration:
    def test_use_requires_a_function(self) -> None:
        with pytest.raises(TypeError, match="requires a middleware function"):
            Router().use("/x")

    def test_use_rejects_non_callable(self) -> None:
        with pytest.raises(TypeError):
            Router().use("/x", 42)

    def test_use_flattens_lists(self) -> None:
        router = Router()
        router.use([lambda req, res, next: None, [lambda req, res, next: None]])
        assert len(router.stack) == 2

    def test_route_methods_return_router(self) -> None:
        router = Router()
        assert router.get("/", lambda req, res, next: None) is router
        assert len(router.stack) == 1
        assert router.stack[0].route is not None


class TestTimeout:
    async def test_stalled_handler_fails_with_timeout(self) -> None:
        router = Router(timeout=0.01)
        router.use(lambda req, res, next: None)

        request, response = _make()
        errors, done = _collect()
        await router.handle(request, response, done)

        assert isinstance(errors[0], HandlerTimeout)
        assert errors[0].status == 503

    async def test_without_timeout_stall_waits(self) -> None:
        router = Router()
        router.use(lambda req, res, next: None)
        request, response = _make()

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(router.handle(request, response), 0.01)

    async def test_timeout_does_not_cover_mounted_router(self) -> None:
        parent = Router(timeout=0.05)
        child = Router()

        async def slow_but_fine(req, res, next):
            await asyncio.sleep(0.01)
            next()

        for _ in range(8):
            child.use(slow_but_fine)
        parent.use(child)

        request, response = _make()
        errors, done = _collect()
        await parent.handle(request, response, done)

        assert errors == [None]


class TestConcurrency:
    async def test_interleaved_requests_keep_state_separate(self) -> None:
        root = Router()
        api = Router()
        loads: list[str] = []
        seen: dict[str, list[tuple[dict[str, Any], str, str]]] = {}
        restored: dict[str, tuple[str, str]] = {}
        second_arrived = asyncio.Event()

        def load_user(req, res, next, value, name):
            loads.append(value)
            next()

        async def show(req, res, next):
            user = req.params["id"]
            seen[user] = [(dict(req.params), req.url, req.base_url)]
            if user == "1":
                await second_arrived.wait()
            else:
                second_arrived.set()
            await asyncio.sleep(0)
            seen[user].append((dict(req.params), req.url, req.base_url))
            next()

        def after(req, res, next):
            user = req.original_url.rsplit("/", 1)[-1]
            restored[user] = (req.url, req.base_url)
            res.send(user)

        api.param("id", load_user)
        api.get("/users/:id", show)
        root.use("/api", api)
        root.use(after)

        first = _make(url="/api/users/1")
        second = _make(url="/api/users/2")
        errors: list[Any] = []
        await asyncio.wait_for(
            asyncio.gather(
                root.handle(*first, errors.append),
                root.handle(*second, errors.append),
            ),
            1,
        )

        assert seen["1"] == [({"id": "1"}, "/users/1", "/api")] * 2
        assert seen["2"] == [({"id": "2"}, "/users/2", "/api")] * 2
        assert sorted(loads) == ["1", "2"]
        assert restored == {"1": ("/api/users/1", ""), "2": ("/api/users/2", "")}
        assert first[1].body == b"1"
        assert second[1].body == b"2"
        assert first[0].params == {}
        assert errors == []
