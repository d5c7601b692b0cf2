"""HTTP response facade.

Handlers build the response in place and finish it with :meth:`send`,
:meth:`json`, :meth:`redirect` or :meth:`end`. Finishing is what tells
the dispatcher a handler is done without calling ``next``; the ASGI
layer writes the finished response afterwards.
"""

from __future__ import annotations

import asyncio
import json
import mimetypes
import re
from collections.abc import Iterable, Mapping
from http import HTTPStatus
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from junction.errors import JunctionError

if TYPE_CHECKING:
    from junction.app import Application
    from junction.http.request import Request

# Characters left alone when encoding a Location header
_URL_SAFE = "/:?#[]@!$&'()*+,;=%~"

# Types that get ``; charset=utf-8`` appended when set without one
_CHARSET_TYPES = ("text/", "application/json", "application/javascript")

# Characters kept in a JSONP callback name
_CALLBACK_RE = re.compile(r"[^\[\]\w$.]")

_EXTRA_TYPES = {
    "json": "application/json",
    "html": "text/html",
    "text": "text/plain",
    "txt": "text/plain",
    "bin": "application/octet-stream",
}


def _status_phrase(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return str(code)


def lookup_type(name: str) -> str:
    """Resolve a short name or extension (``"json"``, ``".html"``) to a MIME type."""
    if "/" in name:
        return name
    ext = name.lstrip(".").lower()
    if ext in _EXTRA_TYPES:
        return _EXTRA_TYPES[ext]
    guessed, _ = mimetypes.guess_type(f"file.{ext}")
    return guessed or "application/octet-stream"


class Response:
    """A response under construction.

    Headers are stored case-insensitively, keeping the casing of the
    first ``set``. A header may carry several values (``append``).
    """

    __slots__ = (
        "_body",
        "_finished",
        "_headers",
        "app",
        "locals",
        "request",
        "status_code",
    )

    def __init__(
        self,
        request: Request | None = None,
        *,
        app: Application | None = None,
    ) -> None:
        self.request = request
        self.app = app
        self.status_code = 200
        self.locals: dict[str, Any] = {}
        self._headers: dict[str, tuple[str, list[str]]] = {}
        self._body = b""
        self._finished = asyncio.Event()

    # -- Status --

    def status(self, code: int) -> Response:
        self.status_code = code
        return self

    # -- Headers --

    def set(self, name: str | Mapping[str, Any], value: Any = None) -> Response:
        """Set header *name* to *value*, replacing earlier values.

        Accepts a mapping to set several at once. A list value sets a
        multi-valued header.
        """
        if isinstance(name, Mapping):
            for key, item in name.items():
                self.set(key, item)
            return self

        if isinstance(value, (list, tuple)):
            if name.lower() == "content-type":
                msg = "Content-Type cannot be set to a list"
                raise TypeError(msg)
            values = [str(v) for v in value]
        else:
            text = str(value)
            if name.lower() == "content-type" and "charset" not in text.lower():
                if text.startswith(_CHARSET_TYPES):
                    text += "; charset=utf-8"
            values = [text]

        self._headers[name.lower()] = (name, values)
        return self

    header = set

    def get(self, name: str) -> str | None:
        """Return header *name*, multiple values joined by ``", "``."""
        entry = self._headers.get(name.lower())
        if entry is None:
            return None
        return ", ".join(entry[1])

    def has(self, name: str) -> bool:
        return name.lower() in self._headers

    def append(self, name: str, value: str | Iterable[str]) -> Response:
        """Add *value* to header *name*, keeping earlier values."""
        new = [value] if isinstance(value, str) else [str(v) for v in value]
        entry = self._headers.get(name.lower())
        if entry is None:
            return self.set(name, new)
        entry[1].extend(new)
        return self

    def remove(self, name: str) -> Response:
        self._headers.pop(name.lower(), None)
        return self

    def type(self, name: str) -> Response:
        """Set Content-Type from a MIME type or a short name like ``"json"``."""
        return self.set("Content-Type", lookup_type(name))

    content_type = type

    def location(self, url: str) -> Response:
        """Set the Location header. ``"back"`` uses the Referrer or ``/``."""
        if url == "back":
            referrer = self.request.get("referrer") if self.request is not None else None
            url = referrer or "/"
        return self.set("Location", quote(url, safe=_URL_SAFE))

    def header_items(self) -> list[tuple[str, str]]:
        """Headers as ``(name, value)`` pairs, one pair per value."""
        return [(name, value) for name, values in self._headers.values() for value in values]

    # -- Sending --

    def send(self, body: Any = None) -> None:
        """Send *body* and finish the response.

        - ``str``: sent as UTF-8, ``text/html`` unless a type is set.
        - ``bytes``: sent as-is, ``application/octet-stream`` unless set.
        - ``dict``/``list``/numbers/``bool``: delegated to :meth:`json`.
        - ``None``: empty body.

        Generates an ETag when the ``etag`` setting is on and answers
        ``304 Not Modified`` when the request's ``If-None-Match`` matches.
        """
        match body:
            case None:
                chunk = b""
            case str():
                if not self.has("content-type"):
                    self.type("html")
                chunk = body.encode("utf-8")
            case bytes() | bytearray() | memoryview():
                if not self.has("content-type"):
                    self.type("bin")
                chunk = bytes(body)
            case _:
                self.json(body)
                return

        etag_fn = self._setting("etag fn")
        if body is not None and etag_fn is not None and not self.has("etag"):
            tag = etag_fn(chunk)
            if tag:
                self.set("ETag", tag)

        if self._is_fresh():
            self.status_code = 304

        if self.status_code in (204, 304):
            self.remove("Content-Type")
            self.remove("Content-Length")
            self.remove("Transfer-Encoding")
            chunk = b""

        self.end(chunk)

    def json(self, obj: Any) -> None:
        """Send *obj* serialized as JSON.

        Honors the ``json spaces`` setting for indentation.
        """
        body = self._dumps(obj)
        if not self.has("content-type"):
            self.set("Content-Type", "application/json")
        self.send(body)

    def jsonp(self, obj: Any) -> None:
        """Send *obj* as JSON, wrapped in a callback when the query names one.

        The callback is read from the query parameter named by the
        ``jsonp callback name`` setting and stripped to ``[]\\w$.``.
        """
        body = self._dumps(obj)

        if not self.has("content-type"):
            self.set("X-Content-Type-Options", "nosniff")
            self.set("Content-Type", "application/json")

        callback = self._jsonp_callback()
        if callback:
            self.set("X-Content-Type-Options", "nosniff")
            self.set("Content-Type", "text/javascript")
            body = body.replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")
            body = f"/**/ typeof {callback} === 'function' && {callback}({body});"

        self.send(body)

    def _dumps(self, obj: Any) -> str:
        spaces = self._setting("json spaces")
        if spaces:
            return json.dumps(obj, indent=spaces)
        return json.dumps(obj, separators=(",", ":"))

    def _jsonp_callback(self) -> str:
        name = self._setting("jsonp callback name") or "callback"
        query = self.request.query if self.request is not None else None
        value = query.get(name) if query else None
        if isinstance(value, list):
            value = value[0] if value else None
        if not isinstance(value, str):
            return ""
        return _CALLBACK_RE.sub("", value)

    def send_status(self, code: int) -> None:
        """Set *code* and send its reason phrase as plain text."""
        self.status_code = code
        self.type("txt")
        self.send(_status_phrase(code))

    def redirect(self, url: str | int, status: int | str = 302) -> None:
        """Redirect to *url*.

        Accepts ``redirect(url)``, ``redirect(url, 301)`` or
        ``redirect(301, url)``. A numeric string status is accepted.

        Raises:
            TypeError: If the status is not an integer.
        """
        if isinstance(url, int):
            url, status = str(status), url
        try:
            code = int(status)
        except ValueError:
            msg = f"redirect() status must be an integer, got {status!r}"
            raise TypeError(msg) from None
        self.location(url)
        address = self.get("location") or url
        self.status_code = code
        self.type("txt")
        self.send(f"{_status_phrase(code)}. Redirecting to {address}")

    def end(self, body: bytes | str = b"") -> None:
        """Finish the response with *body* as-is.

        Raises:
            JunctionError: If the response was already finished.
        """
        if self._finished.is_set():
            msg = "Cannot finish a response that has already been sent"
            raise JunctionError(msg)
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self._finished.set()

    # -- State --

    @property
    def body(self) -> bytes:
        return self._body

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    async def wait_finished(self) -> None:
        """Wait until the response has been finished."""
        await self._finished.wait()

    # -- Internal --

    def _setting(self, name: str) -> Any:
        return self.app.get(name) if self.app is not None else None

    def _is_fresh(self) -> bool:
        """Whether the client's cached copy (``If-None-Match``) is current."""
        request = self.request
        if request is None or request.method not in ("GET", "HEAD"):
            return False
        if not (200 <= self.status_code < 300 or self.status_code == 304):
            return False
        if "no-cache" in (request.get("cache-control") or ""):
            return False
        none_match = request.get("if-none-match")
        etag = self.get("etag")
        if not none_match or etag is None:
            return False
        if none_match.strip() == "*":
            return True
        current = etag.removeprefix("W/")
        return any(tag.strip().removeprefix("W/") == current for tag in none_match.split(","))

    def __repr__(self) -> str:
        state = "finished" if self.finished else "open"
        return f"<Response {self.status_code} {state}>"
