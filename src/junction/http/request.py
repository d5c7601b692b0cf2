"""HTTP request facade.

Unlike most of the framework, the request is mutable: the router
rewrites ``url``, ``base_url``, ``params`` and ``route`` as it walks
nested routers, and middleware attaches ``query`` and ``app``.
"""

from __future__ import annotations

import ipaddress
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from junction._internal.asgi import Receive
from junction._internal.urls import get_pathname
from junction.http.headers import Headers

if TYPE_CHECKING:
    from junction.app import Application
    from junction.http.response import Response
    from junction.routing.route import Route


def _untrusted(address: str, hop: int) -> bool:
    return False


@dataclass(slots=True, eq=False)
class Request:
    """An HTTP request as seen by one handler at one point in dispatch.

    ``url`` is relative to the router currently dispatching (its mount
    prefix removed); ``base_url`` holds the removed prefix and
    ``original_url`` never changes.
    """

    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    base_url: str = ""
    original_url: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    query: Any = None
    route: Route | None = None
    app: Application | None = None
    response: Response | None = None
    scheme: str = "http"
    http_version: str = "1.1"
    server: tuple[str, int] | None = None
    client: tuple[str, int] | None = None

    # Private: ASGI receive callable for body streaming
    _receive: Receive | None = field(default=None, repr=False)
    _cache: dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if not self.original_url:
            self.original_url = self.url

    # -- Computed properties --

    @property
    def path(self) -> str:
        """Path portion of ``url``."""
        return get_pathname(self.url) or ""

    def get(self, name: str) -> str | None:
        """Return a request header, case-insensitively.

        ``Referrer`` and ``Referer`` are interchangeable.
        """
        lower = name.lower()
        if lower in ("referer", "referrer"):
            return self.headers.get("referrer") or self.headers.get("referer")
        return self.headers.get(lower)

    header = get

    @property
    def protocol(self) -> str:
        """``http`` or ``https``.

        Honors ``X-Forwarded-Proto`` when the socket peer is trusted.
        """
        if not self._trust(self._socket_address, 0):
            return self.scheme
        forwarded = self.headers.get("x-forwarded-proto") or self.scheme
        return forwarded.split(",")[0].strip()

    @property
    def secure(self) -> bool:
        return self.protocol == "https"

    @property
    def ip(self) -> str:
        """Client address: the first untrusted hop, or the furthest one."""
        return self._addresses()[-1]

    @property
    def ips(self) -> list[str]:
        """Trusted ``X-Forwarded-For`` chain, client first."""
        addresses = self._addresses()
        return list(reversed(addresses[1:]))

    @property
    def hostname(self) -> str | None:
        """Host name without port, from ``Host`` or a trusted ``X-Forwarded-Host``."""
        host = None
        if self._trust(self._socket_address, 0):
            host = self.headers.get("x-forwarded-host")
        host = host or self.headers.get("host")
        if not host:
            return None
        host = host.split(",")[0].strip()
        offset = host.find("]") + 1 if host.startswith("[") else 0
        index = host.find(":", offset)
        return host[:index] if index != -1 else host

    @property
    def subdomains(self) -> list[str]:
        """Subdomains, most significant first, past ``subdomain offset``."""
        hostname = self.hostname
        if not hostname:
            return []
        offset = self.app.get("subdomain offset") if self.app is not None else 2
        try:
            ipaddress.ip_address(hostname.strip("[]"))
        except ValueError:
            parts = list(reversed(hostname.split(".")))
        else:
            parts = [hostname]
        return parts[offset or 0 :]

    # -- Proxy trust --

    @property
    def _socket_address(self) -> str:
        return self.client[0] if self.client else ""

    def _trust(self, address: str, hop: int) -> bool:
        fn = self.app.get("trust proxy fn") if self.app is not None else None
        return (fn or _untrusted)(address, hop)

    def _addresses(self) -> list[str]:
        """Socket address followed by forwarded hops, nearest first.

        Truncated after the first hop that is not trusted.
        """
        forwarded = ",".join(self.headers.get_list("x-forwarded-for"))
        hops = [hop.strip() for hop in reversed(forwarded.split(",")) if hop.strip()]
        addresses = [self._socket_address, *hops]
        for i in range(len(addresses) - 1):
            if not self._trust(addresses[i], i):
                return addresses[: i + 1]
        return addresses

    # -- Async body access --

    async def body(self) -> bytes:
        """Read the full request body.

        Result is cached: the ASGI receive is consumed once, then the
        same bytes are returned on subsequent calls.
        """
        if "_body" in self._cache:
            return self._cache["_body"]
        chunks = [chunk async for chunk in self.stream()]
        result = b"".join(chunks)
        self._cache["_body"] = result
        return result

    async def stream(self) -> AsyncGenerator[bytes]:
        """Stream the request body in chunks."""
        if self._receive is None:
            return
        while True:
            message = await self._receive()
            body = message.get("body", b"")
            if body:
                yield body
            if not message.get("more_body", False):
                break

    async def json(self) -> Any:
        """Parse the body as JSON."""
        import json as json_module

        raw = await self.body()
        return json_module.loads(raw)

    async def text(self) -> str:
        """Read the body as text (UTF-8)."""
        raw = await self.body()
        return raw.decode("utf-8")

    # -- Factory --

    @classmethod
    def from_asgi(cls, scope: dict[str, Any], receive: Receive) -> Request:
        """Create a Request from an ASGI scope and receive callable.

        The URL keeps its percent-encoding (``raw_path`` when the
        server provides it) so route params are decoded exactly once.
        """
        raw_path = scope.get("raw_path")
        if raw_path:
            path = raw_path.decode("latin-1")
        else:
            path = quote(scope.get("path", "/"), safe="/:@!$&'()*+,;=~")
        query_string = scope.get("query_string", b"")
        url = f"{path}?{query_string.decode('latin-1')}" if query_string else path

        server = scope.get("server")
        client = scope.get("client")
        return cls(
            method=scope["method"],
            url=url,
            headers=Headers(tuple(scope.get("headers", ()))),
            scheme=scope.get("scheme", "http"),
            http_version=scope.get("http_version", "1.1"),
            server=tuple(server) if server else None,
            client=tuple(client) if client else None,
            _receive=receive,
        )
