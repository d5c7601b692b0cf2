"""Application settings.

A :class:`Settings` object is a ``ChainMap``: an application's own
values sit in the first map, and a mounted sub-application chains its
parent's settings behind its own so unset names fall through.

Some settings are compiled into a companion ``"<name> fn"`` entry when
assigned:

- ``etag``          -> ``etag fn``          (body bytes -> ETag or ``None``)
- ``query parser``  -> ``query parser fn``  (query string -> parsed query)
- ``trust proxy``   -> ``trust proxy fn``   (address, hop index -> bool)
"""

from __future__ import annotations

import base64
import hashlib
import ipaddress
from collections import ChainMap
from collections.abc import Callable, Iterable
from typing import Any, TypeAlias

from junction.http.query import parse_extended, parse_simple

EtagFn: TypeAlias = Callable[[bytes], str]
TrustFn: TypeAlias = Callable[[str, int], bool]

_EMPTY_ETAG = '"0-2jmj7l5rSw0yVb/vlWAYkK/YBwk"'

# Named ranges accepted by the ``trust proxy`` setting
_NAMED_RANGES: dict[str, tuple[str, ...]] = {
    "loopback": ("127.0.0.1/8", "::1/128"),
    "linklocal": ("169.254.0.0/16", "fe80::/10"),
    "uniquelocal": ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7"),
}


class Settings(ChainMap[str, Any]):
    """Settings with derived entries and parent fallback.

    Writes always land in this application's own map; reads fall
    through to the parent once :meth:`inherit` has linked one.
    """

    def __init__(self, *maps: Any) -> None:
        super().__init__(*maps)
        # True while ``trust proxy`` still holds the built-in default
        self.trust_proxy_default = False

    def __setitem__(self, key: str, value: Any) -> None:
        super().__setitem__(key, value)
        match key:
            case "etag":
                super().__setitem__("etag fn", compile_etag(value))
            case "query parser":
                super().__setitem__("query parser fn", compile_query_parser(value))
            case "trust proxy":
                super().__setitem__("trust proxy fn", compile_trust(value))
                self.trust_proxy_default = False

    def inherit(self, parent: Settings) -> None:
        """Fall back to *parent* for names this map does not set.

        A ``trust proxy`` value still at its default is dropped so the
        parent's setting applies.
        """
        if self.trust_proxy_default and callable(parent.get("trust proxy fn")):
            own = self.maps[0]
            own.pop("trust proxy", None)
            own.pop("trust proxy fn", None)
        self.maps = [self.maps[0], parent]


# -- ETag --


def generate_etag(body: bytes, *, weak: bool = True) -> str:
    """Entity tag for *body*: length in hex plus a truncated SHA-1 digest."""
    if not body:
        tag = _EMPTY_ETAG
    else:
        digest = base64.b64encode(hashlib.sha1(body).digest()).decode("ascii")[:27]
        tag = f'"{len(body):x}-{digest}"'
    return f"W/{tag}" if weak else tag


def weak_etag(body: bytes) -> str:
    return generate_etag(body, weak=True)


def strong_etag(body: bytes) -> str:
    return generate_etag(body, weak=False)


def compile_etag(value: Any) -> EtagFn | None:
    """Resolve the ``etag`` setting to a generator function.

    Accepts a callable, ``True``/``"weak"``, ``"strong"``, or ``False``.
    """
    if callable(value):
        return value
    match value:
        case True | "weak":
            return weak_etag
        case "strong":
            return strong_etag
        case False:
            return None
    msg = f"unknown value for etag function: {value!r}"
    raise TypeError(msg)


# -- Query parser --


def _parse_nothing(query_string: bytes | str) -> dict[str, Any]:
    return {}


def compile_query_parser(value: Any) -> Callable[[bytes | str], Any]:
    """Resolve the ``query parser`` setting.

    Accepts a callable, ``True``/``"simple"``, ``"extended"``, or
    ``False`` (queries parse to an empty dict).
    """
    if callable(value):
        return value
    match value:
        case True | "simple":
            return parse_simple
        case "extended":
            return parse_extended
        case False:
            return _parse_nothing
    msg = f"unknown value for query parser function: {value!r}"
    raise TypeError(msg)


# -- Trust proxy --


def _trust_all(address: str, hop: int) -> bool:
    return True


def _trust_none(address: str, hop: int) -> bool:
    return False


def compile_trust(value: Any) -> TrustFn:
    """Resolve the ``trust proxy`` setting to a predicate.

    Args:
        value: ``True`` (trust every hop), ``False``/``None`` (trust
            none), an ``int`` hop count, a comma-separated string or
            list of addresses, CIDR ranges and the names ``loopback``,
            ``linklocal`` and ``uniquelocal``, or a callable
            ``(address, hop) -> bool``.

    Raises:
        ValueError: If an address or range does not parse.
    """
    if callable(value):
        return value
    if value is True:
        return _trust_all
    if value is False or value is None:
        return _trust_none
    if isinstance(value, int):
        hops = value

        def trust_hops(address: str, hop: int) -> bool:
            return hop < hops

        return trust_hops
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",")]
    return _trust_networks(value)


def _trust_networks(values: Iterable[str]) -> TrustFn:
    networks: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = []
    for item in values:
        for entry in _NAMED_RANGES.get(item, (item,)):
            networks.append(ipaddress.ip_network(entry, strict=False))

    if not networks:
        return _trust_none

    def trust_networks(address: str, hop: int) -> bool:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return False
        if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
            mapped = ip.ipv4_mapped
            if any(mapped in net for net in networks if net.version == 4):
                return True
        return any(ip in net for net in networks if net.version == ip.version)

    return trust_networks
