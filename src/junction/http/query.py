"""Query string parsing.

Two parsers back the ``query parser`` setting:

- ``simple``: :class:`QueryParams`, a flat immutable multi-value mapping.
- ``extended``: :func:`parse_extended`, which expands bracket syntax into
  nested dicts and lists (``a[b]=1&a[c]=2`` -> ``{"a": {"b": "1", "c": "2"}}``).
"""

import re
from collections.abc import Iterator, Mapping
from typing import Any
from urllib.parse import parse_qs, parse_qsl

# Bracket nesting deeper than this is kept as a literal key segment
MAX_DEPTH = 5
# Numeric indexes above this become dict keys instead of list slots
MAX_INDEX = 20

_BRACKET_RE = re.compile(r"\[([^\[\]]*)\]")


class QueryParams(Mapping[str, str]):
    """Immutable query string parameters.

    ``__getitem__`` returns the first value for a key.
    ``get_list`` returns all values for a key.
    """

    _data: dict[str, list[str]]
    _raw: bytes

    __slots__ = ("_data", "_raw")

    def __init__(self, query_string: bytes | str = b"") -> None:
        if isinstance(query_string, str):
            query_string = query_string.encode("latin-1")
        object.__setattr__(self, "_raw", query_string)
        parsed = parse_qs(query_string.decode("latin-1"), keep_blank_values=True)
        object.__setattr__(self, "_data", parsed)

    def __getitem__(self, key: str) -> str:
        return self._data[key][0]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        items = ", ".join(f"{k!r}: {self[k]!r}" for k in self)
        return f"QueryParams({{{items}}})"

    def get(self, key: str, default: str | None = None) -> str | None:  # type: ignore[override]
        """Return the first value for *key*, or *default* if missing."""
        values = self._data.get(key)
        if values:
            return values[0]
        return default

    def get_list(self, key: str) -> list[str]:
        """Return all values for *key*."""
        return list(self._data.get(key, []))

    def get_int(self, key: str, default: int | None = None) -> int | None:
        """Return value as int, or *default* if missing or not numeric."""
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            return default


def parse_simple(query_string: bytes | str) -> QueryParams:
    return QueryParams(query_string)


def parse_extended(query_string: bytes | str) -> dict[str, Any]:
    """Parse *query_string* with bracket nesting.

    - ``a=1&a=2``        -> ``{"a": ["1", "2"]}``
    - ``a[]=1&a[]=2``    -> ``{"a": ["1", "2"]}``
    - ``a[0]=x&a[1]=y``  -> ``{"a": ["x", "y"]}``
    - ``u[name]=bo``     -> ``{"u": {"name": "bo"}}``
    """
    if isinstance(query_string, bytes):
        query_string = query_string.decode("latin-1")
    result: dict[str, Any] = {}
    for name, value in parse_qsl(query_string, keep_blank_values=True):
        _assign(result, _split_key(name), value)
    return result


def _split_key(name: str) -> list[str]:
    head, bracket, rest = name.partition("[")
    if not bracket or not head:
        return [name]
    rest = "[" + rest
    segments = [head]
    pos = 0
    for m in _BRACKET_RE.finditer(rest):
        if m.start() != pos or len(segments) > MAX_DEPTH:
            break
        segments.append(m.group(1))
        pos = m.end()
    if pos == 0:
        return [name]
    if pos < len(rest):
        segments.append(rest[pos:])
    return segments


def _is_index(segment: str) -> bool:
    return segment.isdigit() and int(segment) <= MAX_INDEX


def _as_dict(items: list[Any]) -> dict[str, Any]:
    return {str(i): v for i, v in enumerate(items)}


def _assign(container: dict[str, Any], segments: list[str], value: str) -> None:
    target: dict[str, Any] | list[Any] = container
    for i, segment in enumerate(segments[:-1]):
        following = segments[i + 1]
        wants_list = following == "" or _is_index(following)
        target = _child(target, segment, wants_list)
    _set_leaf(target, segments[-1], value)


def _child(
    target: dict[str, Any] | list[Any], key: str, wants_list: bool
) -> dict[str, Any] | list[Any]:
    fresh: dict[str, Any] | list[Any] = [] if wants_list else {}

    if isinstance(target, list):
        if key == "" or not _is_index(key):
            target.append(fresh)
            return fresh
        index = int(key)
        if index < len(target) and isinstance(target[index], (dict, list)):
            return target[index]
        target.append(fresh)
        return fresh

    existing = target.get(key)
    if isinstance(existing, list) and not wants_list:
        existing = target[key] = _as_dict(existing)
    if isinstance(existing, (dict, list)):
        return existing
    target[key] = fresh
    return fresh


def _set_leaf(target: dict[str, Any] | list[Any], key: str, value: str) -> None:
    if isinstance(target, list):
        if _is_index(key) and int(key) < len(target):
            target[int(key)] = value
        else:
            target.append(value)
        return

    if key not in target:
        target[key] = value
        return
    existing = target[key]
    if isinstance(existing, list):
        existing.append(value)
    else:
        target[key] = [existing, value]
