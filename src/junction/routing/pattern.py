"""Path template compilation.

Turns a path template (``:name`` params, ``*`` wildcards) into a compiled regex plus the
ordered list of parameter keys it declares::

    "/users/:id"           -> ^/users/(?:([^/]+?))/?$          keys: id
    "/files/*"             -> ^/files/(.*)/?$                  keys: 0
    "/:user/:op?"          -> ^/(?:([^/]+?))(?:/([^/]+?))?/?$  keys: user, op
    "/file.:ext"           -> ^/file(?:\\.([^/.]+?))/?$        keys: ext
    "/post/:id(\\d+)"      -> ^/post/(?:(\\d+))/?$             keys: id

Compiled once at registration time; matching never mutates the result.
"""

import re
from dataclasses import dataclass

from junction.errors import ConfigurationError

_TOKEN_RE = re.compile(
    r"""
      (?P<prefix>[/.])?:(?P<name>\w+)
      (?P<capture>\((?:\\.|[^\\()])+\))?
      (?P<star>\*)?
      (?P<optional>\?)?
    | (?P<group>\((?:\\.|[^\\()])+\))
    | (?P<wild>\*)
    | (?P<escaped>\\.)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True, slots=True)
class Key:
    """A parameter declared by a path template.

    Named parameters keep their name; ``*`` wildcards and bare ``(...)``
    groups get positional names ``"0"``, ``"1"``, ... in order.
    """

    name: str
    optional: bool = False


@dataclass(frozen=True, slots=True)
class CompiledPattern:
    """A path template compiled for matching."""

    source: str
    regex: re.Pattern[str]
    keys: tuple[Key, ...]
    fast_slash: bool = False
    fast_star: bool = False


def compile_path(
    path: str | re.Pattern[str],
    *,
    sensitive: bool = False,
    strict: bool = False,
    end: bool = True,
) -> CompiledPattern:
    """Compile *path* into a :class:`CompiledPattern`.

    Args:
        path: The template, or an already compiled regex whose groups
            become positional keys.
        sensitive: Match literal segments case-sensitively.
        strict: Make a trailing slash significant.
        end: Anchor at the end of the path. ``False`` matches a prefix
            that ends on a ``/`` boundary (used for mounted middleware).

    Raises:
        ConfigurationError: If the template does not compile.
    """
    if isinstance(path, re.Pattern):
        keys = tuple(Key(str(i)) for i in range(path.groups))
        return CompiledPattern(source=path.pattern, regex=path, keys=keys)

    if not isinstance(path, str):
        msg = f"Path template must be a string or compiled regex, got {type(path).__name__}"
        raise ConfigurationError(msg)

    body, keys = _translate(path)

    if not strict:
        body += "?" if path.endswith("/") else "/?"

    if end:
        body += "$"
    elif not body.endswith("/"):
        body += "(?=/|$)"

    flags = 0 if sensitive else re.IGNORECASE
    try:
        regex = re.compile("^" + body, flags)
    except re.error as exc:
        msg = f"Invalid path template {path!r}: {exc}"
        raise ConfigurationError(msg) from exc

    return CompiledPattern(
        source=path,
        regex=regex,
        keys=tuple(keys),
        fast_slash=path == "/" and not end,
        fast_star=path == "*",
    )


def _translate(path: str) -> tuple[str, list[Key]]:
    """Translate template tokens into regex source, collecting keys."""
    parts: list[str] = []
    keys: list[Key] = []
    positional = 0
    last_end = 0

    for m in _TOKEN_RE.finditer(path):
        parts.append(re.escape(path[last_end : m.start()]))
        last_end = m.end()

        if m.group("name"):
            parts.append(_param_source(m))
            keys.append(Key(m.group("name"), optional=bool(m.group("optional"))))
        elif m.group("group"):
            parts.append(m.group("group"))
            keys.append(Key(str(positional)))
            positional += 1
        elif m.group("wild"):
            parts.append("(.*)")
            keys.append(Key(str(positional)))
            positional += 1
        else:
            parts.append(m.group("escaped"))

    parts.append(re.escape(path[last_end:]))
    return "".join(parts), keys


def _param_source(m: re.Match[str]) -> str:
    prefix = m.group("prefix") or ""
    slash = "/" if prefix == "/" else ""
    fmt = r"\." if prefix == "." else ""
    optional = "?" if m.group("optional") else ""

    if m.group("capture"):
        capture = m.group("capture")
    else:
        capture = "([^/.]+?)" if fmt else "([^/]+?)"
    if m.group("star"):
        # ``:name*`` keeps consuming whole segments into the same key
        capture = capture[:-1] + "(?:[/" + fmt + "].+?)?)"

    return (
        ("" if optional else slash)
        + "(?:"
        + fmt
        + (slash if optional else "")
        + capture
        + ")"
        + optional
    )
