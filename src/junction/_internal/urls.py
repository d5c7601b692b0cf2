"""URL helpers shared by the router and the request facade."""

from urllib.parse import urlsplit


def get_pathname(url: str | None) -> str | None:
    """Return the path portion of *url*, or ``None`` if it can't be parsed.

    Origin-form URLs (``/a/b?x=1``) are split by hand so a leading
    ``//`` stays part of the path instead of becoming a netloc.
    """
    if url is None:
        return None
    if url.startswith("/"):
        return url.partition("?")[0].partition("#")[0]
    try:
        return urlsplit(url).path
    except ValueError:
        return None


def get_proto_host(url: str | None) -> str | None:
    """Return ``scheme://host`` for an absolute-form URL, else ``None``."""
    if not url or url[0] == "/":
        return None
    search = url.find("?")
    path_length = search if search != -1 else len(url)
    fqdn = url[:path_length].find("://")
    if fqdn == -1:
        return None
    slash = url.find("/", fqdn + 3)
    return url[:slash] if slash != -1 else None
