"""HTTP facades — the request and response objects handlers receive."""

from junction.http.headers import Headers
from junction.http.query import QueryParams
from junction.http.request import Request
from junction.http.response import Response

__all__ = ["Headers", "QueryParams", "Request", "Response"]
