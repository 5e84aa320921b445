"""Fake remote dataset served through httpx.MockTransport."""

from datetime import datetime, timezone
from typing import Any, Dict

import httpx

from product_sync.sources import RetryPolicy

BASE_URL = "https://data.test/food/json"
FIXED_NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)

NO_RETRY = RetryPolicy(attempts=1, backoff=0, max_wait=0)


def timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


def make_transport(routes: Dict[str, Any]) -> httpx.MockTransport:
    """Serve ``routes`` keyed by file name under BASE_URL.

    A value may be a str (plain text body), a list/dict (JSON body), an
    ``httpx.Response`` or a callable taking the request.
    """

    def handler(request: httpx.Request):
        name = request.url.path.rsplit("/", 1)[-1]
        route = routes.get(name)
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        if isinstance(route, httpx.Response):
            return route
        if isinstance(route, str):
            return httpx.Response(200, text=route)
        return httpx.Response(200, json=route)

    return httpx.MockTransport(handler)


def make_client(routes: Dict[str, Any]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=make_transport(routes))
