import os
import sys
import pytest

# Ensure project root is on sys.path for imports like `core.*`
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import httpx

from core.config import ScanConfig
from fetch.http_client import ResponseFetcher


@pytest.fixture
def mock_fetcher():
    """Build a ResponseFetcher whose requests are answered from a route table.

    Routes are keyed by full URL or by path (with query). A value may be an
    httpx.Response, an exception to raise, or a callable taking the request.
    Unknown routes answer 404. Every request is appended to `fetcher.seen`.
    """
    def factory(routes, config=None):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            raw_path = request.url.raw_path.decode()
            route = routes.get(str(request.url), routes.get(raw_path))
            if route is None:
                return httpx.Response(404, text="not found")
            if isinstance(route, Exception):
                raise route
            if callable(route):
                return route(request)
            return route

        fetcher = ResponseFetcher(config or ScanConfig(), transport=httpx.MockTransport(handler))
        fetcher.seen = seen
        return fetcher

    return factory
