"""
Test doubles for upstream tile servers.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Union
from unittest.mock import Mock

import requests

from tile_proxy.fetcher import TileFetcher


def make_response(status: int = 200, content: bytes = b"", headers: Optional[Dict[str, str]] = None) -> Mock:
    r = Mock()
    r.status_code = status
    r.content = content
    r.headers = headers or {}
    return r


class FakeSession:
    """
    Stand-in for requests.Session: maps URL prefixes to a response Mock or
    an exception instance. Unknown URLs behave like a refused connection.
    Every requested URL is recorded in `calls`, in order.
    """

    def __init__(self, routes: Optional[Dict[str, Union[Mock, Exception]]] = None):
        self.routes = dict(routes or {})
        self.calls: List[str] = []
        self.headers_seen: List[Dict[str, str]] = []

    def get(self, url: str, headers=None, timeout=None):
        self.calls.append(url)
        self.headers_seen.append(dict(headers or {}))
        for prefix, outcome in self.routes.items():
            if url.startswith(prefix):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        raise requests.ConnectionError(f"connection refused: {url}")


def fake_fetcher(name: str, data: Optional[bytes] = None, error: Optional[Exception] = None) -> Mock:
    """Mock TileFetcher returning `data` or raising `error` from fetch_tile()."""
    f = Mock(spec=TileFetcher)
    f.name = name
    f.url_template = f"https://{name}.test/{{z}}/{{x}}/{{y}}.png"
    f.build_url.side_effect = lambda c: f"https://{name}.test/{c.zoom}/{c.x}/{c.y}.png"
    if error is not None:
        f.fetch_tile.side_effect = error
    else:
        f.fetch_tile.return_value = data
    return f
