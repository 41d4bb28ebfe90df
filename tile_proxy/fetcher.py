"""
Single-tile HTTP fetcher with a shared politeness clock.

Usage:
    limiter = RateLimiter(min_interval_s=0.2)      # one per process
    osm = TileFetcher("osm", "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png",
                      limiter=limiter, subdomains=("a", "b", "c"))
    png = osm.fetch_tile(TileCoordinate(10, 200, 400))

Failures are raised as TileFetchError subclasses (RateLimited, Blocked,
NotFound, FetchTimeout, UnexpectedStatus, SourceUnavailable). Nothing is
retried here; callers decide.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Sequence

import requests
from urllib3.exceptions import ReadTimeoutError

from common.logging_setup import get_logger
from common.types import TileCoordinate
from tile_proxy.errors import (
    Blocked,
    FetchTimeout,
    NotFound,
    RateLimited,
    SourceUnavailable,
    UnexpectedStatus,
)


log = get_logger(__name__)

DEFAULT_USER_AGENT = "TrailTiles/1.0 (tile cache; contact: trailtiles@localhost)"
DEFAULT_RETRY_AFTER_S = 60
MIN_INTERVAL_S = 0.2


class RateLimiter:
    """
    Owns the "last request time" shared by every public tile fetch.

    wait() blocks until at least `min_interval_s` has passed since the
    previous call returned, then stamps the new time. The lock is held
    while sleeping, so concurrent callers queue up behind each other and
    the aggregate rate never exceeds 1 / min_interval_s.

    `clock` and `sleep` are injectable for tests.
    """

    def __init__(
        self,
        min_interval_s: float = MIN_INTERVAL_S,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_interval_s < 0:
            raise ValueError("min_interval_s must be >= 0")
        self.min_interval_s = float(min_interval_s)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last: Optional[float] = None

    @property
    def last_request_time(self) -> Optional[float]:
        return self._last

    def wait(self) -> float:
        """Delay as needed; returns the seconds slept."""
        with self._lock:
            delay = 0.0
            if self._last is not None:
                delay = max(0.0, self.min_interval_s - (self._clock() - self._last))
                if delay > 0:
                    self._sleep(delay)
            self._last = self._clock()
            return delay


def _parse_retry_after(value: Optional[str]) -> int:
    # Retry-After may also be an HTTP date; we only honour delta-seconds
    if not value:
        return DEFAULT_RETRY_AFTER_S
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_S


class TileFetcher:
    """One named upstream tile source reachable over HTTP(S)."""

    def __init__(
        self,
        name: str,
        url_template: str,
        *,
        limiter: Optional[RateLimiter] = None,
        timeout_s: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        subdomains: Sequence[str] = (),
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            name: label used in logs and TileFetchError.source
            url_template: e.g. "https://tile.example.org/{z}/{x}/{y}.png"; `{s}` picks a subdomain
            limiter: shared RateLimiter; None disables spacing (local render server)
            timeout_s: connect/read timeout; on expiry the request is abandoned
            session: optional requests.Session for connection reuse
        """
        if "{s}" in url_template and not subdomains:
            raise ValueError(f"{name}: url template uses {{s}} but no subdomains were given")
        self.name = name
        self.url_template = url_template
        self.limiter = limiter
        self.timeout_s = float(timeout_s)
        self.subdomains = tuple(subdomains)
        self.session = session or requests.Session()
        self.headers: Dict[str, str] = {
            "User-Agent": user_agent,
            "Accept": "image/png,image/*;q=0.8",
        }

    # ----------------------------
    # Public API
    # ----------------------------
    def build_url(self, coord: TileCoordinate) -> str:
        params = {"z": coord.zoom, "x": coord.x, "y": coord.y}
        if self.subdomains:
            # deterministic so the same tile always hits the same host
            params["s"] = self.subdomains[(coord.x + coord.y) % len(self.subdomains)]
        return self.url_template.format(**params)

    def fetch_tile(self, coord: TileCoordinate) -> bytes:
        url = self.build_url(coord)
        if self.limiter is not None:
            self.limiter.wait()

        log.debug("Fetching tile %s from %s: %s", coord, self.name, url)
        try:
            r = self.session.get(url, headers=self.headers, timeout=self.timeout_s)
        except requests.Timeout as e:
            raise FetchTimeout(self.name, self.timeout_s) from e
        except requests.ConnectionError as e:
            # a read timeout while the body downloads surfaces as ConnectionError
            if e.args and isinstance(e.args[0], ReadTimeoutError):
                raise FetchTimeout(self.name, self.timeout_s) from e
            raise SourceUnavailable(self.name, str(e)) from e
        except requests.RequestException as e:
            raise SourceUnavailable(self.name, str(e)) from e

        try:
            return self._classify(r, coord)
        finally:
            r.close()

    # ----------------------------
    # Internals
    # ----------------------------
    def _classify(self, r: requests.Response, coord: TileCoordinate) -> bytes:
        status = r.status_code
        if status == 200:
            if not r.content:
                raise UnexpectedStatus(self.name, status, "empty body")
            return r.content
        if status == 429:
            retry_after = _parse_retry_after(r.headers.get("Retry-After"))
            log.warning(
                "Rate limited by %s for tile %s, retry after %ss",
                self.name, coord, retry_after,
                extra={"extra": {
                    "x-ratelimit-remaining": r.headers.get("X-RateLimit-Remaining"),
                    "x-ratelimit-limit": r.headers.get("X-RateLimit-Limit"),
                }},
            )
            raise RateLimited(self.name, retry_after)
        if status == 403:
            log.warning("Access blocked by %s for tile %s; check usage policy", self.name, coord)
            raise Blocked(self.name)
        if status == 404:
            raise NotFound(self.name)
        raise UnexpectedStatus(self.name, status)
