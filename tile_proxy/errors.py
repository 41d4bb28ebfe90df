from __future__ import annotations

from typing import Optional

from common.types import InvalidCoordinate


class TileProxyError(Exception):
    """Base class for tile proxy failures."""


# InvalidCoordinate lives with the value types (common.types)
__all__ = [
    "TileProxyError",
    "InvalidCoordinate",
    "TileFetchError",
    "RateLimited",
    "Blocked",
    "NotFound",
    "FetchTimeout",
    "UnexpectedStatus",
    "SourceUnavailable",
    "StoreIOError",
    "PreloadBusy",
]


class TileFetchError(TileProxyError):
    """One remote source failed to produce a tile."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class RateLimited(TileFetchError):
    """HTTP 429. Back off for `retry_after_s` before asking this provider again."""

    def __init__(self, source: str, retry_after_s: int = 60):
        super().__init__(source, f"rate limited, retry after {retry_after_s}s")
        self.retry_after_s = retry_after_s


class Blocked(TileFetchError):
    """HTTP 403. The provider refuses us; stop using it for the current operation."""

    def __init__(self, source: str):
        super().__init__(source, "access blocked by tile server")


class NotFound(TileFetchError):
    def __init__(self, source: str):
        super().__init__(source, "tile not found")


class FetchTimeout(TileFetchError):
    def __init__(self, source: str, timeout_s: float):
        super().__init__(source, f"request timed out after {timeout_s}s")
        self.timeout_s = timeout_s


class UnexpectedStatus(TileFetchError):
    def __init__(self, source: str, status_code: int, detail: Optional[str] = None):
        super().__init__(source, f"HTTP {status_code}" + (f" ({detail})" if detail else ""))
        self.status_code = status_code


class SourceUnavailable(TileFetchError):
    """Connection refused, DNS failure and other transport errors."""


class StoreIOError(TileProxyError):
    """Disk failure while writing or clearing the tile store."""


class PreloadBusy(TileProxyError):
    """A preload job is already running."""
