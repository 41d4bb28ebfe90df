from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from common.geo import count_tiles_in_bounds, tiles_in_bounds
from common.logging_setup import get_logger
from common.types import CacheStatistics, GeoBounds, check_zoom
from common.utils import iso_now_ms
from tile_proxy.errors import PreloadBusy, StoreIOError
from tile_proxy.pipeline import TileResolver
from tile_proxy.tile_store import DiskTileStore


log = get_logger(__name__)

PRELOAD_DELAY_S = 0.3
PRELOAD_LOG_EVERY = 5
PRELOAD_MAX_TILES = 20000


@dataclass
class PreloadProgress:
    """Snapshot of one preload job; the only place its outcome is visible besides logs."""
    bounds: Dict[str, float]
    min_zoom: int
    max_zoom: int
    total: int
    loaded: int = 0
    failed: int = 0
    state: str = "running"  # running | completed | aborted
    started_at: str = ""
    finished_at: Optional[str] = None
    abort_reason: Optional[str] = None

    @property
    def done(self) -> int:
        return self.loaded + self.failed

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["done"] = self.done
        return d


class CacheManager:
    """
    Stats / clear / preload on top of DiskTileStore and TileResolver.

    Preload is fire-and-forget: preload() starts a daemon thread and returns
    at once. The worker runs every tile through TileResolver.resolve(), the
    same path GET /tiles/... uses, so preloaded tiles get the same
    fallback order and write-through. One job at a time.
    """

    def __init__(
        self,
        store: DiskTileStore,
        resolver: TileResolver,
        *,
        delay_s: float = PRELOAD_DELAY_S,
        max_tiles: int = PRELOAD_MAX_TILES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.resolver = resolver
        self.delay_s = float(delay_s)
        self.max_tiles = int(max_tiles)
        self._sleep = sleep
        self._lock = threading.Lock()
        self._progress: Optional[PreloadProgress] = None
        self._thread: Optional[threading.Thread] = None

    # -------- stats / clear --------

    def stats(self) -> CacheStatistics:
        return self.store.stats()

    def clear(self) -> Dict[str, Any]:
        try:
            self.store.clear()
        except StoreIOError as e:
            log.exception("Error clearing cache")
            return {"success": False, "error": str(e)}
        return {"success": True, "message": "Cache cleared successfully"}

    def clear_zoom(self, zoom: int) -> Dict[str, Any]:
        """Raises InvalidCoordinate for a zoom outside [0, 18]."""
        zoom = check_zoom(zoom)
        try:
            self.store.clear_zoom(zoom)
        except StoreIOError as e:
            log.exception("Error clearing zoom level %s", zoom)
            return {"success": False, "error": str(e)}
        return {"success": True, "message": f"Zoom level {zoom} cleared successfully"}

    # -------- preload --------

    @property
    def preload_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def progress(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._progress.to_dict() if self._progress else None

    def preload(self, bounds: GeoBounds, min_zoom: int = 10, max_zoom: int = 15) -> PreloadProgress:
        """
        Start a background preload and return its (live) progress record.

        Raises:
            InvalidCoordinate: zoom outside [0, 18]
            ValueError: min_zoom > max_zoom, or more than `max_tiles` tiles
            PreloadBusy: a preload is already running
        """
        min_zoom, max_zoom = check_zoom(min_zoom), check_zoom(max_zoom)
        if min_zoom > max_zoom:
            raise ValueError(f"minZoom ({min_zoom}) must not exceed maxZoom ({max_zoom})")
        total = count_tiles_in_bounds(bounds, min_zoom, max_zoom)
        if total > self.max_tiles:
            raise ValueError(f"preload of {total} tiles exceeds the limit of {self.max_tiles}")

        with self._lock:
            if self.preload_running:
                raise PreloadBusy("a preload is already running")
            progress = PreloadProgress(
                bounds=bounds.to_dict(), min_zoom=min_zoom, max_zoom=max_zoom,
                total=total, started_at=iso_now_ms(),
            )
            self._progress = progress
            self._thread = threading.Thread(
                target=self._run_preload, args=(bounds, progress), name="tile-preload", daemon=True
            )
            self._thread.start()

        log.info("Preloading %d tiles for bounds %s (zoom %d-%d)", total, bounds.to_dict(), min_zoom, max_zoom)
        return progress

    def wait_for_preload(self, timeout: Optional[float] = None) -> bool:
        """Join the current preload thread; True if it has finished."""
        t = self._thread
        if t is None:
            return True
        t.join(timeout)
        return not t.is_alive()

    def _run_preload(self, bounds: GeoBounds, progress: PreloadProgress) -> None:
        try:
            for coord in tiles_in_bounds(bounds, progress.min_zoom, progress.max_zoom):
                try:
                    result = self.resolver.resolve(coord)
                except Exception as e:
                    with self._lock:
                        progress.failed += 1
                    log.error("Failed to preload tile %s: %s", coord, e)
                else:
                    with self._lock:
                        progress.loaded += 1
                    if result.blocked:
                        with self._lock:
                            progress.state = "aborted"
                            progress.abort_reason = "blocked by " + ", ".join(
                                f.source for f in result.failures if f.blocked
                            )
                        log.warning("Access blocked during preload (%s). Stopping preload.", progress.abort_reason)
                        break

                if progress.done % PRELOAD_LOG_EVERY == 0:
                    log.info(
                        "Preload progress: %d/%d (%d loaded, %d failed)",
                        progress.done, progress.total, progress.loaded, progress.failed,
                    )
                if progress.done < progress.total and self.delay_s > 0:
                    self._sleep(self.delay_s)
        finally:
            with self._lock:
                if progress.state == "running":
                    progress.state = "completed"
                progress.finished_at = iso_now_ms()
            log.info(
                "Preload %s: %d loaded, %d failed, %d total",
                progress.state, progress.loaded, progress.failed, progress.total,
                extra={"extra": progress.to_dict()},
            )
