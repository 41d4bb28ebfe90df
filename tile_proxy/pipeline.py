from __future__ import annotations

import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from common.logging_setup import get_logger
from common.types import FetchRequest, RoutePoint, TileCoordinate
from tile_proxy import synth
from tile_proxy.errors import Blocked, RateLimited, StoreIOError, TileFetchError
from tile_proxy.fetcher import TileFetcher
from tile_proxy.tile_store import DiskTileStore


log = get_logger(__name__)

SOURCE_CACHE = "cache"
SOURCE_SYNTHESIZED = "synthesized"
SOURCE_ERROR_TILE = "error_tile"


@dataclass(frozen=True)
class SourceFailure:
    source: str
    error: Exception

    @property
    def blocked(self) -> bool:
        return isinstance(self.error, Blocked)


@dataclass(frozen=True)
class SourceOutcome:
    """Result of trying one source: exactly one of `data` / `failure` is set."""
    source: str
    data: Optional[bytes] = None
    failure: Optional[SourceFailure] = None

    @property
    def ok(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class TileResult:
    data: bytes
    source: str
    failures: Tuple[SourceFailure, ...] = field(default_factory=tuple)

    @property
    def blocked(self) -> bool:
        return any(f.blocked for f in self.failures)

    @property
    def from_cache(self) -> bool:
        return self.source == SOURCE_CACHE


class TileResolver:
    """
    Resolve one tile coordinate to PNG bytes.

    Order (each source tried at most once per request):
      1) DiskTileStore hit -> return, no network
      2) local render server            -> write-through, return
      3) public providers, in list order -> write-through, return
      4) local synthesis (or the fixed error tile) -> write-through, return

    Remote failures are recorded on the TileResult and logged, never raised.
    Only a store failure on the final write escapes (StoreIOError).
    Concurrent misses for the same coordinate share one resolution.
    """

    def __init__(
        self,
        store: DiskTileStore,
        *,
        local: Optional[TileFetcher] = None,
        providers: Sequence[TileFetcher] = (),
        route: Optional[Sequence[RoutePoint]] = None,
    ):
        self.store = store
        self.local = local
        self.providers: List[TileFetcher] = list(providers)
        self.route: Optional[List[RoutePoint]] = list(route) if route else None
        self._lock = threading.Lock()
        self._inflight: Dict[TileCoordinate, Future] = {}

    # -------- public API --------

    @property
    def sources(self) -> List[TileFetcher]:
        return ([self.local] if self.local is not None else []) + self.providers

    def set_route(self, points: Optional[Sequence[RoutePoint]]) -> None:
        """Route overlay for tiles synthesized from now on (cached tiles keep theirs)."""
        self.route = list(points) if points else None

    def resolve(self, coord: TileCoordinate, route: Optional[Sequence[RoutePoint]] = None) -> TileResult:
        cached = self.store.get(coord)
        if cached is not None:
            log.debug("Tile cache HIT %s", coord)
            return TileResult(data=cached, source=SOURCE_CACHE)

        with self._lock:
            pending = self._inflight.get(coord)
            if pending is None:
                fut: Future = Future()
                self._inflight[coord] = fut
        if pending is not None:
            log.debug("Tile %s already being resolved; waiting", coord)
            return pending.result()

        log.debug("Tile cache MISS %s", coord)
        try:
            # a concurrent resolution may have finished between get() and registration
            cached = self.store.get(coord)
            if cached is not None:
                result = TileResult(data=cached, source=SOURCE_CACHE)
            else:
                result = self._resolve_miss(coord, route if route is not None else self.route)
        except BaseException as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(coord, None)

    # -------- internals --------

    def _resolve_miss(self, coord: TileCoordinate, route: Optional[Sequence[RoutePoint]]) -> TileResult:
        failures: List[SourceFailure] = []
        for fetcher in self.sources:
            outcome = self._try_source(fetcher, coord)
            if outcome.ok:
                log.info("Fetched and cached tile %s from %s", coord, outcome.source)
                return TileResult(data=outcome.data, source=outcome.source, failures=tuple(failures))
            failures.append(outcome.failure)

        data, source = self._synthesize_or_error_tile(coord, route)
        self.store.put(coord, data)
        log.info(
            "Generated and cached tile %s (%s)", coord, source,
            extra={"extra": {"failed_sources": [f.source for f in failures]}},
        )
        return TileResult(data=data, source=source, failures=tuple(failures))

    def _try_source(self, fetcher: TileFetcher, coord: TileCoordinate) -> SourceOutcome:
        req = FetchRequest(url=fetcher.build_url(coord), coord=coord, cache_path=self.store.path_for(coord))
        try:
            data = fetcher.fetch_tile(coord)
        except TileFetchError as e:
            if isinstance(e, (Blocked, RateLimited)):
                log.warning("Source %s refused tile %s: %s", fetcher.name, coord, e, extra={"extra": req.to_meta()})
            else:
                log.info("Source %s failed for tile %s: %s", fetcher.name, coord, e, extra={"extra": req.to_meta()})
            return SourceOutcome(source=fetcher.name, failure=SourceFailure(fetcher.name, e))

        try:
            self.store.put(coord, data)
        except StoreIOError as e:
            log.exception("Write-through failed for tile %s from %s", coord, fetcher.name)
            return SourceOutcome(source=fetcher.name, failure=SourceFailure(fetcher.name, e))
        return SourceOutcome(source=fetcher.name, data=data)

    @staticmethod
    def _synthesize_or_error_tile(
        coord: TileCoordinate, route: Optional[Sequence[RoutePoint]]
    ) -> Tuple[bytes, str]:
        """Never raises: synthesis failures degrade to the fixed error tile."""
        try:
            return synth.generate_tile(coord, route), SOURCE_SYNTHESIZED
        except Exception:
            log.exception("Tile synthesis failed for %s; serving error tile", coord)
            return synth.ERROR_TILE, SOURCE_ERROR_TILE
