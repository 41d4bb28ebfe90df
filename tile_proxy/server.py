from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import requests
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from common.logging_setup import get_logger, setup_logging
from common.types import GeoBounds, RoutePoint, TileCoordinate
from tile_proxy.cache_api import CacheManager
from tile_proxy.config import load_config
from tile_proxy.errors import PreloadBusy, StoreIOError
from tile_proxy.fetcher import RateLimiter, TileFetcher
from tile_proxy.pipeline import TileResolver
from tile_proxy.tile_store import DiskTileStore


log = get_logger(__name__)

# Server-side cache is authoritative; browsers must never serve a stale
# tile after /cache has been cleared.
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "Thu, 01 Jan 1970 00:00:00 GMT",
}

INVALID_BOUNDS = "Invalid bounds. Required: north, south, east, west"


class BoundsBody(BaseModel):
    north: float
    south: float
    east: float
    west: float


class PreloadBody(BaseModel):
    bounds: Optional[BoundsBody] = None
    minZoom: Optional[int] = None
    maxZoom: Optional[int] = None


class RoutePointBody(BaseModel):
    lat: float
    lon: float


class RouteBody(BaseModel):
    points: List[RoutePointBody] = []


def build_fetchers(P: Dict[str, Any], session: requests.Session) -> Tuple[Optional[TileFetcher], List[TileFetcher]]:
    """Local render server (unthrottled) + public fallbacks sharing one RateLimiter."""
    providers_cfg = P.get("providers", {})
    fetch_cfg = P.get("fetch", {})
    user_agent = str(fetch_cfg.get("user_agent"))

    local_cfg = providers_cfg.get("local", {})
    local: Optional[TileFetcher] = None
    if local_cfg.get("enabled", True) and local_cfg.get("url"):
        local = TileFetcher(
            "local",
            local_cfg["url"],
            timeout_s=float(local_cfg.get("timeout_s", 10)),
            user_agent=user_agent,
            session=session,
        )

    limiter = RateLimiter(float(fetch_cfg.get("min_interval_ms", 200)) / 1000.0)
    timeout_s = float(providers_cfg.get("fallback_timeout_s", 5))
    fallbacks = [
        TileFetcher(
            str(p.get("name") or p["url"]),
            p["url"],
            limiter=limiter,
            timeout_s=float(p.get("timeout_s", timeout_s)),
            user_agent=user_agent,
            subdomains=p.get("subdomains") or (),
            session=session,
        )
        for p in providers_cfg.get("fallbacks", [])
    ]
    return local, fallbacks


def create_app(params: Optional[Dict[str, Any]] = None, *, session: Optional[requests.Session] = None) -> FastAPI:
    P = params if params is not None else load_config()
    setup_logging(P.get("logging", {}).get("level"), force=True)

    store = DiskTileStore(P.get("tiles", {}).get("cache_root", "tile-cache"))
    local, fallbacks = build_fetchers(P, session or requests.Session())
    resolver = TileResolver(store, local=local, providers=fallbacks)

    preload_cfg = P.get("preload", {})
    manager = CacheManager(
        store,
        resolver,
        delay_s=float(preload_cfg.get("delay_ms", 300)) / 1000.0,
        max_tiles=int(preload_cfg.get("max_tiles", 20000)),
    )

    app = FastAPI(title="Trail Tiles", version="1.0.0")
    app.state.params = P
    app.state.store = store
    app.state.resolver = resolver
    app.state.cache = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        # preload keeps the {"error": ...} 400 contract; other routes get FastAPI's 422
        if request.url.path != "/cache/preload":
            return await request_validation_exception_handler(request, exc)
        bad_bounds = any("bounds" in err.get("loc", ()) for err in exc.errors())
        return JSONResponse(
            {
                "error": INVALID_BOUNDS if bad_bounds else "Invalid preload request",
                "detail": jsonable_encoder(exc.errors()),
            },
            status_code=400,
        )

    @app.get("/health")
    def health():
        s = manager.stats()
        return {
            "status": "ok",
            "cache": {"root": str(store.root), "tiles": s.total_tiles, "size": s.total_size},
            "providers": {
                "local": local.url_template if local else None,
                "fallbacks": [f.name for f in fallbacks],
            },
            "preload_running": manager.preload_running,
        }

    @app.get("/tiles/{z}/{x}/{y}.png")
    def tile(z: str, x: str, y: str):
        """
        PNG for z/x/y. 200 for every valid coordinate (worst case a synthesized
        placeholder), 400 for invalid coordinates, 500 only if the store cannot
        be written after synthesis.
        """
        try:
            coord = TileCoordinate(int(z), int(x), int(y))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid tile coordinates")

        try:
            result = resolver.resolve(coord)
        except StoreIOError as e:
            log.error("All tile sources failed for %s: %s", coord, e)
            raise HTTPException(status_code=500, detail="Tile generation failed")

        headers = dict(NO_CACHE_HEADERS)
        headers["X-Tile-Source"] = result.source
        return Response(content=result.data, media_type="image/png", headers=headers)

    @app.get("/cache/stats")
    def cache_stats():
        return manager.stats().to_dict()

    @app.delete("/cache")
    def cache_clear():
        outcome = manager.clear()
        return JSONResponse(outcome, status_code=200 if outcome["success"] else 500)

    @app.delete("/cache/zoom/{level}")
    def cache_clear_zoom(level: str):
        try:
            outcome = manager.clear_zoom(int(level))
        except ValueError:
            return JSONResponse({"error": "Invalid zoom level"}, status_code=400)
        return JSONResponse(outcome, status_code=200 if outcome["success"] else 500)

    @app.post("/cache/preload")
    def cache_preload(body: PreloadBody):
        if body.bounds is None:
            return JSONResponse({"error": INVALID_BOUNDS}, status_code=400)
        min_zoom = body.minZoom if body.minZoom is not None else int(preload_cfg.get("min_zoom", 10))
        max_zoom = body.maxZoom if body.maxZoom is not None else int(preload_cfg.get("max_zoom", 15))
        try:
            bounds = GeoBounds(**body.bounds.model_dump())
            progress = manager.preload(bounds, min_zoom, max_zoom)
        except PreloadBusy as e:
            return JSONResponse({"error": str(e)}, status_code=409)
        except ValueError as e:
            # InvalidCoordinate is a ValueError too
            return JSONResponse({"error": str(e)}, status_code=400)
        return {"message": "Preload started in background", "total": progress.total}

    @app.get("/cache/preload")
    def cache_preload_status():
        progress = manager.progress()
        if progress is None:
            return {"state": "idle"}
        return progress

    @app.put("/route")
    def set_route(body: RouteBody):
        resolver.set_route([RoutePoint(lat=p.lat, lon=p.lon) for p in body.points])
        return {"points": len(body.points)}

    @app.delete("/route")
    def clear_route():
        resolver.set_route(None)
        return {"points": 0}

    return app


app = create_app()


# -------- local dev entrypoint --------
if __name__ == "__main__":
    srv = app.state.params.get("server", {})
    uvicorn.run(app, host=srv.get("host", "0.0.0.0"), port=int(srv.get("port", 3000)))
