#!/usr/bin/env python3
"""
Bulk-download a region's tiles straight into the tile cache (offline prep).

Unlike POST /cache/preload this talks to one tile server directly, with its
own (slower) request spacing, and never synthesizes placeholders. Tiles that
are already cached are skipped; a 403 from the server stops the run.

Examples:
  python -m scripts.download_region_tiles --region phoenix --min-zoom 10 --max-zoom 15
  python -m scripts.download_region_tiles --bounds 33.7 33.2 -111.6 -112.4 --max-zoom 12 \
      --url "https://tile.opentopomap.org/{z}/{x}/{y}.png"
"""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Dict, Optional

from common.geo import tiles_in_bounds
from common.logging_setup import get_logger
from common.types import GeoBounds
from common.utils import human_file_size
from tile_proxy.config import load_config
from tile_proxy.errors import Blocked, StoreIOError, TileFetchError
from tile_proxy.fetcher import RateLimiter, TileFetcher
from tile_proxy.tile_store import DiskTileStore


log = get_logger("download_region_tiles")

OSM_URL = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
BATCH_USER_AGENT = "TrailTilesDownloader/1.0 (personal project, batch download; contact: trailtiles@localhost)"
PROGRESS_EVERY = 10

REGIONS: Dict[str, GeoBounds] = {
    "phoenix": GeoBounds(north=33.7, south=33.2, east=-111.6, west=-112.4),
}


def download_region(
    store: DiskTileStore,
    fetcher: TileFetcher,
    bounds: GeoBounds,
    min_zoom: int = 10,
    max_zoom: int = 15,
) -> Dict[str, int]:
    """
    Fetch every missing tile in `bounds` into `store`.

    Returns {downloaded, cached, failed, total, total_size}; `total` is the
    number of tiles in the region, even if the run stopped early.
    """
    tiles = list(tiles_in_bounds(bounds, min_zoom, max_zoom))
    downloaded = cached = failed = total_size = 0

    for i, coord in enumerate(tiles, start=1):
        if store.contains(coord):
            cached += 1
        else:
            try:
                data = fetcher.fetch_tile(coord)
                store.put(coord, data)
                downloaded += 1
                total_size += len(data)
            except Blocked:
                failed += 1
                log.error("Access blocked by %s at tile %s. Try again later.", fetcher.name, coord)
                break
            except (TileFetchError, StoreIOError) as e:
                failed += 1
                log.error("Failed to download tile %s: %s", coord, e)

        if i % PROGRESS_EVERY == 0:
            log.info(
                "Progress: %d/%d (%d downloaded, %d cached, %d failed)",
                i, len(tiles), downloaded, cached, failed,
            )

    return {
        "downloaded": downloaded,
        "cached": cached,
        "failed": failed,
        "total": len(tiles),
        "total_size": total_size,
    }


def _parse_bounds(args: argparse.Namespace) -> GeoBounds:
    if args.bounds:
        north, south, east, west = args.bounds
        return GeoBounds(north=north, south=south, east=east, west=west)
    return REGIONS[args.region]


def main(argv: Optional[list] = None) -> None:
    P = load_config()
    ap = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    where = ap.add_mutually_exclusive_group(required=True)
    where.add_argument("--bounds", nargs=4, type=float, metavar=("N", "S", "E", "W"), help="Bounding box in degrees")
    where.add_argument("--region", choices=sorted(REGIONS), help="Named preset region")
    ap.add_argument("--min-zoom", type=int, default=10)
    ap.add_argument("--max-zoom", type=int, default=15)
    ap.add_argument("--cache-root", default=P["tiles"]["cache_root"], help="Tile cache directory")
    ap.add_argument("--url", default=OSM_URL, help="Tile URL template ({z},{x},{y}, optional {s})")
    ap.add_argument("--subdomains", default="a,b,c", help="Comma separated values for {s}")
    ap.add_argument("--delay-ms", type=int, default=500, help="Minimum spacing between requests")
    args = ap.parse_args(argv)

    bounds = _parse_bounds(args)
    fetcher = TileFetcher(
        "download",
        args.url,
        limiter=RateLimiter(args.delay_ms / 1000.0),
        timeout_s=10,
        user_agent=BATCH_USER_AGENT,
        subdomains=[s for s in args.subdomains.split(",") if s] if "{s}" in args.url else (),
    )
    store = DiskTileStore(Path(args.cache_root))

    print(f"Bounds: {bounds.south}, {bounds.west} to {bounds.north}, {bounds.east}")
    print(f"Zoom levels: {args.min_zoom} to {args.max_zoom}")
    result = download_region(store, fetcher, bounds, args.min_zoom, args.max_zoom)

    print("\n=== Download Complete ===")
    print(f"Downloaded: {result['downloaded']} tiles ({human_file_size(result['total_size'])})")
    print(f"Already cached: {result['cached']} tiles")
    print(f"Failed: {result['failed']} tiles")
    print(f"Total: {result['total']} tiles")


if __name__ == "__main__":
    main()
