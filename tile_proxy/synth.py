"""
Local tile synthesis: the last resort when every remote source failed.

generate_tile() draws a plain map-like placeholder (land background,
zoom-dependent road/street grid, optional route polyline) and encodes it
as PNG with OpenCV. ERROR_TILE is a fixed PNG that does not depend on
OpenCV at all, for when synthesis itself blows up.
"""
from __future__ import annotations

import struct
import zlib
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from common.geo import geo2tile_pixel, tile_bounds
from common.types import TILE_SIZE, RoutePoint, TileCoordinate


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# BGR (OpenCV order)
LAND = (233, 239, 242)        # #f2efe9
WATER = (223, 211, 170)       # #aad3df
MAJOR_ROAD = (164, 214, 252)  # #fcd6a4
STREET = (255, 255, 255)
BUILDING = (201, 208, 217)    # #d9d0c9
ROUTE = (219, 152, 52)        # #3498db
ROUTE_WIDTH = 3


def generate_tile(coord: TileCoordinate, route: Optional[Sequence[RoutePoint]] = None) -> bytes:
    """Synthesize a 256x256 PNG for `coord`, with the part of `route` inside the tile."""
    img = np.empty((TILE_SIZE, TILE_SIZE, 3), dtype=np.uint8)
    img[:] = LAND

    if coord.zoom >= 14:
        _draw_street_grid(img, coord)
        _draw_buildings(img, coord)
    elif coord.zoom >= 10:
        _draw_major_roads(img, coord)

    if coord.zoom >= 16:
        cv2.putText(
            img, coord.path_key, (TILE_SIZE - 8 - 7 * len(coord.path_key), TILE_SIZE - 6),
            cv2.FONT_HERSHEY_SIMPLEX, 0.35, (110, 110, 110), 1, cv2.LINE_AA,
        )

    if route:
        _draw_route(img, coord, route)

    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise RuntimeError(f"PNG encoding failed for tile {coord}")
    return buf.tobytes()


# -------------------------
# Drawing helpers
# -------------------------
def _seed(coord: TileCoordinate) -> int:
    # same tile -> same picture, independent of request order
    return (coord.zoom * 73856093) ^ (coord.x * 19349663) ^ (coord.y * 83492791)


def _draw_major_roads(img: np.ndarray, coord: TileCoordinate) -> None:
    rng = np.random.default_rng(_seed(coord))
    for _ in range(2):
        y = int(rng.integers(16, TILE_SIZE - 16))
        cv2.line(img, (0, y), (TILE_SIZE - 1, y), MAJOR_ROAD, 4, cv2.LINE_AA)
        x = int(rng.integers(16, TILE_SIZE - 16))
        cv2.line(img, (x, 0), (x, TILE_SIZE - 1), MAJOR_ROAD, 4, cv2.LINE_AA)
    if rng.random() < 0.15:
        c = (int(rng.integers(40, TILE_SIZE - 40)), int(rng.integers(40, TILE_SIZE - 40)))
        cv2.circle(img, c, int(rng.integers(12, 32)), WATER, -1, cv2.LINE_AA)


def _draw_street_grid(img: np.ndarray, coord: TileCoordinate) -> None:
    # block size grows with zoom so streets keep roughly constant ground spacing
    step = max(16, 32 << max(0, coord.zoom - 14) // 2)
    for v in range(step // 2, TILE_SIZE, step):
        cv2.line(img, (v, 0), (v, TILE_SIZE - 1), STREET, 3)
        cv2.line(img, (0, v), (TILE_SIZE - 1, v), STREET, 3)


def _draw_buildings(img: np.ndarray, coord: TileCoordinate) -> None:
    rng = np.random.default_rng(_seed(coord))
    for _ in range(6 + coord.zoom - 14):
        x1, y1 = int(rng.integers(0, TILE_SIZE - 24)), int(rng.integers(0, TILE_SIZE - 24))
        w, h = int(rng.integers(6, 20)), int(rng.integers(6, 20))
        cv2.rectangle(img, (x1, y1), (x1 + w, y1 + h), BUILDING, -1)


def _draw_route(img: np.ndarray, coord: TileCoordinate, route: Sequence[RoutePoint]) -> None:
    """Polyline through the route points that fall inside this tile."""
    bounds = tile_bounds(coord.x, coord.y, coord.zoom)
    pts = []
    for p in route:
        if p.lat is None or p.lon is None or not bounds.contains(p.lat, p.lon):
            continue
        px, py = geo2tile_pixel(p.lat, p.lon, bounds, TILE_SIZE)
        pts.append((int(round(px)), int(round(py))))
    if len(pts) >= 2:
        cv2.polylines(img, [np.array(pts, dtype=np.int32)], False, ROUTE, ROUTE_WIDTH, cv2.LINE_AA)
    elif len(pts) == 1:
        cv2.circle(img, pts[0], ROUTE_WIDTH, ROUTE, -1, cv2.LINE_AA)


# -------------------------
# Fixed error tile
# -------------------------
def _solid_png(width: int, height: int, rgb: Tuple[int, int, int]) -> bytes:
    """Uncompressed-filter truecolor PNG of one colour, built with zlib only."""
    def chunk(kind: bytes, data: bytes) -> bytes:
        body = kind + data
        return struct.pack(">I", len(data)) + body + struct.pack(">I", zlib.crc32(body) & 0xFFFFFFFF)

    row = b"\x00" + bytes(rgb) * width
    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        PNG_SIGNATURE
        + chunk(b"IHDR", header)
        + chunk(b"IDAT", zlib.compress(row * height, 9))
        + chunk(b"IEND", b"")
    )


ERROR_TILE = _solid_png(TILE_SIZE, TILE_SIZE, (0xFF, 0xEB, 0xEE))  # #ffebee
