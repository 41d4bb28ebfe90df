from __future__ import annotations

from typing import Iterator, Tuple
import math

from common.types import GeoBounds, InvalidCoordinate, TileCoordinate, check_zoom


# Web Mercator stops at atan(sinh(pi)) degrees
MERCATOR_MAX_LAT = math.degrees(math.atan(math.sinh(math.pi)))


# -------------------------
# Degrees <-> tile indices
# -------------------------
def deg2tile(lat: float, lon: float, zoom: int) -> TileCoordinate:
    """
    Tile containing (lat, lon) at `zoom` (standard Web Mercator slippy-map scheme).

        x = floor((lon + 180) / 360 * 2^z)
        y = floor((1 - asinh(tan(lat_rad)) / pi) / 2 * 2^z)

    Raises InvalidCoordinate for non-finite or out-of-range degrees.
    Latitudes past the Mercator limit and lon == 180 land on the edge tile.
    """
    zoom = check_zoom(zoom)
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidCoordinate(f"non-finite coordinate ({lat}, {lon})")
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise InvalidCoordinate(f"lat/lon out of range ({lat}, {lon})")

    lat = max(-MERCATOR_MAX_LAT, min(MERCATOR_MAX_LAT, lat))
    n = 1 << zoom
    lat_rad = math.radians(lat)
    x = math.floor((lon + 180.0) / 360.0 * n)
    y = math.floor((1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n)
    return TileCoordinate(zoom=zoom, x=min(max(x, 0), n - 1), y=min(max(y, 0), n - 1))


def tile2deg(x: float, y: float, zoom: int) -> Tuple[float, float]:
    """NW corner (lat, lon) of tile (x, y). Accepts x/y == 2^zoom for SE corners."""
    n = float(1 << int(zoom))
    lon = x / n * 360.0 - 180.0
    lat = math.degrees(math.atan(math.sinh(math.pi * (1.0 - 2.0 * y / n))))
    return lat, lon


def tile_bounds(x: int, y: int, zoom: int) -> GeoBounds:
    north, west = tile2deg(x, y, zoom)
    south, east = tile2deg(x + 1, y + 1, zoom)
    return GeoBounds(north=north, south=south, east=east, west=west)


# -------------------------
# Bounds enumeration
# -------------------------
def _tile_range(bounds: GeoBounds, zoom: int) -> Tuple[int, int, int, int]:
    nw = deg2tile(bounds.north, bounds.west, zoom)
    se = deg2tile(bounds.south, bounds.east, zoom)
    return min(nw.x, se.x), max(nw.x, se.x), min(nw.y, se.y), max(nw.y, se.y)


def _zoom_span(min_zoom: int, max_zoom: int) -> range:
    return range(check_zoom(min_zoom), check_zoom(max_zoom) + 1)


def tiles_in_bounds(bounds: GeoBounds, min_zoom: int, max_zoom: int) -> Iterator[TileCoordinate]:
    """
    Every tile intersecting `bounds` for zoom in [min_zoom, max_zoom].

    Order: zoom-major, then x, then y. Each (zoom, x, y) appears once.
    Lazy; call again to restart.
    """
    for z in _zoom_span(min_zoom, max_zoom):
        x0, x1, y0, y1 = _tile_range(bounds, z)
        for x in range(x0, x1 + 1):
            for y in range(y0, y1 + 1):
                yield TileCoordinate(zoom=z, x=x, y=y)


def count_tiles_in_bounds(bounds: GeoBounds, min_zoom: int, max_zoom: int) -> int:
    """Same count as len(list(tiles_in_bounds(...))) without enumerating."""
    total = 0
    for z in _zoom_span(min_zoom, max_zoom):
        x0, x1, y0, y1 = _tile_range(bounds, z)
        total += (x1 - x0 + 1) * (y1 - y0 + 1)
    return total


# -------------------------
# Pixel helpers for tiles
# -------------------------
def geo2tile_pixel(lat: float, lon: float, bounds: GeoBounds, size: int) -> Tuple[float, float]:
    """
    Linear lon/lat -> pixel (px, py) inside a tile covering `bounds`.
    Good enough for overlays at tile scale.
    """
    px = (lon - bounds.west) / (bounds.east - bounds.west) * size
    py = (bounds.north - lat) / (bounds.north - bounds.south) * size
    return px, py
