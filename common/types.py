from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from common.utils import human_file_size


MAX_ZOOM = 18
TILE_SIZE = 256


class InvalidCoordinate(ValueError):
    """Tile or geographic coordinate outside the supported pyramid."""


def check_zoom(zoom: int) -> int:
    z = int(zoom)
    if not (0 <= z <= MAX_ZOOM):
        raise InvalidCoordinate(f"zoom must be in [0, {MAX_ZOOM}], got {zoom}")
    return z


@dataclass(frozen=True, slots=True)
class TileCoordinate:
    """
    One 256x256 raster tile in the slippy-map pyramid.

    Attributes:
        zoom: detail level, 0..18
        x, y: column/row index, 0 <= x,y < 2**zoom
    """
    zoom: int
    x: int
    y: int

    def __post_init__(self) -> None:
        check_zoom(self.zoom)
        n = 1 << self.zoom
        if not (0 <= self.x < n) or not (0 <= self.y < n):
            raise InvalidCoordinate(
                f"tile {self.zoom}/{self.x}/{self.y} outside [0, {n}) at zoom {self.zoom}"
            )

    @property
    def path_key(self) -> str:
        return f"{self.zoom}/{self.x}/{self.y}"

    def __str__(self) -> str:
        return self.path_key


@dataclass(frozen=True, slots=True)
class GeoBounds:
    """
    Rectangular lat/lon region in degrees. No antimeridian handling:
    east/west are treated as a plain interval.
    """
    north: float
    south: float
    east: float
    west: float

    def __post_init__(self) -> None:
        if not self.north > self.south:
            raise ValueError(f"north ({self.north}) must be greater than south ({self.south})")

    def contains(self, lat: float, lon: float) -> bool:
        return (self.south <= lat <= self.north) and (self.west <= lon <= self.east)

    def to_dict(self) -> Dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


@dataclass(frozen=True, slots=True)
class RoutePoint:
    lat: float
    lon: float


@dataclass(slots=True)
class ZoomLevelStats:
    tiles: int = 0
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"tiles": self.tiles, "size": self.size, "sizeHuman": human_file_size(self.size)}


@dataclass(slots=True)
class CacheStatistics:
    """
    Aggregate view of the disk store. Derived on demand, never persisted.

    `zoom_levels` is keyed by the zoom directory name (e.g. "10") so the
    serialized shape matches what map front-ends already consume.
    """
    total_tiles: int = 0
    total_size: int = 0
    zoom_levels: Dict[str, ZoomLevelStats] = field(default_factory=dict)

    def add_zoom(self, name: str, level: ZoomLevelStats) -> None:
        self.zoom_levels[name] = level
        self.total_tiles += level.tiles
        self.total_size += level.size

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTiles": self.total_tiles,
            "totalSize": self.total_size,
            "totalSizeHuman": human_file_size(self.total_size),
            "zoomLevels": {k: v.to_dict() for k, v in self.zoom_levels.items()},
        }


@dataclass(frozen=True, slots=True)
class FetchRequest:
    """One outstanding upstream fetch; lives only for the duration of a miss."""
    url: str
    coord: TileCoordinate
    cache_path: Path

    def to_meta(self) -> Dict[str, Any]:
        """Safe to log."""
        return {"url": self.url, "tile": self.coord.path_key, "cache_path": str(self.cache_path)}
