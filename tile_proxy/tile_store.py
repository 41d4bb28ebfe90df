from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from common.logging_setup import get_logger
from common.types import CacheStatistics, TileCoordinate, ZoomLevelStats
from tile_proxy.errors import StoreIOError


log = get_logger(__name__)


class DiskTileStore:
    """
    PNG tiles on disk in a TMS-like tree:

        root/
          └─ {z}/
              └─ {x}/
                  └─ {y}.png

    Entries never expire; they go away only through clear()/clear_zoom().
    Directories are created lazily on first write.
    """

    def __init__(self, root: str | Path = "tile-cache"):
        self.root = Path(root)

    # -------- public API --------

    def path_for(self, coord: TileCoordinate) -> Path:
        return self.root / str(coord.zoom) / str(coord.x) / f"{coord.y}.png"

    def contains(self, coord: TileCoordinate) -> bool:
        return self.path_for(coord).is_file()

    def get(self, coord: TileCoordinate) -> Optional[bytes]:
        """Tile bytes, or None on a miss."""
        try:
            return self.path_for(coord).read_bytes()
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            return None

    def put(self, coord: TileCoordinate, data: bytes) -> Path:
        """
        Write (or replace) a tile. The bytes go to a temp file in the target
        directory first and are moved into place with os.replace, so readers
        see either the old file, the new file, or nothing.
        """
        path = self.path_for(coord)
        tmp_name: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{coord.y}.", suffix=".tmp", dir=path.parent)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StoreIOError(f"failed to write tile {coord.path_key}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        return path

    def stats(self) -> CacheStatistics:
        """
        Walk the tree once and sum count/bytes of *.png per zoom directory.
        Non-numeric zoom directories are skipped; an unreadable zoom
        directory contributes zero instead of failing the whole call.
        """
        out = CacheStatistics()
        if not self.root.is_dir():
            return out

        for zoom_dir in sorted(self.root.iterdir(), key=lambda p: p.name):
            if not zoom_dir.is_dir():
                continue
            try:
                int(zoom_dir.name)
            except ValueError:
                continue
            try:
                level = self._zoom_stats(zoom_dir)
            except OSError as e:
                log.warning("Skipping unreadable zoom directory %s: %s", zoom_dir, e)
                level = ZoomLevelStats()
            out.add_zoom(zoom_dir.name, level)
        return out

    def clear(self) -> None:
        """Drop every tile; leaves an empty root behind."""
        try:
            if self.root.exists():
                shutil.rmtree(self.root)
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIOError(f"failed to clear tile store {self.root}: {e}") from e
        log.info("Tile store cleared: %s", self.root)

    def clear_zoom(self, zoom: int) -> None:
        """Drop one zoom level; a level that was never cached is fine."""
        zoom_dir = self.root / str(int(zoom))
        try:
            if zoom_dir.exists():
                shutil.rmtree(zoom_dir)
        except OSError as e:
            raise StoreIOError(f"failed to clear zoom level {zoom}: {e}") from e
        log.info("Tile store zoom level %s cleared", zoom)

    # -------- internals --------

    @staticmethod
    def _zoom_stats(zoom_dir: Path) -> ZoomLevelStats:
        level = ZoomLevelStats()
        with os.scandir(zoom_dir) as x_entries:
            for x_entry in x_entries:
                if not x_entry.is_dir():
                    continue
                with os.scandir(x_entry.path) as tiles:
                    for tile in tiles:
                        if not tile.name.endswith(".png") or not tile.is_file():
                            continue
                        level.tiles += 1
                        level.size += tile.stat().st_size
        return level
