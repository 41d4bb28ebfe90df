"""
Unit tests for the disk tile store
"""

from unittest.mock import patch

import pytest

from common.types import TileCoordinate
from tile_proxy.errors import StoreIOError
from tile_proxy.tile_store import DiskTileStore


PNG_A = b"\x89PNG\r\n\x1a\n" + b"A" * 100
PNG_B = b"\x89PNG\r\n\x1a\n" + b"B" * 250


class TestGetPut:
    """Test cases for Get Put"""

    def test_miss_returns_none(self, store):
        """Test a missing tile returns None"""
        assert store.get(TileCoordinate(3, 1, 2)) is None

    def test_put_then_get(self, store):
        """Test stored bytes are read back from the z/x/y path"""
        coord = TileCoordinate(10, 200, 400)
        path = store.put(coord, PNG_A)
        assert path == store.root / "10" / "200" / "400.png"
        assert path.read_bytes() == PNG_A
        assert store.get(coord) == PNG_A
        assert store.contains(coord)

    def test_overwrite_replaces_entry(self, store):
        """Test writing a tile again replaces it"""
        coord = TileCoordinate(5, 1, 1)
        store.put(coord, PNG_A)
        store.put(coord, PNG_B)
        assert store.get(coord) == PNG_B

    def test_no_temp_files_left_behind(self, store):
        """Test atomic writes leave no temp files"""
        coord = TileCoordinate(5, 1, 1)
        store.put(coord, PNG_A)
        assert [p.name for p in store.path_for(coord).parent.iterdir()] == ["1.png"]

    def test_put_failure_raises_store_io_error(self, tmp_path):
        """Test write errors raise StoreIOError"""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        store = DiskTileStore(blocker)
        with pytest.raises(StoreIOError):
            store.put(TileCoordinate(1, 0, 0), PNG_A)


class TestStats:
    """Test cases for Stats"""

    def test_missing_root_gives_zero_stats(self, tmp_path):
        """Test stats on a missing root are all zero"""
        s = DiskTileStore(tmp_path / "nope").stats()
        assert s.total_tiles == 0
        assert s.total_size == 0
        assert s.zoom_levels == {}

    def test_counts_per_zoom(self, store):
        """Test stats count tiles and bytes per zoom level"""
        store.put(TileCoordinate(9, 1, 1), PNG_A)
        store.put(TileCoordinate(10, 2, 2), PNG_A)
        store.put(TileCoordinate(10, 2, 3), PNG_B)
        s = store.stats()
        assert s.total_tiles == 3
        assert s.total_size == 2 * len(PNG_A) + len(PNG_B)
        assert s.zoom_levels["9"].tiles == 1
        assert s.zoom_levels["10"].tiles == 2
        assert s.zoom_levels["10"].size == len(PNG_A) + len(PNG_B)

    def test_same_write_twice_leaves_stats_unchanged(self, store):
        """Test identical writes do not change stats"""
        coord = TileCoordinate(12, 100, 100)
        store.put(coord, PNG_A)
        before = store.stats().to_dict()
        store.put(coord, PNG_A)
        assert store.stats().to_dict() == before

    def test_skips_malformed_entries(self, store):
        """Test non-numeric dirs and non-PNG files are ignored"""
        store.put(TileCoordinate(4, 1, 1), PNG_A)
        (store.root / "tmp").mkdir()
        (store.root / "tmp" / "1").mkdir()
        (store.root / "tmp" / "1" / "1.png").write_bytes(PNG_B)
        (store.root / "4" / "1" / "notes.txt").write_text("hello")
        (store.root / "README").write_text("stray file")
        s = store.stats()
        assert list(s.zoom_levels) == ["4"]
        assert s.total_tiles == 1

    def test_unreadable_zoom_contributes_zero(self, store):
        """Test an unreadable zoom level counts as empty"""
        store.put(TileCoordinate(4, 1, 1), PNG_A)
        store.put(TileCoordinate(5, 1, 1), PNG_B)
        real = DiskTileStore._zoom_stats

        def flaky(zoom_dir):
            if zoom_dir.name == "4":
                raise PermissionError("denied")
            return real(zoom_dir)

        with patch.object(DiskTileStore, "_zoom_stats", side_effect=flaky):
            s = store.stats()
        assert s.zoom_levels["4"].tiles == 0
        assert s.zoom_levels["5"].tiles == 1
        assert s.total_tiles == 1
        assert s.total_size == len(PNG_B)

    def test_wire_shape(self, store):
        """Test stats serialize to the camelCase wire shape"""
        store.put(TileCoordinate(10, 2, 2), b"x" * 1536)
        d = store.stats().to_dict()
        assert d["totalTiles"] == 1
        assert d["totalSize"] == 1536
        assert d["totalSizeHuman"] == "1.5 KB"
        assert d["zoomLevels"]["10"] == {"tiles": 1, "size": 1536, "sizeHuman": "1.5 KB"}


class TestClear:
    """Test cases for Clear"""

    def test_clear_resets_to_empty(self, store):
        """Test clear removes every tile"""
        coords = [TileCoordinate(3, 1, 1), TileCoordinate(7, 10, 20), TileCoordinate(10, 200, 400)]
        for c in coords:
            store.put(c, PNG_A)
        store.clear()
        assert store.stats().total_tiles == 0
        assert all(store.get(c) is None for c in coords)
        assert store.root.is_dir()

    def test_clear_is_idempotent(self, store):
        """Test clearing twice is harmless"""
        store.clear()
        store.clear()
        assert store.stats().total_tiles == 0

    def test_clear_zoom_isolation(self, store):
        """Test clearing one zoom keeps neighbouring zooms intact"""
        store.put(TileCoordinate(9, 1, 1), PNG_A)
        store.put(TileCoordinate(10, 1, 1), PNG_A)
        store.put(TileCoordinate(10, 1, 2), PNG_A)
        store.put(TileCoordinate(11, 1, 1), PNG_B)
        before = store.stats()

        store.clear_zoom(10)

        after = store.stats()
        assert "10" not in after.zoom_levels
        assert after.zoom_levels["9"] == before.zoom_levels["9"]
        assert after.zoom_levels["11"] == before.zoom_levels["11"]
        assert store.get(TileCoordinate(10, 1, 1)) is None

    def test_clear_missing_zoom_is_fine(self, store):
        """Test clearing an absent zoom is a no-op"""
        store.clear_zoom(17)

    def test_clear_failure_raises_store_io_error(self, store):
        """Test clear errors raise StoreIOError"""
        store.put(TileCoordinate(1, 0, 0), PNG_A)
        with patch("tile_proxy.tile_store.shutil.rmtree", side_effect=PermissionError("busy")):
            with pytest.raises(StoreIOError):
                store.clear()
