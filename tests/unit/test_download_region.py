"""
Unit tests for the offline region downloader
"""

from common.geo import tiles_in_bounds
from common.types import GeoBounds
from scripts.download_region_tiles import download_region
from tile_proxy.errors import Blocked, NotFound
from tests.helpers import fake_fetcher


BOUNDS = GeoBounds(north=1, south=0, east=1, west=0)
PNG = b"\x89PNG\r\n\x1a\ntile"


def test_downloads_missing_and_skips_cached(store):
    """Test only tiles not yet cached are downloaded"""
    tiles = list(tiles_in_bounds(BOUNDS, 5, 6))
    store.put(tiles[0], b"already-here")
    fetcher = fake_fetcher("download", PNG)

    result = download_region(store, fetcher, BOUNDS, 5, 6)

    assert result == {
        "downloaded": len(tiles) - 1,
        "cached": 1,
        "failed": 0,
        "total": len(tiles),
        "total_size": (len(tiles) - 1) * len(PNG),
    }
    assert [c.args[0] for c in fetcher.fetch_tile.call_args_list] == tiles[1:]
    assert store.get(tiles[0]) == b"already-here"
    assert all(store.get(c) == PNG for c in tiles[1:])


def test_not_found_is_counted_and_run_continues(store):
    """Test a failed tile is counted and the run continues"""
    fetcher = fake_fetcher("download")
    fetcher.fetch_tile.side_effect = [NotFound("download"), PNG, PNG, PNG]
    result = download_region(store, fetcher, BOUNDS, 5, 6)
    assert result["failed"] == 1
    assert result["downloaded"] == 3


def test_blocked_stops_the_run(store):
    """Test a 403 stops the download"""
    fetcher = fake_fetcher("download")
    fetcher.fetch_tile.side_effect = [PNG, Blocked("download"), PNG, PNG]
    result = download_region(store, fetcher, BOUNDS, 5, 6)
    assert fetcher.fetch_tile.call_count == 2
    assert result["downloaded"] == 1
    assert result["failed"] == 1
    assert result["total"] == 4
