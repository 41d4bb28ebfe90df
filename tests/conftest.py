from __future__ import annotations

import pytest

from tile_proxy.tile_store import DiskTileStore


@pytest.fixture
def store(tmp_path):
    return DiskTileStore(tmp_path / "tile-cache")
