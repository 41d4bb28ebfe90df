from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


CONFIG_ENV = "TILE_PROXY_CONFIG"
DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "tiles": {"cache_root": "tile-cache"},
    "providers": {
        "local": {
            "enabled": True,
            "url": "http://localhost:8080/tile/{z}/{x}/{y}.png",
            "timeout_s": 10,
        },
        "fallback_timeout_s": 5,
        "fallbacks": [
            {"name": "opentopomap", "url": "https://tile.opentopomap.org/{z}/{x}/{y}.png"},
            {
                "name": "cyclosm",
                "url": "https://dev.{s}.tile.cyclosm.org/{z}/{x}/{y}.png",
                "subdomains": ["a", "b", "c"],
            },
            {"name": "wikimedia", "url": "https://maps.wikimedia.org/osm-intl/{z}/{x}/{y}.png"},
            {
                "name": "carto_light",
                "url": "https://cartodb-basemaps-a.global.ssl.fastly.net/light_all/{z}/{x}/{y}.png",
            },
        ],
    },
    "fetch": {
        "min_interval_ms": 200,
        "user_agent": "TrailTiles/1.0 (tile cache; contact: trailtiles@localhost)",
    },
    "preload": {"delay_ms": 300, "min_zoom": 10, "max_zoom": 15, "max_tiles": 20000},
    "logging": {"level": "INFO"},
    "server": {"host": "0.0.0.0", "port": 3000},
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay `override` on a copy of `base`. Lists are replaced, not merged."""
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Read YAML params and merge them over DEFAULTS.
    Path precedence: explicit arg, env TILE_PROXY_CONFIG, config/params.yaml.
    A missing file means "defaults only".
    """
    path = path or os.environ.get(CONFIG_ENV) or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return copy.deepcopy(DEFAULTS)
    with open(path, "r") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return _deep_merge(DEFAULTS, loaded)
