"""
Tile proxy: disk-backed slippy-map tile cache in front of remote providers.

- Stores tiles at `<cache_root>/{z}/{x}/{y}.png` (permanent until cleared)
- Resolves misses: local render server -> public providers -> local synthesis
- Serves GET /tiles/{z}/{x}/{y}.png plus /cache/* management endpoints
"""
