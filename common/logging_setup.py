from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict, Optional

from common.utils import iso_now_ms


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "ts": "2024-05-01T12:00:00.000Z", "lvl": "INFO", "name": "tile_proxy.pipeline",
        "msg": "text", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": iso_now_ms(),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        # log.info("...", extra={"extra": {...}}) lands here
        if hasattr(record, "extra") and isinstance(record.extra, dict):  # type: ignore[attr-defined]
            payload["extra"] = record.extra  # type: ignore[attr-defined]
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None, *, force: bool = False) -> None:
    """
    Configure the root logger once with JSON output on stdout.
    Level precedence:
      - explicit `level` arg
      - env LOG_LEVEL (DEBUG/INFO/WARNING/ERROR)
      - default INFO
    `force=True` re-applies the level on an already configured root
    (used when the server config names a level).
    """
    root = logging.getLogger()
    if getattr(root, "_tiles_configured", False) and not force:
        return

    lvl_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = logging.getLevelName(lvl_name)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    if not getattr(root, "_tiles_configured", False):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        root.handlers.clear()
        root.addHandler(handler)
        root._tiles_configured = True  # type: ignore[attr-defined]
    root.setLevel(lvl)


def get_logger(name: str) -> logging.Logger:
    """Module logger; makes sure the root is configured."""
    setup_logging()
    return logging.getLogger(name)
