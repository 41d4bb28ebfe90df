from __future__ import annotations

from datetime import datetime, timezone


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def human_file_size(n_bytes: int) -> str:
    """
    Format a byte count with 1024-based units, e.g. 1536 -> "1.5 KB".
    Up to two decimals, trailing zeros dropped.
    """
    if n_bytes <= 0:
        return "0 B"
    value = float(n_bytes)
    i = 0
    while value >= 1024.0 and i < len(_SIZE_UNITS) - 1:
        value /= 1024.0
        i += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[i]}"

