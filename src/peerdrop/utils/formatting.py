"""Display helpers for sizes and times."""

from datetime import datetime

_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def format_bytes(size: int, decimals: int = 2) -> str:
    """Format a byte count with a binary unit, e.g. ``1.5 KB``"""
    if size <= 0:
        return "0 Bytes"
    places = max(decimals, 0)
    index = 0
    while index < len(_UNITS) - 1 and size >= 1024 ** (index + 1):
        index += 1
    value = round(size / (1024 ** index), places)
    text = f"{value:.{places}f}"
    if places:
        # 1.50 -> 1.5, 2.00 -> 2
        text = text.rstrip("0").rstrip(".")
    return f"{text} {_UNITS[index]}"


def format_timestamp(timestamp_ms: int) -> str:
    """Local wall-clock time for a millisecond epoch timestamp"""
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%H:%M:%S")
