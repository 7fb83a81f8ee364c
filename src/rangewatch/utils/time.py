from __future__ import annotations

import time
from datetime import datetime, timezone

# --- fast, allocation-free time helpers ---

def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()

def utc_now_ms() -> int:
    """Unix epoch milliseconds (int)."""
    return time.time_ns() // 1_000_000

def bucket_start(ts_ms: int, interval_ms: int) -> int:
    """Floor a millisecond timestamp to the start of its bucket."""
    return (int(ts_ms) // interval_ms) * interval_ms

def to_ms(ts: float | int) -> int:
    """
    Normalize an epoch timestamp of unknown unit to milliseconds.
    Heuristic by magnitude: ns > 1e17, us > 1e14, ms > 1e11, else seconds.
    """
    v = float(ts)
    if v > 1e17:
        return int(v // 1_000_000)
    if v > 1e14:
        return int(v // 1_000)
    if v > 1e11:
        return int(v)
    return int(v * 1000)

def utc_dt(ts_ms: int) -> datetime:
    """Epoch milliseconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)

# --- query windows ---

WINDOWS_MS: dict[str, int] = {
    "15m": 15 * 60 * 1000,
    "1h": 60 * 60 * 1000,
    "4h": 4 * 60 * 60 * 1000,
    "24h": 24 * 60 * 60 * 1000,
}
DEFAULT_WINDOW = "1h"

def window_start_ms(window: str, now_ms: int) -> int:
    """
    Start of a named look-back window ending at now_ms.
    "all" starts at epoch 0; unknown names fall back to the default window.
    """
    if window == "all":
        return 0
    span = WINDOWS_MS.get(window, WINDOWS_MS[DEFAULT_WINDOW])
    return max(0, now_ms - span)

def seconds_since_ms(ts_ms: int) -> float:
    """Non-negative seconds elapsed since ts_ms (clamped at 0)."""
    return max(0.0, utc_now_s() - ts_ms / 1000.0)
