from __future__ import annotations
from datetime import datetime
from zoneinfo import ZoneInfo

from rangewatch.utils.types import SignalRecord, SignalStatus

_ARROWS = {
    SignalStatus.MONITORING: "·",
    SignalStatus.PENDING_UP: "↗",
    SignalStatus.PENDING_DOWN: "↘",
    SignalStatus.CONFIRMED_UP: "↑",
    SignalStatus.CONFIRMED_DOWN: "↓",
}

def _fmt_ts(ts_ms: int, tz_name: str) -> str:
    tz = ZoneInfo(tz_name)
    return datetime.fromtimestamp(ts_ms / 1000.0, tz).strftime("%H:%M:%S %Z")

def format_signal_pretty(rec: SignalRecord, tz_name: str = "UTC") -> str:
    arrow = _ARROWS.get(rec.status, "?")
    line = (
        f"[{rec.status.value}] {_fmt_ts(rec.timestamp, tz_name)} {arrow} "
        f"C={rec.close:.2f} (O={rec.open:.2f} H={rec.high:.2f} L={rec.low:.2f})  |  "
        f"range {rec.lower_range:.2f} - {rec.upper_range:.2f}  |  "
        f"mix {rec.composition_pct.asset_a:.1f}/{rec.composition_pct.asset_b:.1f}%"
    )
    if rec.status.confirmed:
        line += f"  ** {rec.reset_kind.value} **"
    return line
