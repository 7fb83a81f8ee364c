from __future__ import annotations
from typing import Optional
from rangewatch.utils.types import Composition, Tick
from rangewatch.utils.time import to_ms, utc_now_ms

def parse_pool_sample(m: dict) -> Optional[Tick]:
    """
    Return Tick if `m` is a pool price sample; else None.

    Expected shape:
      {
        "timestamp": 1700000000000,            (epoch ms; s/us/ns are normalized)
        "price": 3101.25,
        "composition_pct": {"asset_a": 48.2, "asset_b": 51.8}
      }
    Short aliases "ts" and "px" are accepted. A missing timestamp is stamped
    with the wall clock; one that is present but unparseable rejects the
    sample. A missing composition is NaN.
    """
    if not isinstance(m, dict):
        return None

    px = m.get("price")
    if px is None:
        px = m.get("px")
    ts = m.get("timestamp")
    if ts is None:
        ts = m.get("ts")

    if px is None or isinstance(px, bool):
        return None
    try:
        px = float(px)
    except (TypeError, ValueError):
        return None

    if ts is None:
        ts_ms = utc_now_ms()
    else:
        if isinstance(ts, bool):
            return None
        try:
            ts_ms = to_ms(ts)
        except (TypeError, ValueError, OverflowError):
            return None

    comp = m.get("composition_pct") or {}
    try:
        a = float(comp.get("asset_a", "nan"))
        b = float(comp.get("asset_b", "nan"))
    except (TypeError, ValueError, AttributeError):
        a = b = float("nan")

    return Tick(timestamp=ts_ms, price=px, composition=Composition(asset_a=a, asset_b=b))
