# src/rangewatch/signals/rules.py
from __future__ import annotations
from dataclasses import dataclass

@dataclass(slots=True)
class BreakoutRule:
    """
    Band around a reference price: Range = center * (1 ± range_pct).
    A close outside the band marks a pending breakout; a close still outside
    one candle later confirms it and re-centers the band on that close.
    """
    name: str = "breakout_0p1"
    range_pct: float = 0.001            # 0.1%

    def __post_init__(self) -> None:
        if not (0.0 < self.range_pct < 1.0):
            raise ValueError("range_pct must be in (0, 1)")
