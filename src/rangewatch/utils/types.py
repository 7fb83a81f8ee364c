from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# ---- ingest-level primitives ----

@dataclass(slots=True, frozen=True)
class Composition:
    """Reserve composition of the pool, in percent of total value."""
    asset_a: float
    asset_b: float

@dataclass(slots=True)
class Tick:
    timestamp: int        # epoch milliseconds
    price: float
    composition: Composition

@dataclass(slots=True)
class Candle:
    """
    OHLC candle for one bucket. bucket_start is aligned to the candle interval (ms).
    liquidity is the composition snapshot taken at the last tick of the bucket.
    """
    bucket_start: int
    open: float
    high: float
    low: float
    close: float
    liquidity: Composition

# ---- signal domain ----

@dataclass(slots=True, frozen=True)
class Range:
    upper: float
    lower: float

    @classmethod
    def around(cls, center: float, pct: float) -> "Range":
        return cls(upper=center * (1.0 + pct), lower=center * (1.0 - pct))

    def contains(self, price: float) -> bool:
        return self.lower <= price <= self.upper


class SignalStatus(str, Enum):
    MONITORING = "Monitoring"
    PENDING_UP = "Breakout-Pending-Up"
    PENDING_DOWN = "Breakout-Pending-Down"
    CONFIRMED_UP = "Confirmed-Up"
    CONFIRMED_DOWN = "Confirmed-Down"

    @property
    def confirmed(self) -> bool:
        return self in (SignalStatus.CONFIRMED_UP, SignalStatus.CONFIRMED_DOWN)


class ResetKind(str, Enum):
    NONE = "None"
    RESET_UP = "Reset-Up"
    RESET_DOWN = "Reset-Down"


@dataclass(slots=True, frozen=True)
class SignalRecord:
    timestamp: int                # bucket_start of the candle that produced it (ms)
    status: SignalStatus
    upper_range: float
    lower_range: float
    open: float
    high: float
    low: float
    close: float
    composition_pct: Composition
    reset_kind: ResetKind = ResetKind.NONE

    @property
    def id(self) -> int:
        # persisted records are keyed by timestamp
        return self.timestamp

    @property
    def range(self) -> Range:
        return Range(upper=self.upper_range, lower=self.lower_range)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "status": self.status.value,
            "upper_range": self.upper_range,
            "lower_range": self.lower_range,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "composition_pct": {
                "asset_a": self.composition_pct.asset_a,
                "asset_b": self.composition_pct.asset_b,
            },
            "reset_kind": self.reset_kind.value,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SignalRecord":
        comp = d.get("composition_pct") or {}
        return cls(
            timestamp=int(d["timestamp"]),
            status=SignalStatus(d["status"]),
            upper_range=float(d["upper_range"]),
            lower_range=float(d["lower_range"]),
            open=float(d["open"]),
            high=float(d["high"]),
            low=float(d["low"]),
            close=float(d["close"]),
            composition_pct=Composition(
                asset_a=float(comp.get("asset_a", math.nan)),
                asset_b=float(comp.get("asset_b", math.nan)),
            ),
            reset_kind=ResetKind(d.get("reset_kind", ResetKind.NONE.value)),
        )


@dataclass(slots=True, frozen=True)
class RangeSegment:
    """Maximal contiguous run of signal records sharing one Range."""
    range: Range
    start_time: int
    end_time: Optional[int]       # None while the segment is still open
    reset_occurred: bool
    reset_kind: ResetKind
    record_count: int

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def contains(self, ts: int) -> bool:
        if ts < self.start_time:
            return False
        return self.end_time is None or ts < self.end_time

# ---- trading domain ----

class Action(str, Enum):
    ACQUIRE = "Acquire"
    RELEASE = "Release"


def candle_to_dict(c: Candle) -> dict:
    return {
        "bucket_start": c.bucket_start,
        "open": c.open,
        "high": c.high,
        "low": c.low,
        "close": c.close,
        "liquidity": {"asset_a": c.liquidity.asset_a, "asset_b": c.liquidity.asset_b},
    }


def candle_from_dict(d: dict) -> Candle:
    liq = d.get("liquidity") or {}
    return Candle(
        bucket_start=int(d["bucket_start"]),
        open=float(d["open"]),
        high=float(d["high"]),
        low=float(d["low"]),
        close=float(d["close"]),
        liquidity=Composition(
            asset_a=float(liq.get("asset_a", math.nan)),
            asset_b=float(liq.get("asset_b", math.nan)),
        ),
    )
