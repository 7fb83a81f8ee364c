from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

from rangewatch.utils.time import utc_now_ms

@dataclass(slots=True)
class Balances:
    safe: float      # units of the safe (quote) asset
    risk: float      # units of the risk asset
    gas: float = 0.0

    def total_value(self, price: float) -> float:
        return self.safe + self.risk * price

@dataclass(slots=True)
class TradingState:
    held_asset: str
    last_consumed_signal_id: Optional[int] = None
    actions_taken: int = 0
    session_start: int = field(default_factory=utc_now_ms)
    # consumer read cursor; not part of the decision rules
    cursor: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "held_asset": self.held_asset,
            "last_consumed_signal_id": self.last_consumed_signal_id,
            "actions_taken": self.actions_taken,
            "session_start": self.session_start,
            "cursor": self.cursor,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TradingState":
        return cls(
            held_asset=str(d["held_asset"]),
            last_consumed_signal_id=d.get("last_consumed_signal_id"),
            actions_taken=int(d.get("actions_taken", 0)),
            session_start=int(d.get("session_start", 0)),
            cursor=d.get("cursor"),
        )

def initial_holding(balances: Balances, price: float, risk_asset: str, safe_asset: str) -> str:
    """Start out holding whichever side carries more value."""
    if balances.risk * price > balances.safe:
        return risk_asset
    return safe_asset
