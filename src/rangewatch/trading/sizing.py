from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rangewatch.trading.config import ConsumerConfig
from rangewatch.trading.state import Balances
from rangewatch.utils.types import Action


@dataclass(slots=True, frozen=True)
class Order:
    action: Action
    asset_in: str
    asset_out: str
    amount_in: float
    min_amount_out: float
    expected_out: float


def size_action(
    action: Action,
    balances: Balances,
    price: float,
    cfg: ConsumerConfig,
) -> Optional[Order]:
    """
    Size one action from current balances. Pure: no I/O, no state.

    Acquire spends min(max_trade_value, safe * size_fraction) of the safe asset.
    Release sells the whole risk balance.
    Returns None when the portfolio is under min_balance or the order would be
    too small to be worth the fees.
    """
    if price <= 0.0:
        return None
    if balances.total_value(price) < cfg.min_balance:
        return None

    keep = 1.0 - cfg.slippage_bps / 10_000.0

    if action is Action.ACQUIRE:
        spend = min(cfg.max_trade_value, balances.safe * cfg.size_fraction)
        if spend < cfg.min_trade_value:
            return None
        expected = spend / price
        return Order(action, cfg.safe_asset, cfg.risk_asset, spend, expected * keep, expected)

    if action is Action.RELEASE:
        amount = balances.risk
        if amount < cfg.min_release_amount or amount * price < cfg.min_trade_value:
            return None
        expected = amount * price
        return Order(action, cfg.risk_asset, cfg.safe_asset, amount, expected * keep, expected)

    raise ValueError(f"unknown action: {action!r}")
