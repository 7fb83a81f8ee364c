from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from rangewatch.config import ConfigError, env_bool, env_float, env_int


@dataclass(slots=True)
class ConsumerConfig:
    """
    Signal consumer settings.

    size_fraction:   max share of the safe balance spent on one Acquire
    max_trade_value: absolute cap (safe-asset units) on one Acquire
    min_trade_value: orders below this are skipped (fees/gas would dominate)
    min_balance:     no action while total portfolio value is below this
    max_actions:     actions allowed per session
    dry_run:         settle with a synthetic success; balances never change
    """
    redis_url: str = "redis://localhost:6379/0"
    pool_id: str = "default"
    session: str = "default"
    poll_interval_s: float = 10.0
    size_fraction: float = 0.4
    max_trade_value: float = 15.0
    min_trade_value: float = 5.0
    min_release_amount: float = 0.0001
    slippage_bps: int = 50
    max_actions: int = 5
    min_balance: float = 10.0
    dry_run: bool = True
    settlement_url: Optional[str] = None
    settlement_timeout_s: float = 30.0
    store_timeout_s: float = 5.0
    risk_asset: str = "WETH"
    safe_asset: str = "USDC"
    # balances reported by the dry-run settlement
    dry_run_safe_balance: float = 100.0
    dry_run_risk_balance: float = 0.0

    def __post_init__(self) -> None:
        if not (0.0 < self.size_fraction <= 1.0):
            raise ConfigError("size_fraction must be in (0, 1]")
        if self.max_actions < 0:
            raise ConfigError("max_actions must be >= 0")
        if not (0 <= self.slippage_bps < 10_000):
            raise ConfigError("slippage_bps must be in [0, 10000)")
        if self.poll_interval_s <= 0:
            raise ConfigError("poll_interval_s must be > 0")
        if self.risk_asset == self.safe_asset:
            raise ConfigError("risk_asset and safe_asset must differ")
        if not self.dry_run and not self.settlement_url:
            raise ConfigError("SETTLEMENT_URL is required when DRY_RUN is off")


def consumer_config_from_env() -> ConsumerConfig:
    """Build ConsumerConfig from the environment. Raises ConfigError on bad or missing values."""
    return ConsumerConfig(
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        pool_id=os.getenv("POOL_ID", "default"),
        session=os.getenv("TRADER_SESSION", "default"),
        poll_interval_s=env_float("TRADER_POLL_INTERVAL_S", 10.0),
        size_fraction=env_float("SIZE_FRACTION", 0.4),
        max_trade_value=env_float("TRADE_SIZE", 15.0),
        min_trade_value=env_float("MIN_TRADE_VALUE", 5.0),
        min_release_amount=env_float("MIN_RELEASE_AMOUNT", 0.0001),
        slippage_bps=env_int("SLIPPAGE_BPS", 50),
        max_actions=env_int("MAX_ACTIONS", 5),
        min_balance=env_float("MIN_BALANCE", 10.0),
        dry_run=env_bool("DRY_RUN", True),
        settlement_url=os.getenv("SETTLEMENT_URL") or None,
        settlement_timeout_s=env_float("SETTLEMENT_TIMEOUT_S", 30.0),
        store_timeout_s=env_float("STORE_TIMEOUT_S", 5.0),
        risk_asset=os.getenv("RISK_ASSET", "WETH"),
        safe_asset=os.getenv("SAFE_ASSET", "USDC"),
        dry_run_safe_balance=env_float("DRY_RUN_SAFE_BALANCE", 100.0),
        dry_run_risk_balance=env_float("DRY_RUN_RISK_BALANCE", 0.0),
    )
