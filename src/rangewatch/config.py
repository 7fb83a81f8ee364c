from __future__ import annotations

import os
from dataclasses import dataclass


class ConfigError(Exception):
    """Missing or invalid configuration. Fatal at startup."""


def env_required(name: str) -> str:
    v = os.getenv(name)
    if v is None or not v.strip():
        raise ConfigError(f"missing required env: {name}")
    return v.strip()

def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None

def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None

def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(slots=True)
class MonitorConfig:
    feed_url: str
    pool_id: str = "default"
    redis_url: str = "redis://localhost:6379/0"
    poll_interval_s: float = 10.0
    candle_seconds: int = 10
    range_pct: float = 0.001
    feed_timeout_s: float = 5.0
    store_timeout_s: float = 5.0
    display_tz: str = "UTC"

    def __post_init__(self) -> None:
        if self.candle_seconds <= 0:
            raise ConfigError("CANDLE_SECONDS must be >= 1")
        if self.poll_interval_s <= 0:
            raise ConfigError("POLL_INTERVAL_S must be > 0")
        if not (0.0 < self.range_pct < 1.0):
            raise ConfigError("RANGE_PCT must be a fraction in (0, 1), e.g. 0.001 for 0.1%")

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        return cls(
            feed_url=env_required("FEED_URL"),
            pool_id=os.getenv("POOL_ID", "default"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            poll_interval_s=env_float("POLL_INTERVAL_S", 10.0),
            candle_seconds=env_int("CANDLE_SECONDS", 10),
            range_pct=env_float("RANGE_PCT", 0.001),
            feed_timeout_s=env_float("FEED_TIMEOUT_S", 5.0),
            store_timeout_s=env_float("STORE_TIMEOUT_S", 5.0),
            display_tz=os.getenv("DISPLAY_TZ", "UTC"),
        )
