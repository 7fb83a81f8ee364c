from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Optional

import structlog

from rangewatch.utils.time import bucket_start
from rangewatch.utils.types import Candle, Tick


@dataclass(slots=True)
class CandleConfig:
    """
    Configuration for candle aggregation.

    candle_seconds: candle width (10 = 10s candles, 60 = 1m candles, ...)
    """
    candle_seconds: int = 10


class CandleAggregator:
    """
    Buckets pool samples into fixed-length OHLC candles.

    Key behavior:
    - bucket_start = floor(tick.timestamp / interval) * interval (ms).
    - At most one candle is open. A tick for a different bucket finalizes the
      open candle and returns it; the new candle opens at the tick's price.
    - Ticks with a non-finite or non-positive price, or older than the last
      accepted tick, are rejected without touching state.

    start() drains q_ticks and pushes (closed_candle, closing_tick) to q_candles.
    """
    def __init__(
        self,
        q_ticks: Optional[asyncio.Queue] = None,
        q_candles: Optional[asyncio.Queue] = None,
        cfg: Optional[CandleConfig] = None,
    ):
        self.cfg = cfg or CandleConfig()
        if self.cfg.candle_seconds <= 0:
            raise ValueError("candle_seconds must be >= 1")

        self.q_ticks = q_ticks
        self.q_candles = q_candles
        self.interval_ms = self.cfg.candle_seconds * 1000

        self._open: Optional[Candle] = None
        self._last_ts: Optional[int] = None
        self._log = structlog.get_logger("candles")
        self._stop = asyncio.Event()

    @property
    def open_candle(self) -> Optional[Candle]:
        return self._open

    # -------------------------------------------------------------------------
    # lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        assert self.q_ticks is not None
        while not self._stop.is_set():
            tick = await self.q_ticks.get()
            closed = self.ingest(tick)
            if closed is not None and self.q_candles is not None:
                try:
                    self.q_candles.put_nowait((closed, tick))
                except asyncio.QueueFull:
                    self._log.warning("candle_queue_full_drop", bucket_start=closed.bucket_start)

    async def stop(self) -> None:
        self._stop.set()

    # -------------------------------------------------------------------------
    # core tick handling
    # -------------------------------------------------------------------------

    def ingest(self, tick: Tick) -> Optional[Candle]:
        """
        Fold one tick into the open candle. Returns the candle that this tick
        closed, if any.
        """
        px = tick.price
        if not isinstance(px, (int, float)) or not math.isfinite(px) or px <= 0.0:
            self._log.warning("tick_rejected", reason="bad_price", price=px, ts=tick.timestamp)
            return None
        if self._last_ts is not None and tick.timestamp < self._last_ts:
            self._log.warning(
                "tick_rejected", reason="out_of_order", ts=tick.timestamp, last_ts=self._last_ts
            )
            return None

        self._last_ts = tick.timestamp
        bs = bucket_start(tick.timestamp, self.interval_ms)
        c = self._open

        if c is not None and c.bucket_start == bs:
            # same bucket: update in place
            if px > c.high:
                c.high = px
            if px < c.low:
                c.low = px
            c.close = px
            c.liquidity = tick.composition
            return None

        closed = c
        self._open = Candle(
            bucket_start=bs,
            open=px,
            high=px,
            low=px,
            close=px,
            liquidity=tick.composition,
        )
        return closed
