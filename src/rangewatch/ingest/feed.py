from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from rangewatch.ingest import parser
from rangewatch.utils.time import utc_now_s
from rangewatch.utils.types import Tick


@dataclass(slots=True)
class FeedConfig:
    feed_url: str
    poll_interval_s: float = 10.0
    timeout_s: float = 5.0
    # if no good sample for this long, healthy() reports degraded
    stale_after_s: float = 60.0


class PoolFeedPoller:
    """
    Polls the pool price endpoint on a fixed cadence and enqueues normalized Ticks.

    Lifecycle:
      - start() opens an aiohttp session and polls until stop()
      - every request is bounded by cfg.timeout_s
      - a failed cycle (HTTP error, timeout, bad body) is logged and skipped;
        the next attempt happens on the next regular poll
    """
    def __init__(self, cfg: FeedConfig, ticks_queue: asyncio.Queue):
        self.cfg = cfg
        self.q_ticks = ticks_queue
        self._session: Optional[aiohttp.ClientSession] = None
        self._stop = asyncio.Event()
        self._last_sample_ts: float = 0.0
        self._log = structlog.get_logger("feed")

    # ---------------------------- public API ---------------------------- #

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        self._log.info("feed_polling", url=self.cfg.feed_url, interval_s=self.cfg.poll_interval_s)
        try:
            while not self._stop.is_set():
                await self.poll_once()
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.cfg.poll_interval_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._close()
            self._log.info("feed_loop_exit")

    async def stop(self) -> None:
        self._stop.set()

    async def poll_once(self) -> Optional[Tick]:
        """One poll cycle. Returns the enqueued Tick, or None if the cycle was skipped."""
        assert self._session is not None
        try:
            async with self._session.get(self.cfg.feed_url) as resp:
                if resp.status != 200:
                    self._log.warning("feed_http_error", status=resp.status)
                    return None
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self._log.warning("feed_poll_failed", err=str(e) or type(e).__name__)
            return None

        tick = parser.parse_pool_sample(payload)
        if tick is None:
            self._log.warning("feed_bad_payload", snippet=str(payload)[:200])
            return None

        self._last_sample_ts = utc_now_s()
        try:
            self.q_ticks.put_nowait(tick)
        except asyncio.QueueFull:
            self._log.info("ticks_queue_full_drop", ts=tick.timestamp)
            return None
        return tick

    # --------------------------- helpers -------------------------------- #

    def healthy(self) -> bool:
        return self.last_sample_age_s() <= self.cfg.stale_after_s

    def last_sample_age_s(self) -> float:
        return max(0.0, utc_now_s() - self._last_sample_ts) if self._last_sample_ts else float("inf")

    async def _close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
