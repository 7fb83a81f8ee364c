# src/rangewatch/main.py
import asyncio
import signal
import sys

import structlog
from dotenv import load_dotenv
from redis.asyncio import Redis

from rangewatch.config import ConfigError, MonitorConfig
from rangewatch.data.candles import CandleAggregator, CandleConfig
from rangewatch.ingest.feed import FeedConfig, PoolFeedPoller
from rangewatch.signals.engine import SignalEngine
from rangewatch.signals.formatting import format_signal_pretty
from rangewatch.signals.machine import BreakoutStateMachine
from rangewatch.signals.notifiers import ConsoleNotifier
from rangewatch.signals.rules import BreakoutRule
from storage.redis_signals import SignalStore

load_dotenv()
log = structlog.get_logger()


# ---------------------------
# Utilities
# ---------------------------

async def drain(q: asyncio.Queue, timeout: float) -> None:
    """Wait (bounded) until a queue has been emptied by its consumer."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not q.empty() and loop.time() < deadline:
        await asyncio.sleep(0.05)


async def notifier_loop(q_signals: asyncio.Queue, notifier: ConsoleNotifier):
    while True:
        rec = await q_signals.get()
        await notifier.send(rec)


# ---------------------------
# Main
# ---------------------------

async def main(cfg: MonitorConfig):
    # Queues
    q_ticks = asyncio.Queue(maxsize=10_000)
    q_candles = asyncio.Queue(maxsize=2_000)
    q_signals = asyncio.Queue(maxsize=2_000)

    redis_client = Redis.from_url(cfg.redis_url, decode_responses=True)
    store = SignalStore(redis_client, pool=cfg.pool_id)

    feed = PoolFeedPoller(
        FeedConfig(feed_url=cfg.feed_url, poll_interval_s=cfg.poll_interval_s, timeout_s=cfg.feed_timeout_s),
        q_ticks,
    )
    aggregator = CandleAggregator(
        q_ticks=q_ticks,
        q_candles=q_candles,
        cfg=CandleConfig(candle_seconds=cfg.candle_seconds),
    )
    engine = SignalEngine(
        q_candles=q_candles,
        store=store,
        machine=BreakoutStateMachine(BreakoutRule(range_pct=cfg.range_pct)),
        q_signals=q_signals,
        store_timeout_s=cfg.store_timeout_s,
    )
    console_notifier = ConsoleNotifier(format_fn=lambda r: format_signal_pretty(r, cfg.display_tz))

    log.info(
        "monitor_starting",
        pool=cfg.pool_id,
        feed=cfg.feed_url,
        candle_seconds=cfg.candle_seconds,
        range_pct=cfg.range_pct,
    )

    # resume before any tick flows so restarts never re-emit a persisted bucket
    await engine.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    tasks = [
        asyncio.create_task(feed.start(), name="feed"),
        asyncio.create_task(aggregator.start(), name="candles"),
        asyncio.create_task(notifier_loop(q_signals, console_notifier), name="notifier"),
    ]

    try:
        await stop.wait()
        log.info("monitor_stopping")
        # stop intake, then let in-flight ticks/candles finish their cycle
        await feed.stop()
        await drain(q_ticks, timeout=cfg.store_timeout_s)
        await drain(q_candles, timeout=cfg.store_timeout_s * 3)
        await drain(q_signals, timeout=1.0)
    finally:
        for obj in (engine, aggregator, feed):
            await obj.stop()
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await redis_client.aclose()
        log.info("monitor_stopped")


def run() -> None:
    try:
        cfg = MonitorConfig.from_env()
    except ConfigError as e:
        log.error("config_error", err=str(e))
        sys.exit(2)
    try:
        asyncio.run(main(cfg))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
