# src/rangewatch/trader.py
import asyncio
import signal
import sys

import structlog
from dotenv import load_dotenv
from redis.asyncio import Redis

from rangewatch.config import ConfigError
from rangewatch.trading.config import ConsumerConfig, consumer_config_from_env
from rangewatch.trading.consumer import SignalConsumer
from rangewatch.trading.settlement import DryRunSettlement, HttpSettlement
from rangewatch.utils.time import utc_now_ms
from storage.redis_signals import SignalStore

load_dotenv()
log = structlog.get_logger()


async def main(cfg: ConsumerConfig):
    redis_client = Redis.from_url(cfg.redis_url, decode_responses=True)
    store = SignalStore(redis_client, pool=cfg.pool_id)

    http_settlement = None
    if cfg.dry_run:
        settlement = DryRunSettlement(safe=cfg.dry_run_safe_balance, risk=cfg.dry_run_risk_balance)
    else:
        http_settlement = HttpSettlement(cfg.settlement_url, timeout_s=cfg.settlement_timeout_s)
        await http_settlement.start()
        settlement = http_settlement

    consumer = SignalConsumer(cfg, store, settlement)

    log.info(
        "trader_starting",
        dry_run=cfg.dry_run,
        trade_size=cfg.max_trade_value,
        size_fraction=cfg.size_fraction,
        slippage_bps=cfg.slippage_bps,
        max_actions=cfg.max_actions,
        min_balance=cfg.min_balance,
        poll_interval_s=cfg.poll_interval_s,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            # stop() only sets a flag; the current poll cycle finishes first
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(consumer.stop()))
        except NotImplementedError:
            pass

    try:
        await consumer.prepare()
        await consumer.start()
    finally:
        st = consumer.state
        log.info(
            "session_summary",
            minutes=max(0, (utc_now_ms() - st.session_start) // 60_000),
            actions_taken=st.actions_taken,
            held=st.held_asset,
            last_signal=st.last_consumed_signal_id,
        )
        if http_settlement is not None:
            await http_settlement.stop()
        await redis_client.aclose()


def run() -> None:
    try:
        cfg = consumer_config_from_env()
    except ConfigError as e:
        log.error("config_error", err=str(e))
        sys.exit(2)
    try:
        asyncio.run(main(cfg))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
