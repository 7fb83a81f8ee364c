from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import structlog
from redis.exceptions import RedisError

from rangewatch.trading.config import ConsumerConfig
from rangewatch.trading.settlement import Settlement
from rangewatch.trading.sizing import size_action
from rangewatch.trading.state import TradingState, initial_holding
from rangewatch.utils.types import Action, SignalRecord, SignalStatus
from storage.redis_signals import SignalStore, StaleTradingState


class Outcome(str, Enum):
    NOOP = "noop"            # nothing to do; record consumed by the cursor
    EXECUTED = "executed"    # action settled and state advanced
    DEFERRED = "deferred"    # transient failure; retry this record next poll


class SignalConsumer:
    """
    Turns confirmed-breakout records into at most one position flip each.

    Decision rules, in order:
      1. record already consumed          -> no-op
      2. status is not Confirmed-*        -> no-op
      3. actions_taken >= max_actions     -> no-op
      4. Confirmed-Up, holding risk asset -> no-op, else Acquire
      5. Confirmed-Down, holding safe     -> no-op, else Release
    State (holding, count, last consumed id) moves only after a successful
    settlement. A failed or timed-out settlement leaves it untouched so the
    same record is retried on the next poll.
    """
    def __init__(
        self,
        cfg: ConsumerConfig,
        store: SignalStore,
        settlement: Settlement,
        state: Optional[TradingState] = None,
    ):
        self.cfg = cfg
        self.store = store
        self.settlement = settlement
        self.state = state or TradingState(held_asset=cfg.safe_asset)
        self._persisted_last_id: Optional[int] = self.state.last_consumed_signal_id
        self._dirty = False
        self._rate_limit_logged = False
        self._stop = asyncio.Event()
        self._log = structlog.get_logger("consumer")

    # ---------------------------- decisions ---------------------------- #

    def decide(self, record: SignalRecord) -> Optional[Action]:
        st = self.state
        if record.id == st.last_consumed_signal_id:
            return None
        if not record.status.confirmed:
            return None
        if st.actions_taken >= self.cfg.max_actions:
            if not self._rate_limit_logged:
                self._log.warning("rate_limit_reached", max_actions=self.cfg.max_actions)
                self._rate_limit_logged = True
            return None
        if record.status is SignalStatus.CONFIRMED_UP:
            if st.held_asset == self.cfg.risk_asset:
                return None
            return Action.ACQUIRE
        if record.status is SignalStatus.CONFIRMED_DOWN:
            if st.held_asset == self.cfg.safe_asset:
                return None
            return Action.RELEASE
        raise ValueError(f"unhandled status: {record.status!r}")

    def apply(self, record: SignalRecord, action: Action) -> None:
        st = self.state
        st.held_asset = self.cfg.risk_asset if action is Action.ACQUIRE else self.cfg.safe_asset
        st.actions_taken += 1
        st.last_consumed_signal_id = record.id
        self._dirty = True

    # ---------------------------- execution ---------------------------- #

    async def handle(self, record: SignalRecord) -> Outcome:
        action = self.decide(record)
        if action is None:
            return Outcome.NOOP

        try:
            balances = await asyncio.wait_for(self.settlement.balances(), timeout=self.cfg.settlement_timeout_s)
        except Exception as e:
            self._log.warning("balances_unavailable", err=str(e) or type(e).__name__, signal_id=record.id)
            return Outcome.DEFERRED

        order = size_action(action, balances, record.close, self.cfg)
        if order is None:
            self._log.warning(
                "action_skipped_size",
                action=action.value,
                signal_id=record.id,
                safe=balances.safe,
                risk=balances.risk,
                price=record.close,
            )
            return Outcome.NOOP

        self._log.info(
            "signal_action",
            status=record.status.value,
            action=action.value,
            signal_id=record.id,
            price=record.close,
            amount_in=round(order.amount_in, 6),
            dry_run=self.cfg.dry_run,
        )
        try:
            result = await asyncio.wait_for(self.settlement.settle(order), timeout=self.cfg.settlement_timeout_s)
        except asyncio.TimeoutError:
            self._log.error("settlement_timeout", signal_id=record.id, action=action.value)
            return Outcome.DEFERRED

        if not result.success:
            self._log.error("settlement_failed", signal_id=record.id, action=action.value, err=result.error)
            return Outcome.DEFERRED

        self.apply(record, action)
        self._log.info(
            "position_changed",
            held=self.state.held_asset,
            actions_taken=self.state.actions_taken,
            tx_id=result.tx_id,
        )
        return Outcome.EXECUTED

    async def on_signal(self, record: SignalRecord) -> Optional[Action]:
        """Handle one record; returns the action that was executed, if any."""
        action = self.decide(record)
        if action is None:
            return None
        outcome = await self.handle(record)
        return action if outcome is Outcome.EXECUTED else None

    # ---------------------------- polling ---------------------------- #

    async def prepare(self) -> None:
        """Load persisted state for the session, or start a fresh one at the stream head."""
        saved = await asyncio.wait_for(
            self.store.load_trading_state(self.cfg.session), timeout=self.cfg.store_timeout_s
        )
        if saved is not None:
            self.state = saved
            self._persisted_last_id = saved.last_consumed_signal_id
            self._log.info("trading_state_loaded", session=self.cfg.session, **saved.to_dict())
            return

        latest = await asyncio.wait_for(self.store.latest_signal(), timeout=self.cfg.store_timeout_s)
        held = self.cfg.safe_asset
        if latest is not None:
            balances = await asyncio.wait_for(self.settlement.balances(), timeout=self.cfg.settlement_timeout_s)
            held = initial_holding(balances, latest.close, self.cfg.risk_asset, self.cfg.safe_asset)
        self.state = TradingState(held_asset=held, cursor=latest.timestamp if latest else None)
        self._persisted_last_id = None
        self._dirty = True
        self._log.info("trading_session_started", session=self.cfg.session, held=held, cursor=self.state.cursor)

    async def poll_once(self, limit: int = 500) -> int:
        """
        Consume new records in order. Returns how many records the cursor moved past.
        A deferred record stops the batch; the cursor stays before it.
        """
        records = await asyncio.wait_for(
            self.store.signals_after(self.state.cursor, limit), timeout=self.cfg.store_timeout_s
        )
        moved = 0
        for rec in records:
            outcome = await self.handle(rec)
            if outcome is Outcome.DEFERRED:
                break
            self.state.cursor = rec.timestamp
            self._dirty = True
            moved += 1
        await self._persist()
        return moved

    async def _persist(self) -> None:
        if not self._dirty:
            return
        try:
            await asyncio.wait_for(
                self.store.save_trading_state(self.cfg.session, self.state, self._persisted_last_id),
                timeout=self.cfg.store_timeout_s,
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            # keep dirty; next poll retries the write
            self._log.warning("trading_state_persist_failed", err=str(e) or type(e).__name__)
            return
        self._persisted_last_id = self.state.last_consumed_signal_id
        self._dirty = False

    async def start(self) -> None:
        self._log.info("consumer_polling", interval_s=self.cfg.poll_interval_s, session=self.cfg.session)
        while not self._stop.is_set():
            try:
                await self.poll_once()
            except StaleTradingState:
                self._log.error("trading_state_conflict", session=self.cfg.session)
                raise
            except (RedisError, OSError, asyncio.TimeoutError) as e:
                self._log.warning("poll_failed", err=str(e) or type(e).__name__)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.cfg.poll_interval_s)
            except asyncio.TimeoutError:
                pass
        self._log.info(
            "consumer_exit",
            actions_taken=self.state.actions_taken,
            held=self.state.held_asset,
        )

    async def stop(self) -> None:
        self._stop.set()
