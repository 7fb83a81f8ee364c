from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from redis.exceptions import RedisError

from rangewatch.signals.machine import BreakoutStateMachine
from rangewatch.utils.types import Candle, SignalRecord, Tick
from storage.redis_signals import SignalStore


class SignalEngine:
    """
    Single writer of the breakout state machine.

    Inputs:
      - q_candles: asyncio.Queue[(Candle, Tick)]  (from CandleAggregator)
      - store:     SignalStore                    (candles + signal records)
      - q_signals: asyncio.Queue[SignalRecord]    (output for notifiers)

    Per closed candle: evaluate, persist candle and record (bounded by
    store_timeout_s), then commit the transition. A store failure abandons the
    cycle and keeps the previous state and range, unless the record turns out
    to have been written anyway: the engine then resumes from the stored
    record before evaluating the next candle.
    """
    def __init__(
        self,
        q_candles: asyncio.Queue,
        store: SignalStore,
        machine: Optional[BreakoutStateMachine] = None,
        q_signals: Optional[asyncio.Queue] = None,
        store_timeout_s: float = 5.0,
    ):
        self.q_candles = q_candles
        self.store = store
        self.machine = machine or BreakoutStateMachine()
        self.q_signals = q_signals
        self.store_timeout_s = store_timeout_s
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._busy = False
        # a failed write may still have landed; re-read the store before evaluating again
        self._unsynced = False
        self._log = structlog.get_logger("signal_engine")

    async def start(self) -> None:
        await self.resume()
        self._task = asyncio.create_task(self._loop(), name="signal-engine")

    async def stop(self) -> None:
        self._stop.set()
        # never interrupt a cycle between persistence and commit
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.store_timeout_s * 3
        while self._busy and loop.time() < deadline:
            await asyncio.sleep(0.01)
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def resume(self) -> None:
        """Pick up the range and phase from the last persisted record, if any."""
        last = await asyncio.wait_for(self.store.latest_signal(), timeout=self.store_timeout_s)
        if last is not None:
            self.machine.resume(last)

    async def _loop(self) -> None:
        try:
            while not self._stop.is_set():
                candle, tick = await self.q_candles.get()
                self._busy = True
                try:
                    await self.on_candle(candle, tick)
                finally:
                    self._busy = False
        except asyncio.CancelledError:
            return

    # --- core ---

    async def reconcile(self) -> bool:
        """
        Adopt the latest stored record if it is newer than the machine state.
        Returns False if the store could not be read; the engine stays unsynced.
        """
        try:
            last = await asyncio.wait_for(self.store.latest_signal(), timeout=self.store_timeout_s)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self._log.warning("store_reconcile_failed", err=str(e) or type(e).__name__)
            return False
        self._unsynced = False
        st = self.machine.state
        if last is not None and (st is None or last.timestamp > st.last_bucket_start):
            self._log.info("store_reconciled", ts=last.timestamp, status=last.status.value)
            self.machine.resume(last)
            self._emit(last)
        return True

    async def on_candle(self, candle: Candle, tick: Optional[Tick] = None) -> Optional[SignalRecord]:
        if self._unsynced and not await self.reconcile():
            self._log.warning("candle_skipped", reason="store_unsynced", bucket_start=candle.bucket_start)
            return None

        t = self.machine.evaluate(candle, tick)
        if t is None:
            return None

        try:
            await asyncio.wait_for(self.store.save_candle(candle), timeout=self.store_timeout_s)
            created = await asyncio.wait_for(self.store.save_signal(t.record), timeout=self.store_timeout_s)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self._log.warning(
                "store_write_failed",
                err=str(e) or type(e).__name__,
                bucket_start=candle.bucket_start,
            )
            self._unsynced = True
            await self.reconcile()
            return None

        if not created:
            # already persisted (restart inside an interval); keep the stored one
            self._log.info("signal_duplicate_skipped", ts=t.record.timestamp)
            self.machine.commit(t)
            return None

        rec = self.machine.commit(t)
        self._emit(rec)
        return rec

    def _emit(self, rec: SignalRecord) -> None:
        if self.q_signals is None:
            return
        try:
            self.q_signals.put_nowait(rec)
        except asyncio.QueueFull:
            self._log.info("signal_queue_full_drop", ts=rec.timestamp)
