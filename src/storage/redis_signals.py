# src/storage/redis_signals.py
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import WatchError

from rangewatch.signals.segments import segment_at
from rangewatch.trading.state import TradingState
from rangewatch.utils.time import utc_now_ms, window_start_ms
from rangewatch.utils.types import (
    Candle,
    RangeSegment,
    SignalRecord,
    candle_from_dict,
    candle_to_dict,
)

WINDOW_LIMIT = 1000
WINDOW_LIMIT_ALL = 5000


class StaleTradingState(Exception):
    """Persisted trading state moved on since it was loaded (compare-and-swap lost)."""


@dataclass(slots=True, frozen=True)
class Pagination:
    page: int
    limit: int
    total_count: int
    total_pages: int
    has_more: bool


def key(pool: str, kind: str, suffix: str = "") -> str:
    # rw:{POOL}:{KIND}[:{SUFFIX}]
    return f"rw:{pool}:{kind}:{suffix}" if suffix else f"rw:{pool}:{kind}"


def _finite(x) -> bool:
    return isinstance(x, (int, float)) and math.isfinite(x)


class SignalStore:
    """
    Append-only store of candles and signal records on Redis.

    Layout per kind ("candles" / "signals"):
      rw:{pool}:{kind}        HASH   natural key (ms timestamp) -> JSON document
      rw:{pool}:{kind}:idx    ZSET   natural key scored by timestamp
    HSETNX on the hash enforces one document per timestamp.

    Trading state lives at rw:{pool}:trading:{session} as a JSON string.
    """
    def __init__(self, r: Redis, pool: str = "default"):
        self.r = r
        self.pool = pool

    # ---------- writes ----------

    async def save_candle(self, candle: Candle) -> bool:
        """Insert a finalized candle. False if its bucket_start is already stored."""
        if not all(_finite(v) for v in (candle.open, candle.high, candle.low, candle.close)):
            raise ValueError(f"non-finite candle at {candle.bucket_start}")
        return await self._insert("candles", candle.bucket_start, candle_to_dict(candle))

    async def save_signal(self, record: SignalRecord) -> bool:
        """Insert a signal record. False if a record with this timestamp exists."""
        return await self._insert("signals", record.timestamp, record.to_dict())

    async def _insert(self, kind: str, ts: int, doc: dict) -> bool:
        member = str(int(ts))
        created = await self.r.hsetnx(key(self.pool, kind), member, json.dumps(doc))
        # index write is idempotent, so a crash between the two calls heals on retry
        await self.r.zadd(key(self.pool, kind, "idx"), {member: int(ts)})
        return bool(created)

    # ---------- reads ----------

    async def _load(self, kind: str, members: list) -> list[dict]:
        if not members:
            return []
        raw = await self.r.hmget(key(self.pool, kind), members)
        return [json.loads(v) for v in raw if v is not None]

    async def _range(self, kind: str, lo, hi, limit: Optional[int] = None) -> list[dict]:
        idx = key(self.pool, kind, "idx")
        if limit is None:
            members = await self.r.zrangebyscore(idx, lo, hi)
        else:
            members = await self.r.zrangebyscore(idx, lo, hi, start=0, num=limit)
        return await self._load(kind, members)

    async def candles_window(self, window: str = "15m", now_ms: Optional[int] = None) -> list[Candle]:
        now_ms = utc_now_ms() if now_ms is None else now_ms
        limit = WINDOW_LIMIT_ALL if window == "all" else WINDOW_LIMIT
        docs = await self._range("candles", window_start_ms(window, now_ms), "+inf", limit)
        return [candle_from_dict(d) for d in docs]

    async def signals_window(self, window: str = "15m", now_ms: Optional[int] = None) -> list[SignalRecord]:
        now_ms = utc_now_ms() if now_ms is None else now_ms
        limit = WINDOW_LIMIT_ALL if window == "all" else WINDOW_LIMIT
        docs = await self._range("signals", window_start_ms(window, now_ms), "+inf", limit)
        return [SignalRecord.from_dict(d) for d in docs]

    async def signals_after(self, ts: Optional[int], limit: int = 500) -> list[SignalRecord]:
        """Records strictly after ts, ascending. ts=None reads from the beginning."""
        lo = "-inf" if ts is None else f"({int(ts)}"
        docs = await self._range("signals", lo, "+inf", limit)
        return [SignalRecord.from_dict(d) for d in docs]

    async def all_signals(self) -> list[SignalRecord]:
        docs = await self._range("signals", "-inf", "+inf")
        return [SignalRecord.from_dict(d) for d in docs]

    async def latest_signal(self) -> Optional[SignalRecord]:
        members = await self.r.zrevrange(key(self.pool, "signals", "idx"), 0, 0)
        docs = await self._load("signals", members)
        return SignalRecord.from_dict(docs[0]) if docs else None

    async def latest_candle(self) -> Optional[Candle]:
        members = await self.r.zrevrange(key(self.pool, "candles", "idx"), 0, 0)
        docs = await self._load("candles", members)
        return candle_from_dict(docs[0]) if docs else None

    async def signals_page(self, page: int = 1, limit: int = 100) -> tuple[list[SignalRecord], Pagination]:
        """
        Newest-first pagination. Each page is returned in ascending time order.
        """
        page = max(1, int(page))
        limit = max(1, int(limit))
        skip = (page - 1) * limit
        idx = key(self.pool, "signals", "idx")
        total = int(await self.r.zcard(idx))
        members = await self.r.zrevrange(idx, skip, skip + limit - 1)
        docs = await self._load("signals", members)
        records = [SignalRecord.from_dict(d) for d in reversed(docs)]
        pag = Pagination(
            page=page,
            limit=limit,
            total_count=total,
            total_pages=math.ceil(total / limit) if total else 0,
            has_more=skip + len(records) < total,
        )
        return records, pag

    async def range_segment_at(self, ts: int) -> Optional[RangeSegment]:
        """Range segment active at ts, reconstructed from the stored stream."""
        return segment_at(await self.all_signals(), int(ts))

    async def stats(self) -> dict:
        return {
            "candle_count": int(await self.r.zcard(key(self.pool, "candles", "idx"))),
            "signal_count": int(await self.r.zcard(key(self.pool, "signals", "idx"))),
            "latest_candle": await self.latest_candle(),
            "latest_signal": await self.latest_signal(),
        }

    # ---------- trading state ----------

    def _trading_key(self, session: str) -> str:
        return key(self.pool, "trading", session)

    async def load_trading_state(self, session: str) -> Optional[TradingState]:
        raw = await self.r.get(self._trading_key(session))
        if raw is None:
            return None
        return TradingState.from_dict(json.loads(raw))

    async def save_trading_state(
        self, session: str, state: TradingState, expected_last_id: Optional[int]
    ) -> None:
        """
        Compare-and-swap: write `state` only if the stored last_consumed_signal_id
        still equals expected_last_id (None = nothing stored yet, or stored None).
        Raises StaleTradingState when another writer got there first.
        """
        k = self._trading_key(session)
        async with self.r.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(k)
                raw = await pipe.get(k)
                current = None if raw is None else json.loads(raw).get("last_consumed_signal_id")
                if current != expected_last_id:
                    await pipe.unwatch()
                    raise StaleTradingState(
                        f"expected last_consumed_signal_id={expected_last_id}, found {current}"
                    )
                pipe.multi()
                pipe.set(k, json.dumps(state.to_dict()))
                await pipe.execute()
            except WatchError as e:
                raise StaleTradingState(f"concurrent update of {k}") from e
