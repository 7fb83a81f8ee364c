from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol

import aiohttp
import structlog

from rangewatch.trading.sizing import Order
from rangewatch.trading.state import Balances

log = structlog.get_logger("settlement")


@dataclass(slots=True, frozen=True)
class SettlementResult:
    success: bool
    tx_id: Optional[str] = None
    error: Optional[str] = None


class Settlement(Protocol):
    async def balances(self) -> Balances: ...
    async def settle(self, order: Order) -> SettlementResult: ...


class DryRunSettlement:
    """Reports fixed balances and settles every order with a synthetic success."""
    def __init__(self, safe: float, risk: float):
        self._balances = Balances(safe=safe, risk=risk)
        self.orders: list[Order] = []

    async def balances(self) -> Balances:
        return Balances(safe=self._balances.safe, risk=self._balances.risk, gas=self._balances.gas)

    async def settle(self, order: Order) -> SettlementResult:
        self.orders.append(order)
        log.info(
            "dry_run_settle",
            action=order.action.value,
            asset_in=order.asset_in,
            amount_in=round(order.amount_in, 6),
            min_out=round(order.min_amount_out, 6),
        )
        return SettlementResult(success=True, tx_id="DRY_RUN")


class HttpSettlement:
    """
    Client for an external executor service that owns keys and contract calls.

      GET  {base}/balances  -> {"safe": float, "risk": float, "gas": float}
      POST {base}/swap      -> {"success": bool, "tx_id": str?, "error": str?}
    """
    def __init__(self, base_url: str, timeout_s: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def balances(self) -> Balances:
        assert self._session is not None
        async with self._session.get(f"{self.base_url}/balances") as resp:
            resp.raise_for_status()
            data = await resp.json()
        return Balances(
            safe=float(data.get("safe", 0.0)),
            risk=float(data.get("risk", 0.0)),
            gas=float(data.get("gas", 0.0)),
        )

    async def settle(self, order: Order) -> SettlementResult:
        assert self._session is not None
        payload = {
            "action": order.action.value,
            "asset_in": order.asset_in,
            "asset_out": order.asset_out,
            "amount_in": order.amount_in,
            "min_amount_out": order.min_amount_out,
        }
        try:
            async with self._session.post(f"{self.base_url}/swap", json=payload) as resp:
                if resp.status != 200:
                    return SettlementResult(success=False, error=f"http {resp.status}")
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return SettlementResult(success=False, error=str(e) or type(e).__name__)
        return SettlementResult(
            success=bool(data.get("success")),
            tx_id=data.get("tx_id"),
            error=data.get("error"),
        )
