import pytest

from rangewatch.trading.config import ConsumerConfig
from rangewatch.trading.consumer import Outcome, SignalConsumer
from rangewatch.trading.settlement import DryRunSettlement
from rangewatch.trading.state import TradingState
from rangewatch.utils.types import Action, Composition, SignalRecord, SignalStatus
from storage.redis_signals import SignalStore, StaleTradingState
from tests.helpers.fake_redis import FakeRedis
from tests.helpers.fake_settlement import FakeSettlement

PRICE = 2000.0


def rec(ts: int, status: SignalStatus, close: float = PRICE) -> SignalRecord:
    return SignalRecord(
        timestamp=ts,
        status=status,
        upper_range=close * 1.001,
        lower_range=close * 0.999,
        open=close,
        high=close,
        low=close,
        close=close,
        composition_pct=Composition(asset_a=50.0, asset_b=50.0),
    )


def make(settlement=None, store=None, **cfg_kw) -> SignalConsumer:
    cfg = ConsumerConfig(session="t", **cfg_kw)
    store = store or SignalStore(FakeRedis(), pool="test")
    return SignalConsumer(cfg, store, settlement or FakeSettlement())


UP = SignalStatus.CONFIRMED_UP
DOWN = SignalStatus.CONFIRMED_DOWN


@pytest.mark.asyncio
async def test_confirmed_up_acquires_once():
    s = FakeSettlement()
    c = make(s)
    r = rec(10_000, UP)
    assert await c.on_signal(r) is Action.ACQUIRE
    assert await c.on_signal(r) is None

    assert len(s.orders) == 1
    assert c.state.actions_taken == 1
    assert c.state.held_asset == "WETH"
    assert c.state.last_consumed_signal_id == 10_000


@pytest.mark.asyncio
async def test_consumed_record_not_replayed_even_when_flat():
    s = FakeSettlement()
    c = make(s)
    r = rec(10_000, UP)
    assert await c.on_signal(r) is Action.ACQUIRE

    # position back in the safe asset: only the consumed id stands in the way
    c.state.held_asset = "USDC"
    assert c.decide(r) is None
    assert await c.handle(r) is Outcome.NOOP
    assert len(s.orders) == 1
    assert c.state.actions_taken == 1

    assert await c.on_signal(rec(20_000, UP)) is Action.ACQUIRE
    assert len(s.orders) == 2


@pytest.mark.asyncio
async def test_non_confirmed_records_ignored():
    s = FakeSettlement()
    c = make(s)
    for i, st in enumerate([SignalStatus.MONITORING, SignalStatus.PENDING_UP, SignalStatus.PENDING_DOWN]):
        assert await c.handle(rec(i * 10_000, st)) is Outcome.NOOP
    assert s.orders == []


@pytest.mark.asyncio
async def test_already_positioned_is_noop():
    s = FakeSettlement()
    c = make(s)
    assert await c.on_signal(rec(10_000, DOWN)) is None   # already in safe asset
    assert await c.on_signal(rec(20_000, UP)) is Action.ACQUIRE
    assert await c.on_signal(rec(30_000, UP)) is None     # already in risk asset
    assert await c.on_signal(rec(40_000, DOWN)) is Action.RELEASE
    assert c.state.held_asset == "USDC"
    assert c.state.actions_taken == 2


@pytest.mark.asyncio
async def test_rate_limit_caps_actions():
    s = FakeSettlement()
    c = make(s, max_actions=2)
    actions = []
    for i in range(6):
        status = UP if i % 2 == 0 else DOWN
        actions.append(await c.on_signal(rec((i + 1) * 10_000, status)))
    assert actions[:2] == [Action.ACQUIRE, Action.RELEASE]
    assert actions[2:] == [None] * 4
    assert c.state.actions_taken == 2


@pytest.mark.asyncio
async def test_failed_settlement_leaves_state_for_retry():
    s = FakeSettlement()
    s.fail = True
    c = make(s)
    r = rec(10_000, UP)
    assert await c.handle(r) is Outcome.DEFERRED
    assert c.state.held_asset == "USDC"
    assert c.state.actions_taken == 0
    assert c.state.last_consumed_signal_id is None

    s.fail = False
    assert await c.handle(r) is Outcome.EXECUTED
    assert c.state.actions_taken == 1


@pytest.mark.asyncio
async def test_balances_unavailable_defers():
    s = FakeSettlement()
    s.balances_error = ConnectionError("rpc down")
    c = make(s)
    assert await c.handle(rec(10_000, UP)) is Outcome.DEFERRED
    assert s.orders == []


@pytest.mark.asyncio
async def test_order_too_small_is_consumed_without_action():
    s = FakeSettlement(safe=11.0)      # 40% of 11 is under the 5.0 minimum
    c = make(s)
    assert await c.handle(rec(10_000, UP)) is Outcome.NOOP
    assert s.orders == []
    assert c.state.actions_taken == 0


@pytest.mark.asyncio
async def test_dry_run_settlement_records_orders():
    s = DryRunSettlement(safe=100.0, risk=0.0)
    c = make(s)
    assert await c.on_signal(rec(10_000, UP)) is Action.ACQUIRE
    assert s.orders[0].amount_in == pytest.approx(15.0)
    assert (await s.balances()).safe == pytest.approx(100.0)


@pytest.mark.asyncio
async def test_poll_stops_at_deferred_record_and_retries_it():
    store = SignalStore(FakeRedis(), pool="test")
    for r in [rec(0, SignalStatus.MONITORING), rec(10_000, UP), rec(20_000, SignalStatus.MONITORING)]:
        await store.save_signal(r)
    s = FakeSettlement()
    s.fail = True
    c = make(s, store=store)

    assert await c.poll_once() == 1
    assert c.state.cursor == 0

    s.fail = False
    assert await c.poll_once() == 2
    assert c.state.cursor == 20_000
    assert c.state.held_asset == "WETH"
    assert len(s.orders) == 2

    saved = await store.load_trading_state("t")
    assert saved.last_consumed_signal_id == 10_000
    assert saved.cursor == 20_000


@pytest.mark.asyncio
async def test_fresh_session_starts_at_stream_head():
    store = SignalStore(FakeRedis(), pool="test")
    for r in [rec(0, SignalStatus.MONITORING), rec(10_000, UP), rec(20_000, SignalStatus.MONITORING)]:
        await store.save_signal(r)
    s = FakeSettlement()
    c = make(s, store=store)

    await c.prepare()
    assert c.state.cursor == 20_000
    assert c.state.held_asset == "USDC"
    assert await c.poll_once() == 0
    assert s.orders == []
    assert (await store.load_trading_state("t")).cursor == 20_000


@pytest.mark.asyncio
async def test_fresh_session_holding_mostly_risk_asset():
    store = SignalStore(FakeRedis(), pool="test")
    await store.save_signal(rec(0, SignalStatus.MONITORING))
    c = make(FakeSettlement(safe=10.0, risk=1.0), store=store)
    await c.prepare()
    assert c.state.held_asset == "WETH"


@pytest.mark.asyncio
async def test_prepare_loads_saved_session():
    store = SignalStore(FakeRedis(), pool="test")
    saved = TradingState(held_asset="WETH", last_consumed_signal_id=10_000, actions_taken=1, session_start=5, cursor=10_000)
    await store.save_trading_state("t", saved, expected_last_id=None)
    await store.save_signal(rec(20_000, DOWN))

    s = FakeSettlement(safe=0.0, risk=0.01)
    c = make(s, store=store)
    await c.prepare()
    assert c.state == saved

    assert await c.poll_once() == 1
    assert c.state.held_asset == "USDC"
    assert c.state.actions_taken == 2


@pytest.mark.asyncio
async def test_concurrent_writer_detected():
    store = SignalStore(FakeRedis(), pool="test")
    await store.save_signal(rec(10_000, UP))
    c = make(FakeSettlement(), store=store)
    assert await c.poll_once() == 1

    other = TradingState(held_asset="USDC", last_consumed_signal_id=30_000, actions_taken=2, cursor=30_000)
    await store.save_trading_state("t", other, expected_last_id=10_000)

    await store.save_signal(rec(40_000, DOWN))
    with pytest.raises(StaleTradingState):
        await c.poll_once()
