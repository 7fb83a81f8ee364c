import pytest

from rangewatch.trading.config import ConsumerConfig
from rangewatch.trading.sizing import size_action
from rangewatch.trading.state import Balances
from rangewatch.utils.types import Action

CFG = ConsumerConfig()


def test_acquire_capped_by_trade_value():
    o = size_action(Action.ACQUIRE, Balances(safe=100.0, risk=0.0), 2000.0, CFG)
    assert o.asset_in == "USDC" and o.asset_out == "WETH"
    assert o.amount_in == pytest.approx(15.0)
    assert o.expected_out == pytest.approx(0.0075)
    assert o.min_amount_out == pytest.approx(0.0075 * 0.995)

def test_acquire_capped_by_fraction():
    o = size_action(Action.ACQUIRE, Balances(safe=20.0, risk=0.0), 2000.0, CFG)
    assert o.amount_in == pytest.approx(8.0)

def test_acquire_too_small():
    assert size_action(Action.ACQUIRE, Balances(safe=12.0, risk=0.0), 2000.0, CFG) is None

def test_below_min_balance():
    assert size_action(Action.ACQUIRE, Balances(safe=9.0, risk=0.0), 2000.0, CFG) is None
    assert size_action(Action.RELEASE, Balances(safe=0.0, risk=0.004), 2000.0, CFG) is None

def test_release_sells_all_risk():
    o = size_action(Action.RELEASE, Balances(safe=0.0, risk=0.01), 2000.0, CFG)
    assert o.asset_in == "WETH" and o.asset_out == "USDC"
    assert o.amount_in == pytest.approx(0.01)
    assert o.expected_out == pytest.approx(20.0)

def test_release_dust_skipped():
    assert size_action(Action.RELEASE, Balances(safe=50.0, risk=0.00005), 2000.0, CFG) is None

def test_bad_price():
    assert size_action(Action.ACQUIRE, Balances(safe=100.0, risk=0.0), 0.0, CFG) is None
