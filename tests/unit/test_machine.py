import math
import random

import pytest

from rangewatch.signals.machine import BreakoutStateMachine, transition
from rangewatch.signals.rules import BreakoutRule
from rangewatch.signals.state import Phase
from rangewatch.utils.types import Composition, ResetKind, SignalStatus
from tests.helpers.builders import candle, tick


def seeded(price: float = 3100.0) -> BreakoutStateMachine:
    m = BreakoutStateMachine(BreakoutRule(range_pct=0.001))
    rec = m.step(candle(0, price))
    assert rec.status is SignalStatus.MONITORING
    return m


def test_first_candle_seeds_range_from_open():
    m = BreakoutStateMachine()
    rec = m.step(candle(0, close=3105.0, open_=3100.0))
    # seeded candle never breaks out, even when its close is outside the new range
    assert rec.status is SignalStatus.MONITORING
    assert rec.upper_range == pytest.approx(3103.1)
    assert rec.lower_range == pytest.approx(3096.9)
    assert rec.reset_kind is ResetKind.NONE
    assert m.state.phase is Phase.MONITORING


def test_inside_range_keeps_monitoring():
    m = seeded()
    rec = m.step(candle(1, 3101.0))
    assert rec.status is SignalStatus.MONITORING
    assert rec.upper_range == pytest.approx(3103.1)


def test_bounds_are_inclusive():
    m = seeded()
    upper = m.range.upper
    assert m.step(candle(1, upper)).status is SignalStatus.MONITORING


def test_single_candle_breach_is_noise():
    m = seeded()
    assert m.step(candle(1, 3105.0)).status is SignalStatus.PENDING_UP
    rec = m.step(candle(2, 3098.0))
    assert rec.status is SignalStatus.MONITORING
    assert rec.upper_range == pytest.approx(3103.1)
    assert rec.lower_range == pytest.approx(3096.9)


def test_two_candle_breach_confirms_and_resets_range():
    m = seeded()
    assert m.step(candle(1, 3105.0)).status is SignalStatus.PENDING_UP
    rec = m.step(candle(2, 3110.0))
    assert rec.status is SignalStatus.CONFIRMED_UP
    assert rec.reset_kind is ResetKind.RESET_UP
    assert rec.upper_range == pytest.approx(3113.11)
    assert rec.lower_range == pytest.approx(3106.89)
    assert m.state.phase is Phase.MONITORING
    assert m.range.upper == pytest.approx(3113.11)


def test_pending_down_confirms_down():
    m = seeded()
    assert m.step(candle(1, 3090.0)).status is SignalStatus.PENDING_DOWN
    rec = m.step(candle(2, 3080.0))
    assert rec.status is SignalStatus.CONFIRMED_DOWN
    assert rec.reset_kind is ResetKind.RESET_DOWN
    assert rec.upper_range == pytest.approx(3080.0 * 1.001)


def test_confirmation_direction_follows_second_close():
    m = seeded()
    assert m.step(candle(1, 3105.0)).status is SignalStatus.PENDING_UP
    rec = m.step(candle(2, 3090.0))
    assert rec.status is SignalStatus.CONFIRMED_DOWN
    assert rec.reset_kind is ResetKind.RESET_DOWN


def test_non_finite_close_skipped_state_intact():
    m = seeded()
    m.step(candle(1, 3105.0))
    before = m.state
    assert m.step(candle(2, math.nan)) is None
    assert m.state == before
    # the next real candle still confirms against the old range
    assert m.step(candle(3, 3110.0)).status is SignalStatus.CONFIRMED_UP


def test_already_evaluated_bucket_skipped():
    m = seeded()
    m.step(candle(3, 3101.0))
    before = m.state
    assert m.step(candle(3, 3200.0)) is None
    assert m.step(candle(2, 3200.0)) is None
    assert m.state == before


def test_transition_is_pure():
    rule = BreakoutRule()
    t0 = transition(None, candle(0, 3100.0), rule)
    t1 = transition(t0.state, candle(1, 3105.0), rule)
    again = transition(t0.state, candle(1, 3105.0), rule)
    assert t1 == again
    assert t0.state.phase is Phase.MONITORING


def test_evaluate_does_not_commit():
    m = seeded()
    before = m.state
    t = m.evaluate(candle(1, 3105.0))
    assert t.record.status is SignalStatus.PENDING_UP
    assert m.state == before
    m.commit(t)
    assert m.state.phase is Phase.PENDING_UP


def test_tick_composition_overrides_candle_liquidity():
    m = BreakoutStateMachine()
    rec = m.step(candle(0, 3100.0), tick(9_000, 3100.0, a=30.0))
    assert rec.composition_pct == Composition(asset_a=30.0, asset_b=70.0)


def test_resume_from_pending_record():
    m = seeded()
    pending = m.step(candle(1, 3105.0))

    fresh = BreakoutStateMachine()
    fresh.resume(pending)
    assert fresh.state.phase is Phase.PENDING_UP
    assert fresh.step(candle(1, 3110.0)) is None
    assert fresh.step(candle(2, 3110.0)).status is SignalStatus.CONFIRMED_UP


def test_range_changes_only_on_confirmed_records():
    rng = random.Random(11)
    m = BreakoutStateMachine()
    px = 3000.0
    prev = None
    for i in range(3_000):
        px *= 1.0 + rng.gauss(0.0, 0.0008)
        rec = m.step(candle(i, px))
        assert rec is not None
        if prev is not None and (rec.upper_range, rec.lower_range) != (prev.upper_range, prev.lower_range):
            assert rec.status.confirmed
        if rec.status.confirmed:
            assert prev.status in (SignalStatus.PENDING_UP, SignalStatus.PENDING_DOWN)
            assert rec.upper_range == pytest.approx(rec.close * 1.001)
        else:
            assert rec.reset_kind is ResetKind.NONE
        prev = rec
