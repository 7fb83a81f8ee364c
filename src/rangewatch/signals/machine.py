from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import structlog

from rangewatch.signals.rules import BreakoutRule
from rangewatch.signals.state import MachineState, Phase, phase_for_status
from rangewatch.utils.types import (
    Candle,
    Composition,
    Range,
    ResetKind,
    SignalRecord,
    SignalStatus,
    Tick,
)

log = structlog.get_logger("breakout")


@dataclass(slots=True, frozen=True)
class Transition:
    state: MachineState
    record: SignalRecord


def _record(
    candle: Candle,
    status: SignalStatus,
    rng: Range,
    composition: Composition,
    reset_kind: ResetKind = ResetKind.NONE,
) -> SignalRecord:
    return SignalRecord(
        timestamp=candle.bucket_start,
        status=status,
        upper_range=rng.upper,
        lower_range=rng.lower,
        open=candle.open,
        high=candle.high,
        low=candle.low,
        close=candle.close,
        composition_pct=composition,
        reset_kind=reset_kind,
    )


def transition(
    state: Optional[MachineState],
    candle: Candle,
    rule: BreakoutRule,
    composition: Optional[Composition] = None,
) -> Optional[Transition]:
    """
    Evaluate one closed candle against the current state.

    Returns the next state and the single record to emit for this candle, or
    None when the candle must be skipped (non-finite close, or a bucket that
    was already evaluated). Never mutates `state`.

    Confirmation re-derives the direction from the close versus the *old*
    range: a pending-up breakout that closes below the old lower bound on the
    next candle is confirmed as Confirmed-Down.
    """
    p = candle.close
    if not math.isfinite(p):
        return None
    comp = composition if composition is not None else candle.liquidity

    if state is None:
        if not math.isfinite(candle.open):
            return None
        seed = Range.around(candle.open, rule.range_pct)
        nxt = MachineState(Phase.MONITORING, seed, candle.bucket_start)
        return Transition(nxt, _record(candle, SignalStatus.MONITORING, seed, comp))

    if candle.bucket_start <= state.last_bucket_start:
        return None

    rng = state.range
    bs = candle.bucket_start

    if state.phase is Phase.MONITORING:
        if rng.contains(p):
            return Transition(
                MachineState(Phase.MONITORING, rng, bs),
                _record(candle, SignalStatus.MONITORING, rng, comp),
            )
        if p > rng.upper:
            return Transition(
                MachineState(Phase.PENDING_UP, rng, bs),
                _record(candle, SignalStatus.PENDING_UP, rng, comp),
            )
        return Transition(
            MachineState(Phase.PENDING_DOWN, rng, bs),
            _record(candle, SignalStatus.PENDING_DOWN, rng, comp),
        )

    if state.phase in (Phase.PENDING_UP, Phase.PENDING_DOWN):
        if rng.contains(p):
            # breach did not hold for a full interval: noise
            return Transition(
                MachineState(Phase.MONITORING, rng, bs),
                _record(candle, SignalStatus.MONITORING, rng, comp),
            )
        new_rng = Range.around(p, rule.range_pct)
        if p > rng.upper:
            status, kind = SignalStatus.CONFIRMED_UP, ResetKind.RESET_UP
        else:
            status, kind = SignalStatus.CONFIRMED_DOWN, ResetKind.RESET_DOWN
        return Transition(
            MachineState(Phase.MONITORING, new_rng, bs),
            _record(candle, status, new_rng, comp, kind),
        )

    raise ValueError(f"unknown phase: {state.phase!r}")


class BreakoutStateMachine:
    """
    Owns the single MachineState of one pool.

    evaluate() previews the transition for a closed candle without side
    effects; commit() installs it. Callers that persist records commit only
    after the write succeeded, so a failed cycle leaves state and range intact.
    """
    def __init__(self, rule: Optional[BreakoutRule] = None):
        self.rule = rule or BreakoutRule()
        self._state: Optional[MachineState] = None

    @property
    def state(self) -> Optional[MachineState]:
        return self._state

    @property
    def range(self) -> Optional[Range]:
        return self._state.range if self._state else None

    def evaluate(self, candle: Candle, tick: Optional[Tick] = None) -> Optional[Transition]:
        comp = tick.composition if tick is not None else None
        t = transition(self._state, candle, self.rule, comp)
        if t is None:
            if not math.isfinite(candle.close):
                log.warning("candle_skipped", reason="non_finite_close", bucket_start=candle.bucket_start)
            elif self._state is None:
                log.warning("candle_skipped", reason="non_finite_open", bucket_start=candle.bucket_start)
            else:
                log.warning(
                    "candle_skipped",
                    reason="already_evaluated",
                    bucket_start=candle.bucket_start,
                    last_bucket_start=self._state.last_bucket_start if self._state else None,
                )
        return t

    def commit(self, t: Transition) -> SignalRecord:
        prev = self._state
        self._state = t.state
        rec = t.record
        if rec.status.confirmed:
            log.info(
                "range_reset",
                status=rec.status.value,
                close=rec.close,
                old_upper=prev.range.upper if prev else None,
                old_lower=prev.range.lower if prev else None,
                upper=rec.upper_range,
                lower=rec.lower_range,
            )
        elif prev is None:
            log.info("range_seeded", upper=rec.upper_range, lower=rec.lower_range)
        return rec

    def step(self, candle: Candle, tick: Optional[Tick] = None) -> Optional[SignalRecord]:
        t = self.evaluate(candle, tick)
        if t is None:
            return None
        return self.commit(t)

    def resume(self, last: SignalRecord) -> None:
        """Restore state from the most recently persisted record (after a restart)."""
        self._state = MachineState(
            phase=phase_for_status(last.status),
            range=last.range,
            last_bucket_start=last.timestamp,
        )
        log.info(
            "machine_resumed",
            phase=self._state.phase.value,
            upper=last.upper_range,
            lower=last.lower_range,
            last_bucket_start=last.timestamp,
        )
