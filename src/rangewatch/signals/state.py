from __future__ import annotations
from dataclasses import dataclass
from enum import Enum

from rangewatch.utils.types import Range, SignalStatus

class Phase(str, Enum):
    MONITORING = "monitoring"
    PENDING_UP = "pending_up"
    PENDING_DOWN = "pending_down"

@dataclass(slots=True, frozen=True)
class MachineState:
    phase: Phase
    range: Range
    last_bucket_start: int

def phase_for_status(status: SignalStatus) -> Phase:
    """Phase the machine is in right after emitting a record with `status`."""
    if status is SignalStatus.PENDING_UP:
        return Phase.PENDING_UP
    if status is SignalStatus.PENDING_DOWN:
        return Phase.PENDING_DOWN
    if status in (SignalStatus.MONITORING, SignalStatus.CONFIRMED_UP, SignalStatus.CONFIRMED_DOWN):
        return Phase.MONITORING
    raise ValueError(f"unknown status: {status!r}")
