from __future__ import annotations

from typing import Iterable, Optional

from rangewatch.utils.types import Range, RangeSegment, ResetKind, SignalRecord


def reconstruct(records: Iterable[SignalRecord]) -> list[RangeSegment]:
    """
    Partition a signal-record stream into contiguous same-range segments.

    Records are taken in ascending timestamp order (the input is copied and
    sorted, never mutated). Consecutive records with an identical
    (upper_range, lower_range) pair form one segment; a segment ends where the
    next one starts, and the last segment is open (end_time=None).

    The Confirmed-* record that announces a new range is the first record of
    the segment it created, so that segment reports reset_occurred=True with
    the record's reset_kind. The seeded first segment never does.
    """
    ordered = sorted(records, key=lambda r: r.timestamp)
    out: list[RangeSegment] = []
    if not ordered:
        return out

    key = (ordered[0].upper_range, ordered[0].lower_range)
    start = ordered[0].timestamp
    count = 0
    reset_kind = ResetKind.NONE
    reset = False

    for r in ordered:
        k = (r.upper_range, r.lower_range)
        if k != key:
            out.append(RangeSegment(
                range=Range(upper=key[0], lower=key[1]),
                start_time=start,
                end_time=r.timestamp,
                reset_occurred=reset,
                reset_kind=reset_kind,
                record_count=count,
            ))
            key, start, count = k, r.timestamp, 0
            reset, reset_kind = False, ResetKind.NONE
        count += 1
        if r.status.confirmed and not reset:
            reset = True
            reset_kind = r.reset_kind

    out.append(RangeSegment(
        range=Range(upper=key[0], lower=key[1]),
        start_time=start,
        end_time=None,
        reset_occurred=reset,
        reset_kind=reset_kind,
        record_count=count,
    ))
    return out


def segment_at(records: Iterable[SignalRecord], ts: int) -> Optional[RangeSegment]:
    """Segment active at `ts` (half-open [start_time, end_time)), or None if before the first record."""
    for seg in reconstruct(records):
        if seg.contains(ts):
            return seg
    return None


def records_in(records: Iterable[SignalRecord], segment: RangeSegment) -> list[SignalRecord]:
    """Re-filter a record stream by a segment's time boundaries, ascending."""
    return [
        r for r in sorted(records, key=lambda r: r.timestamp)
        if segment.contains(r.timestamp)
    ]
