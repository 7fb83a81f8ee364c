# src/rangewatch/signals/notifiers.py
from __future__ import annotations
import structlog
from typing import Callable, Optional

from rangewatch.utils.types import SignalRecord

log = structlog.get_logger("notifier")

class ConsoleNotifier:
    def __init__(self, format_fn: Optional[Callable[[SignalRecord], str]] = None):
        self._format_fn = format_fn

    async def send(self, rec: SignalRecord):
        if self._format_fn:
            try:
                text = self._format_fn(rec)
                print(text, flush=True)
                return
            except Exception as e:
                log.warning("console_format_failed", err=str(e))
        # fallback (raw)
        print(f"[SIGNAL] {rec.timestamp} {rec.status.value} close={rec.close} "
              f"range=({rec.lower_range}, {rec.upper_range}) reset={rec.reset_kind.value}", flush=True)
