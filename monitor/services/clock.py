"""
monitor/services/clock.py

Clock ticks for periodic re-evaluation.
- minute tick aligned to the wall-clock minute boundary (plus a small skew)
- stale-check tick 10 seconds after updates

Ticks never run handlers directly; they post a Tick event into the mailbox.
At most one tick of each kind is pending; rescheduling supersedes it.
"""

import asyncio
import time
from datetime import datetime
from typing import Callable, Optional

import structlog

from monitor.constants import SECOND_MS, STALE_RECHECK_MS, TICK_SKEW_MS
from monitor.events import Event, Tick, TickKind

logger = structlog.get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def seconds_until_next_minute(now: datetime) -> float:
    return (60 - now.second) + TICK_SKEW_MS / SECOND_MS


class Ticker:
    """Schedules Tick events on the running event loop."""

    def __init__(self, post: Callable[[Event], None]) -> None:
        self._post = post
        self._handles: dict[TickKind, asyncio.TimerHandle] = {}

    def pending(self, kind: TickKind) -> bool:
        return kind in self._handles

    def schedule(self, kind: TickKind, delay_s: float) -> None:
        previous = self._handles.pop(kind, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._handles[kind] = loop.call_later(delay_s, self._fire, kind)
        logger.debug("tick_scheduled", kind=kind.value, delay_s=delay_s)

    def schedule_minute_tick(self, now: Optional[datetime] = None) -> None:
        self.schedule(TickKind.MINUTE, seconds_until_next_minute(now or datetime.now()))

    def schedule_stale_check(self) -> None:
        self.schedule(TickKind.STALE_CHECK, STALE_RECHECK_MS / SECOND_MS)

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def _fire(self, kind: TickKind) -> None:
        self._handles.pop(kind, None)
        self._post(Tick(kind))
