"""
Live clock ticking between server updates.

The server only sends clock values with each game state; in between, the
side to move loses local wall-clock time on a short fixed interval.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from chesslink.events import ClockEvent, Color, EventChannel

logger = logging.getLogger(__name__)


@dataclass
class LiveClock:
    white_ms: float | None = None
    black_ms: float | None = None
    turn: Color = "white"
    last_update: float = 0.0   # monotonic seconds

    def tick(self, now: float) -> bool:
        """Charge elapsed time to the side to move. Returns True if anything changed."""
        if self.white_ms is None or self.black_ms is None:
            return False
        elapsed_ms = (now - self.last_update) * 1000
        if elapsed_ms <= 0:
            return False
        self.last_update = now
        if self.turn == "white":
            self.white_ms = max(0.0, self.white_ms - elapsed_ms)
        else:
            self.black_ms = max(0.0, self.black_ms - elapsed_ms)
        return True

    def correct(self, white_ms: float | None, black_ms: float | None, turn: Color, now: float) -> None:
        """Adopt authoritative values from the server; keep old ones when a side is missing."""
        if white_ms is not None:
            self.white_ms = white_ms
        if black_ms is not None:
            self.black_ms = black_ms
        self.turn = turn
        self.last_update = now


def format_clock(ms: float | None) -> str:
    if ms is None:
        return "--:--"
    total_seconds = max(0, int(ms // 1000))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"


def clock_event(clock: LiveClock) -> ClockEvent:
    return ClockEvent(white=format_clock(clock.white_ms), black=format_clock(clock.black_ms))


class ClockTicker:
    """Background task that ticks one LiveClock and publishes ClockEvents."""

    def __init__(
        self,
        channel: EventChannel,
        interval: float = 0.25,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel = channel
        self._interval = interval
        self._now = now
        self._clock: LiveClock | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, clock: LiveClock) -> None:
        self.stop()
        self._clock = clock
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def tick_once(self) -> None:
        if self._clock is not None and self._clock.tick(self._now()):
            self._channel.emit(clock_event(self._clock))

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.tick_once()
