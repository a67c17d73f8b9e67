"""
Connection lifecycle of one game-stream attempt.

    CONNECTING -> STREAMING -> STALE -> ABORTED -> RETRY_SCHEDULED -> (new attempt)
                            -> TRANSPORT_ERROR -> RETRY_SCHEDULED -> (new attempt)
    any state  -> CLOSED (deliberate stop; cancels every timer)

A StreamHealth is created per connection attempt and owns that attempt's
health-poll task and retry timer. At most one retry timer is pending at a
time; asking again while one is pending is a no-op.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class StreamState(enum.Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    STALE = "stale"
    ABORTED = "aborted"
    TRANSPORT_ERROR = "transport_error"
    RETRY_SCHEDULED = "retry_scheduled"
    CLOSED = "closed"


class StreamHealth:
    def __init__(
        self,
        *,
        stale_timeout: float,
        poll_interval: float,
        retry_delay: float,
        abort: Callable[[], None],
        reconnect: Callable[[], None],
        should_retry: Callable[[], bool] = lambda: True,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stale_timeout = stale_timeout
        self._poll_interval = poll_interval
        self._retry_delay = retry_delay
        self._abort = abort
        self._reconnect = reconnect
        self._should_retry = should_retry
        self._now = now

        self.state = StreamState.CONNECTING
        self.last_message_at = now()
        self._health_task: asyncio.Task | None = None
        self._retry_handle: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------ #
    # Traffic                                                              #
    # ------------------------------------------------------------------ #

    def touch(self) -> None:
        """Record that bytes arrived."""
        self.last_message_at = self._now()
        if self.state == StreamState.CONNECTING:
            self.state = StreamState.STREAMING

    @property
    def is_stale(self) -> bool:
        return self._now() - self.last_message_at > self._stale_timeout

    # ------------------------------------------------------------------ #
    # Health poll                                                          #
    # ------------------------------------------------------------------ #

    def start_monitor(self) -> None:
        self.stop_monitor()
        self.last_message_at = self._now()
        self._health_task = asyncio.get_running_loop().create_task(self._monitor())

    def stop_monitor(self) -> None:
        task = self._health_task
        self._health_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _monitor(self) -> None:
        while self.state in (StreamState.CONNECTING, StreamState.STREAMING):
            await asyncio.sleep(self._poll_interval)
            if not self.is_stale:
                continue
            logger.info(
                "Stream silent for %.1fs (> %.1fs); aborting",
                self._now() - self.last_message_at,
                self._stale_timeout,
            )
            self.state = StreamState.STALE
            self._abort()
            self.state = StreamState.ABORTED
            self.schedule_retry()
            return

    # ------------------------------------------------------------------ #
    # Retry                                                                #
    # ------------------------------------------------------------------ #

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def transport_failed(self, reason: str) -> None:
        if self.state == StreamState.CLOSED:
            return
        logger.warning("Stream transport error: %s", reason)
        self.state = StreamState.TRANSPORT_ERROR
        self.schedule_retry()

    def schedule_retry(self) -> bool:
        """Arm the retry timer. Returns False if closed, not wanted, or already armed."""
        if self.state == StreamState.CLOSED or self._retry_handle is not None:
            return False
        if not self._should_retry():
            logger.debug("Retry not scheduled; stream no longer wanted")
            return False
        self.state = StreamState.RETRY_SCHEDULED
        self._retry_handle = asyncio.get_running_loop().call_later(
            self._retry_delay, self._fire_retry
        )
        logger.info("Stream retry in %.1fs", self._retry_delay)
        return True

    def _fire_retry(self) -> None:
        self._retry_handle = None
        if self.state == StreamState.CLOSED:
            return
        self._reconnect()

    # ------------------------------------------------------------------ #
    # Teardown                                                             #
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        self.state = StreamState.CLOSED
        self.stop_monitor()
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
