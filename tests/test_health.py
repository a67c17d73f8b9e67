import asyncio
import unittest

from chesslink.streaming.health import StreamHealth, StreamState

from _fakes import wait_for


class StreamHealthTests(unittest.IsolatedAsyncioTestCase):
    def _health(self, *, retry_delay: float = 10.0, wanted: bool = True) -> StreamHealth:
        self.clock = [0.0]
        self.aborts = 0
        self.reconnects = 0

        def abort() -> None:
            self.aborts += 1

        def reconnect() -> None:
            self.reconnects += 1

        health = StreamHealth(
            stale_timeout=12.0,
            poll_interval=0.01,
            retry_delay=retry_delay,
            abort=abort,
            reconnect=reconnect,
            should_retry=lambda: wanted,
            now=lambda: self.clock[0],
        )
        self.addCleanup(health.close)
        return health

    async def test_touch_marks_streaming(self) -> None:
        health = self._health()
        self.assertEqual(health.state, StreamState.CONNECTING)
        self.clock[0] = 5.0
        health.touch()
        self.assertEqual(health.state, StreamState.STREAMING)
        self.assertEqual(health.last_message_at, 5.0)

    async def test_stale_stream_aborts_and_schedules_one_retry(self) -> None:
        health = self._health()
        health.start_monitor()
        await asyncio.sleep(0.03)
        self.assertEqual(self.aborts, 0)

        self.clock[0] = 12.5
        await wait_for(lambda: self.aborts == 1)

        self.assertEqual(health.state, StreamState.RETRY_SCHEDULED)
        self.assertTrue(health.retry_pending)
        self.assertFalse(health.schedule_retry())
        health.transport_failed("late error")
        self.assertEqual(self.aborts, 1)

    async def test_retry_fires_reconnect_once(self) -> None:
        health = self._health(retry_delay=0.01)
        health.transport_failed("connection reset")
        health.transport_failed("connection reset again")

        await wait_for(lambda: self.reconnects == 1)
        await asyncio.sleep(0.03)
        self.assertEqual(self.reconnects, 1)
        self.assertFalse(health.retry_pending)

    async def test_no_retry_when_stream_not_wanted(self) -> None:
        health = self._health(wanted=False)
        self.assertFalse(health.schedule_retry())
        self.assertFalse(health.retry_pending)

    async def test_close_cancels_timers(self) -> None:
        health = self._health(retry_delay=0.01)
        health.start_monitor()
        self.assertTrue(health.schedule_retry())

        health.close()
        await asyncio.sleep(0.05)

        self.assertEqual(self.reconnects, 0)
        self.assertEqual(health.state, StreamState.CLOSED)
        self.assertFalse(health.schedule_retry())
        health.transport_failed("after close")
        self.assertFalse(health.retry_pending)


if __name__ == "__main__":
    unittest.main()
