import json
import unittest

from chesslink.events import ChallengeEvent, EventChannel
from chesslink.streaming.dispatcher import EventDispatcher, time_control_label

from _fakes import FakeClient, collect, of_type, wait_for


def _challenge(**overrides) -> str:
    challenge = {
        "id": "ch1",
        "challenger": {"id": "rival", "name": "Rival"},
        "rated": True,
        "timeControl": {"type": "clock", "limit": 300, "increment": 3},
        "variant": {"key": "standard", "name": "Standard"},
    }
    challenge.update(overrides)
    return json.dumps({"type": "challenge", "challenge": challenge})


class EventDispatcherTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.client = FakeClient()
        self.channel = EventChannel()
        self.events = collect(self.channel)
        self.started: list[str] = []
        self.dispatcher = EventDispatcher(self.client, self.channel, on_game_start=self.started.append)

    async def asyncTearDown(self) -> None:
        self.dispatcher.stop()

    async def test_challenge_becomes_event(self) -> None:
        self.dispatcher.handle_line(_challenge())
        self.assertEqual(
            of_type(self.events, ChallengeEvent),
            [ChallengeEvent("ch1", "Rival", True, "5 + 3", "Standard")],
        )

    async def test_challenge_without_id_is_ignored(self) -> None:
        self.dispatcher.handle_line(_challenge(id=None))
        self.assertEqual(of_type(self.events, ChallengeEvent), [])

    async def test_game_start_routes_to_callback(self) -> None:
        self.dispatcher.handle_line('{"type": "gameStart", "game": {"id": "g42"}}')
        self.dispatcher.handle_line('{"type": "gameStart", "game": {}}')
        self.dispatcher.handle_line('{"type": "gameFinish", "game": {"id": "g42"}}')
        self.assertEqual(self.started, ["g42"])

    async def test_stream_is_read_and_restart_cancels_previous(self) -> None:
        self.client.push("__events__", '{"type": "gameStart", "game": {"id": "g1"}}')
        self.dispatcher.start()
        await wait_for(lambda: self.started == ["g1"])
        first = self.dispatcher.task

        self.dispatcher.start()
        await wait_for(lambda: self.client.event_stream_calls == 2)

        self.assertTrue(first.done())
        self.assertTrue(self.dispatcher.running)
        self.dispatcher.stop()
        self.assertFalse(self.dispatcher.running)


class TimeControlLabelTests(unittest.TestCase):
    def test_labels(self) -> None:
        self.assertEqual(time_control_label({"type": "clock", "limit": 180, "increment": 2}), "3 + 2")
        self.assertEqual(time_control_label({"type": "correspondence", "daysPerTurn": 2}), "correspondence")
        self.assertEqual(time_control_label({"type": "unlimited"}), "unlimited")
        self.assertEqual(time_control_label(None), "Custom")


if __name__ == "__main__":
    unittest.main()
