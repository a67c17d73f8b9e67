import asyncio
import json
import unittest

from chesslink.client.base import ClientError
from chesslink.config import ClientConfig, StreamConfig
from chesslink.controller import GameController
from chesslink.events import (
    ChatMessageEvent,
    ClockEvent,
    ConnectionStatusEvent,
    DrawStatusEvent,
    GameResultEvent,
    GameSummaryEvent,
    PlayersEvent,
)
from chesslink.streaming.health import StreamState
from chesslink.streaming.reconciler import StreamReconciler

from _fakes import FakeClient, InstantAnimator, collect, of_type, wait_for


def game_full(moves: str = "", **extra) -> str:
    state = {"type": "gameState", "moves": moves, "wtime": 60000, "btime": 30000, "status": "started"}
    state.update(extra.pop("state", {}))
    data = {
        "type": "gameFull",
        "id": "g1",
        "initialFen": "startpos",
        "white": {"id": "me", "name": "Me", "rating": 1500},
        "black": {"id": "bot", "name": "Bot", "rating": 1600},
        "rated": True,
        "perf": {"key": "blitz"},
        "state": state,
    }
    data.update(extra)
    return json.dumps(data)


def game_state(moves: str, **extra) -> str:
    data = {"type": "gameState", "moves": moves, "wtime": 59000, "btime": 30000, "status": "started"}
    data.update(extra)
    return json.dumps(data)


class StreamReconcilerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.client = FakeClient(token=False)
        self.controller = GameController(ClientConfig(), self.client, animator=InstantAnimator())
        self.events = collect(self.controller.channel)
        self.controller.live.account = {"id": "me"}
        self.reconciler = StreamReconciler(
            "g1",
            self.controller.engine,
            self.controller.pipeline,
            self.controller.history,
            self.controller.live,
            self.controller.channel,
            now=lambda: 100.0,
        )

    async def asyncTearDown(self) -> None:
        await self.controller.close()

    async def test_full_state_loads_position_and_players(self) -> None:
        self.reconciler.handle_line(game_full("e2e4 e7e5"))

        engine = self.controller.engine
        self.assertEqual(engine.export_move_history(), ["e4", "e5"])
        self.assertEqual(self.reconciler.session.known_moves, ["e2e4", "e7e5"])
        self.assertEqual(self.reconciler.session.color, "white")
        self.assertEqual(self.controller.live.live_game_id, "g1")
        self.assertEqual(self.controller.live.live_color, "white")
        self.assertTrue(self.controller.ticker.running)

        players = of_type(self.events, PlayersEvent)[-1]
        self.assertEqual((players.white, players.black), ("Me 1500", "Bot 1600"))
        self.assertEqual(of_type(self.events, ClockEvent)[-1], ClockEvent("1:00", "0:30"))
        self.assertEqual(of_type(self.events, ConnectionStatusEvent)[-1].status, "Live")
        self.assertEqual(of_type(self.events, DrawStatusEvent)[-1].status, "")

    async def test_orientation_wins_over_account(self) -> None:
        self.reconciler.handle_line(game_full("", orientation="black"))
        self.assertEqual(self.reconciler.session.color, "black")

    async def test_prefix_delta_queues_exactly_the_new_moves(self) -> None:
        self.reconciler.handle_line(game_full("e2e4"))
        await self.controller.pipeline.wait_idle()

        self.reconciler.handle_line(game_state("e2e4 e7e5"))

        self.assertEqual(self.controller.pipeline.queue_length, 1)
        self.assertEqual(self.controller.engine.ply, 2)
        self.assertEqual(self.reconciler.session.known_moves, ["e2e4", "e7e5"])

    async def test_duplicate_delta_is_a_no_op(self) -> None:
        self.reconciler.handle_line(game_full("e2e4"))
        self.reconciler.handle_line(game_state("e2e4 e7e5"))
        fen = self.controller.engine.fen
        queued = self.controller.pipeline.queue_length

        self.reconciler.handle_line(game_state("e2e4 e7e5"))

        self.assertEqual(self.controller.engine.fen, fen)
        self.assertEqual(self.controller.pipeline.queue_length, queued)

    async def test_divergent_delta_resyncs_and_clears_queue(self) -> None:
        self.reconciler.handle_line(game_full("e2e4"))
        self.reconciler.handle_line(game_state("e2e4 e7e5"))
        self.assertEqual(self.controller.pipeline.queue_length, 1)

        self.reconciler.handle_line(game_state("d2d4"))

        self.assertEqual(self.controller.pipeline.queue_length, 0)
        self.assertEqual(self.controller.engine.export_move_history(), ["d4"])
        self.assertEqual(self.reconciler.session.known_moves, ["d2d4"])
        await self.controller.pipeline.wait_idle()
        self.assertEqual(self.controller.view.layout()["d4"], "P")

    async def test_local_move_echo_is_not_replayed(self) -> None:
        self.reconciler.handle_line(game_full(""))
        self.controller.pipeline.make_animated_move("e2e4")
        self.reconciler.note_local_move("e2e4")
        await self.controller.pipeline.wait_idle()

        self.reconciler.handle_line(game_state("e2e4"))

        self.assertEqual(self.controller.pipeline.queue_length, 0)
        self.assertEqual(self.controller.engine.ply, 1)

    async def test_terminal_status_resolves_once(self) -> None:
        self.client.summaries = [{"white_rating_diff": 7, "black_rating_diff": -7}]
        self.reconciler.handle_line(game_full("e2e4"))

        self.reconciler.handle_line(game_state("e2e4", status="resign", winner="white"))
        self.reconciler.handle_line(game_state("e2e4", status="resign", winner="white"))
        await self.controller.live.wait_background()

        results = of_type(self.events, GameResultEvent)
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].result_text, "White wins (resign)")
        self.assertIsNone(self.controller.live.live_game_id)
        self.assertFalse(self.controller.ticker.running)

        summaries = of_type(self.events, GameSummaryEvent)
        self.assertEqual(len(summaries), 2)
        self.assertIsNone(summaries[0].white_rating_diff)
        self.assertEqual((summaries[1].white_rating_diff, summaries[1].black_rating_diff), (7, -7))

    async def test_non_terminal_status_is_ignored(self) -> None:
        self.reconciler.handle_line(game_full("e2e4"))
        self.reconciler.handle_line(game_state("e2e4 e7e5", status="started"))
        self.assertEqual(of_type(self.events, GameResultEvent), [])
        self.assertEqual(self.controller.live.live_game_id, "g1")

    async def test_delta_updates_clock_and_draw_offer(self) -> None:
        self.reconciler.handle_line(game_full("e2e4"))
        self.reconciler.handle_line(game_state("e2e4 e7e5", wtime=5000, bdraw=True))

        self.assertEqual(of_type(self.events, ClockEvent)[-1], ClockEvent("0:05", "0:30"))
        self.assertEqual(of_type(self.events, DrawStatusEvent)[-1].status, "Draw offered")
        self.assertEqual(self.reconciler.session.clock.turn, "white")

    async def test_chat_and_garbage_lines(self) -> None:
        self.reconciler.handle_line('{"type": "chatLine", "username": "bot", "text": "gl", "room": "player"}')
        self.reconciler.handle_line("not json")
        self.reconciler.handle_line('{"type": "opponentGone", "gone": true}')

        self.assertEqual(of_type(self.events, ChatMessageEvent), [ChatMessageEvent("bot", "gl", "player")])


class StreamControllerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.client = FakeClient(token=True)
        config = ClientConfig(stream=StreamConfig(retry_delay=0.01, stale_timeout=5, health_poll_interval=1))
        self.controller = GameController(config, self.client, animator=InstantAnimator())
        self.events = collect(self.controller.channel)

    async def asyncTearDown(self) -> None:
        await self.controller.close()

    async def test_stream_feeds_reconciler(self) -> None:
        self.client.push("g1", game_full("e2e4 e7e5"))
        self.controller.stream_game("g1")

        await wait_for(lambda: self.controller.engine.ply == 2)
        self.assertEqual(self.controller.stream.game_id, "g1")

    async def test_end_of_stream_reconnects_while_live(self) -> None:
        self.client.push("g1", game_full("e2e4"))
        self.client.push("g1", None)
        self.controller.stream_game("g1")

        await wait_for(lambda: self.client.stream_calls == ["g1", "g1"])
        statuses = [e.status for e in of_type(self.events, ConnectionStatusEvent)]
        self.assertIn("Reconnecting...", statuses)

    async def test_transport_error_reconnects(self) -> None:
        self.client.push("g1", game_full(""))
        self.client.push("g1", ClientError("reset by peer"))
        self.controller.stream_game("g1")

        await wait_for(lambda: len(self.client.stream_calls) == 2)

    async def test_no_reconnect_after_game_over(self) -> None:
        self.client.push("g1", game_full("e2e4", state={"status": "mate", "winner": "white"}))
        self.client.push("g1", None)
        self.controller.stream_game("g1")

        await wait_for(lambda: self.controller.stream.task is not None and self.controller.stream.task.done())
        health = self.controller.stream.health
        self.assertFalse(health.retry_pending)
        self.assertEqual(self.client.stream_calls, ["g1"])

    async def test_replaying_a_finished_game_does_not_stay_live(self) -> None:
        finished = game_full("e2e4", state={"status": "mate", "winner": "white"})
        for _ in range(2):
            self.client.push("g1", finished)
            self.client.push("g1", None)
            self.controller.stream_game("g1")
            await wait_for(lambda: self.controller.stream.task is not None and self.controller.stream.task.done())

        await asyncio.sleep(0.05)
        self.assertEqual(self.client.stream_calls, ["g1", "g1"])
        self.assertIsNone(self.controller.live.live_game_id)
        self.assertFalse(self.controller.ticker.running)
        self.assertFalse(self.controller.stream.health.retry_pending)
        self.assertEqual(len(of_type(self.events, GameResultEvent)), 1)

    async def test_new_stream_cancels_previous(self) -> None:
        self.controller.stream_game("g1")
        await wait_for(lambda: self.client.stream_calls == ["g1"])
        first_task = self.controller.stream.task
        first_health = self.controller.stream.health

        self.controller.stream_game("g2")
        await wait_for(lambda: self.client.stream_calls == ["g1", "g2"])

        self.assertTrue(first_task.cancelled() or first_task.done())
        self.assertEqual(first_health.state, StreamState.CLOSED)
        self.assertFalse(first_health.retry_pending)
        self.assertEqual(self.controller.stream.game_id, "g2")


if __name__ == "__main__":
    unittest.main()
