import json
import unittest

from chesslink.client.base import ClientError, RateLimitedError
from chesslink.config import ClientConfig, PuzzleConfig, StreamConfig
from chesslink.controller import GameController, NoActiveGameError
from chesslink.events import (
    ConnectionStatusEvent,
    DrawStatusEvent,
    PlayersEvent,
    PuzzleStatusEvent,
)
from chesslink.puzzles.fetcher import PuzzleFetcher

from _fakes import FakeClient, InstantAnimator, collect, of_type, puzzle_payload, wait_for


async def _no_sleep(_seconds: float) -> None:
    return None


def _full(moves: str = "") -> str:
    return json.dumps(
        {
            "type": "gameFull",
            "id": "g1",
            "initialFen": "startpos",
            "white": {"id": "me", "name": "Me"},
            "black": {"id": "bot", "name": "Bot"},
            "state": {"type": "gameState", "moves": moves, "wtime": 60000, "btime": 60000, "status": "started"},
        }
    )


def _state(moves: str) -> str:
    return json.dumps({"type": "gameState", "moves": moves, "wtime": 60000, "btime": 60000, "status": "started"})


class GameControllerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.client = FakeClient(token=True)
        config = ClientConfig(stream=StreamConfig(retry_delay=5, summary_initial_delay=0))
        self.controller = GameController(config, self.client, animator=InstantAnimator())
        self.controller.fetcher = PuzzleFetcher(self.client, PuzzleConfig(), now=lambda: 0.0, sleep=_no_sleep)
        self.controller.live.account = {"id": "me"}
        self.events = collect(self.controller.channel)

    async def asyncTearDown(self) -> None:
        await self.controller.close()

    async def _join_game(self) -> None:
        self.client.push("g1", _full())
        self.controller.stream_game("g1")
        await wait_for(lambda: self.controller.live.live_color == "white")

    # -- live games ---------------------------------------------------- #

    async def test_local_move_is_sent_and_echo_ignored(self) -> None:
        await self._join_game()

        self.assertTrue(self.controller.attempt_move("e2", "e4"))
        await self.controller.wait_background()
        self.assertEqual(self.client.sent_moves, [("g1", "e2e4")])

        self.client.push("g1", _state("e2e4"))
        self.client.push("g1", _state("e2e4 e7e5"))
        await wait_for(lambda: self.controller.engine.ply == 2)
        self.assertEqual(self.controller.engine.export_move_history(), ["e4", "e5"])

    async def test_opponent_pieces_cannot_be_moved(self) -> None:
        await self._join_game()
        self.assertFalse(self.controller.attempt_move("e7", "e5"))
        self.assertEqual(self.controller.engine.ply, 0)

    async def test_send_failure_reports_move_failed(self) -> None:
        self.client.send_error = ClientError("bad request", status=400)
        await self._join_game()

        self.controller.attempt_move("e2", "e4")
        with self.assertLogs("chesslink.controller", level="WARNING"):
            await self.controller.wait_background()

        self.assertEqual(of_type(self.events, ConnectionStatusEvent)[-1].status, "Move failed")

    async def test_game_actions_need_a_live_game(self) -> None:
        with self.assertRaises(NoActiveGameError):
            await self.controller.resign()
        with self.assertRaises(NoActiveGameError):
            await self.controller.offer_draw()

    async def test_draw_offer_and_decline(self) -> None:
        await self._join_game()

        await self.controller.offer_draw()
        await self.controller.decline_draw()

        self.assertEqual(self.client.draw_calls, [("g1", True), ("g1", False)])
        statuses = [e.status for e in of_type(self.events, DrawStatusEvent)]
        self.assertEqual(statuses[-4:], ["Offering...", "Draw offered", "Declining...", ""])

    async def test_resign_and_challenges(self) -> None:
        await self._join_game()
        await self.controller.resign()
        await self.controller.accept_challenge("c1")
        await self.controller.decline_challenge("c2")
        self.assertEqual(self.client.resigned, ["g1"])
        self.assertEqual((self.client.accepted, self.client.declined), (["c1"], ["c2"]))

    async def test_challenge_ai_starts_stream(self) -> None:
        self.client.challenge_response = {"id": "ai1", "status": "started"}

        self.assertEqual(await self.controller.challenge_ai(2), "ai1")
        await wait_for(lambda: self.client.stream_calls == ["ai1"])
        self.assertEqual(self.controller.live.live_game_id, "ai1")

    async def test_challenge_ai_without_game_id(self) -> None:
        self.assertIsNone(await self.controller.challenge_ai())
        self.assertEqual(of_type(self.events, ConnectionStatusEvent)[-1].status, "Failed")

    async def test_auth_streams_resume_game_in_progress(self) -> None:
        self.client.accounts = [{"id": "me"}]
        self.client.now_playing = [{"gameId": "g7", "color": "black"}]

        await self.controller.start_auth_streams()

        await wait_for(lambda: self.client.stream_calls == ["g7"])
        self.assertTrue(self.controller.dispatcher.running)
        self.assertEqual(self.controller.live.account_id, "me")

    async def test_auth_streams_skipped_without_token(self) -> None:
        client = FakeClient(token=False)
        controller = GameController(ClientConfig(), client, animator=InstantAnimator())
        self.addAsyncCleanup(controller.close)

        await controller.start_auth_streams()

        self.assertFalse(controller.dispatcher.running)
        self.assertEqual(client.event_stream_calls, 0)

    async def test_logout_stops_streams_and_clears_state(self) -> None:
        await self._join_game()

        self.controller.logout()

        self.assertFalse(self.controller.is_logged_in())
        self.assertIsNone(self.controller.live.live_game_id)
        self.assertIsNone(self.controller.stream.task)
        self.assertEqual(of_type(self.events, PlayersEvent)[-1].white, "--")

    # -- puzzles ------------------------------------------------------- #

    async def test_puzzle_from_pgn_is_played_to_solved(self) -> None:
        self.client.puzzles = [
            {
                "puzzle": {"id": "p1", "initialPly": 3, "solution": ["f1b5"], "rating": 1200},
                "game": {"pgn": "1. e4 e5 2. Nf3 Nc6"},
            }
        ]
        self.client.accounts = [{"id": "solver"}]

        self.assertTrue(await self.controller.start_puzzle())

        self.assertEqual(self.controller.engine.ply, 4)
        self.assertTrue(self.controller.puzzle.active)
        self.assertTrue(self.controller.attempt_move("f1", "b5"))
        self.assertEqual(self.controller.puzzle.state, "solved")
        await self.controller.puzzle.wait_submissions()
        self.assertEqual(self.client.submitted, [[{"id": "p1", "win": True, "rated": True}]])
        self.assertEqual(self.controller.live.account_id, "solver")
        self.assertEqual(self.client.sent_moves, [])

    async def test_puzzle_from_fen(self) -> None:
        fen = "6k1/5ppp/8/8/8/8/5PPP/R5K1 w - - 0 1"
        self.client.puzzles = [puzzle_payload("p2", fen=fen, solution=["a1a8"])]

        self.assertTrue(await self.controller.start_puzzle())
        self.assertEqual(self.controller.engine.fen, fen)
        self.assertEqual(self.controller.puzzle.expected_move(), "a1a8")

    async def test_puzzle_rate_limited(self) -> None:
        self.client.puzzles = [RateLimitedError(retry_after=0)] * 3

        self.assertFalse(await self.controller.start_puzzle())

        self.assertEqual(of_type(self.events, PuzzleStatusEvent)[-1].status, "Rate limited. Try again soon.")
        self.assertFalse(self.controller.puzzle.active)

    async def test_puzzle_without_position_fails(self) -> None:
        self.client.puzzles = [puzzle_payload("p3", solution=["e2e4"])]

        with self.assertLogs("chesslink.controller", level="WARNING"):
            self.assertFalse(await self.controller.start_puzzle())

        self.assertEqual(of_type(self.events, PuzzleStatusEvent)[-1].status, "Failed")

    async def test_starting_a_puzzle_leaves_the_live_game(self) -> None:
        await self._join_game()
        self.client.puzzles = [puzzle_payload("p4", fen="6k1/8/8/8/8/8/8/R5K1 w - - 0 1", solution=["a1a8"])]

        await self.controller.start_puzzle()

        self.assertIsNone(self.controller.live.live_game_id)
        self.assertIsNone(self.controller.stream.task)


if __name__ == "__main__":
    unittest.main()
