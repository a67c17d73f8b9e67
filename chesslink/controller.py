"""
GameController — composition root of the client core.

Owns the single RulesEngine and wires every collaborator around it:

    user input   -> SelectionGate -> PuzzleFlow | AnimationPipeline -> (live) send_move
    game stream  -> StreamController -> StreamReconciler -> RulesEngine
    account feed -> EventDispatcher -> stream_game()
    engine change-> StateSync -> MoveHistoryTracker, AnimationPipeline, BoardChangedEvent

Everything outward-facing is published on one EventChannel.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from chesslink.animation import AnimationPipeline, Animator, BoardView, TimedAnimator
from chesslink.board import MoveSpec, RulesEngine
from chesslink.client.base import ClientError, LichessClient, RateLimitedError
from chesslink.clocks import ClockTicker
from chesslink.config import ClientConfig
from chesslink.events import (
    ClockEvent,
    ConnectionStatusEvent,
    DrawStatusEvent,
    EventChannel,
    InvalidMoveEvent,
    MoveHistoryEvent,
    PlayersEvent,
    PuzzleRatingEvent,
    PuzzleSolutionEvent,
    PuzzleStatusEvent,
)
from chesslink.history import MoveHistoryTracker
from chesslink.live import LiveGameManager
from chesslink.puzzles.fetcher import PuzzleFetcher
from chesslink.puzzles.flow import PuzzleFlow
from chesslink.selection import SelectionGate
from chesslink.streaming.dispatcher import EventDispatcher
from chesslink.streaming.reconciler import StreamController, StreamReconciler
from chesslink.sync import StateSync

logger = logging.getLogger(__name__)

_PLY_OFFSETS = (0, 1, -1, 2, -2)


class NoActiveGameError(Exception):
    """A live-game action was requested while no live game is running."""


def _game_id_from(data: dict[str, Any]) -> str | None:
    return (
        (data.get("game") or {}).get("id")
        or (data.get("challenge") or {}).get("id")
        or data.get("id")
    )


class GameController:
    def __init__(
        self,
        config: ClientConfig,
        client: LichessClient,
        channel: EventChannel | None = None,
        animator: Animator | None = None,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.client = client
        self.channel = channel or EventChannel()
        self.engine = RulesEngine()
        self.view = BoardView()
        self.pipeline = AnimationPipeline(
            self.engine,
            self.view,
            animator
            or TimedAnimator(
                duration_ms=config.animation.duration_ms,
                arc_height=config.animation.arc_height,
                frame_interval_ms=config.animation.frame_interval_ms,
            ),
            self.channel,
        )
        self.history = MoveHistoryTracker(self.engine, self.channel)
        self.sync = StateSync(self.engine, self.history, self.pipeline, self.channel)
        self.sync.attach()

        self._logged_out = False
        self.ticker = ClockTicker(self.channel, config.stream.clock_tick_interval, now)
        self.puzzle = PuzzleFlow(
            self.pipeline,
            client,
            self.channel,
            self.is_logged_in,
            on_submitted=lambda: self.live.refresh_account(),
        )
        self.live = LiveGameManager(client, self.channel, self.ticker, config.stream, self.puzzle)
        self.fetcher = PuzzleFetcher(client, config.puzzle)
        self.stream = StreamController(
            client,
            lambda game_id: StreamReconciler(
                game_id, self.engine, self.pipeline, self.history, self.live, self.channel, now
            ),
            self.live,
            self.channel,
            config.stream,
            record_dir=config.log_dir_path if config.logging.record_streams else None,
        )
        self.dispatcher = EventDispatcher(client, self.channel, on_game_start=self.stream_game)
        self.gate = SelectionGate(self.engine, self.channel, self.live, self.puzzle, self._execute_move)
        self._tasks: set[asyncio.Task] = set()

    def is_logged_in(self) -> bool:
        return self.client.has_token and not self._logged_out

    def publish_initial_state(self) -> None:
        self.channel.emit(PlayersEvent("--", "--", "white"))
        self.channel.emit(ClockEvent("--:--", "--:--"))
        self.channel.emit(DrawStatusEvent(""))
        self.channel.emit(MoveHistoryEvent([]))
        self.channel.emit(PuzzleRatingEvent("--"))
        self.channel.emit(PuzzleSolutionEvent([]))
        self.history.reset()
        self.pipeline.resync()

    # ------------------------------------------------------------------ #
    # Streams                                                              #
    # ------------------------------------------------------------------ #

    async def start_auth_streams(self) -> None:
        """Load the account, resume a game in progress, then follow the account feed."""
        if not self.is_logged_in():
            return
        await self.live.refresh_account()
        try:
            playing = await self.client.fetch_now_playing()
        except ClientError as exc:
            logger.warning("Now playing fetch failed: %s", exc)
            playing = []
        active = next((entry for entry in playing if entry.get("gameId")), None)
        if active is not None:
            self.stream_game(active["gameId"])
        self.dispatcher.start()

    def stream_game(self, game_id: str) -> None:
        self.live.set_live_game(game_id)
        self.stream.start(game_id)

    # ------------------------------------------------------------------ #
    # Puzzles                                                              #
    # ------------------------------------------------------------------ #

    async def start_puzzle(self) -> bool:
        self.stream.stop()
        self.live.set_live_game(None)
        self.channel.emit(PuzzleStatusEvent("Loading..."))
        self.channel.emit(PuzzleRatingEvent("--"))
        self.channel.emit(PuzzleSolutionEvent([]))
        self.channel.emit(DrawStatusEvent(""))
        self.pipeline.clear()
        self.view.reset_trays()
        self.history.reset()

        try:
            result = await self.fetcher.fetch()
        except RateLimitedError:
            self.puzzle.reset_on_failure("Rate limited. Try again soon.")
            return False
        except ClientError as exc:
            logger.warning("Puzzle fetch failed: %s", exc)
            self.puzzle.reset_on_failure("Failed")
            return False

        puzzle = result.data.get("puzzle") or {}
        game = result.data.get("game") or {}
        solution = [str(token) for token in puzzle.get("solution") or []]
        if not self._load_puzzle_position(puzzle, game, solution):
            logger.warning("Puzzle %s: no playable starting position", puzzle.get("id"))
            self.puzzle.reset_on_failure("Failed")
            return False

        puzzle_id = puzzle.get("id")
        self.puzzle.load(
            puzzle_id=puzzle_id,
            solution=solution,
            rating=puzzle.get("rating"),
            label=f"#{puzzle_id}" if puzzle_id else "#daily",
            requires_auth=result.requires_auth,
            repeated=result.repeated,
        )
        return True

    def _load_puzzle_position(self, puzzle: dict[str, Any], game: dict[str, Any], solution: list[str]) -> bool:
        initial_ply = puzzle.get("initialPly")
        pgn = game.get("pgn")
        if pgn and isinstance(initial_ply, int):
            for offset in _PLY_OFFSETS:
                if not self.engine.load_pgn_to_ply(pgn, initial_ply + offset):
                    continue
                if not solution or self.engine.is_move_legal(solution[0]):
                    return True
            return False
        fen = puzzle.get("fen") or game.get("fen")
        return bool(fen) and self.engine.load_position(fen)

    def exit_puzzle(self) -> None:
        self.puzzle.exit()

    # ------------------------------------------------------------------ #
    # Moves                                                                #
    # ------------------------------------------------------------------ #

    def select(self, square: str) -> list[str]:
        return self.gate.select(square)

    def click(self, square: str | None) -> bool:
        return self.gate.click(square)

    def attempt_move(self, from_square: str, to_square: str) -> bool:
        return self.gate.attempt(from_square, to_square)

    def confirm_promotion(self, piece: str) -> bool:
        return self.gate.confirm_promotion(piece)

    def cancel_promotion(self) -> bool:
        return self.gate.cancel_promotion()

    def _execute_move(self, spec: MoveSpec) -> bool:
        result = self.puzzle.handle_user_move(spec)
        if result.handled:
            return result.success

        move = self.pipeline.make_animated_move(spec)
        if move is None:
            self.channel.emit(InvalidMoveEvent(spec.from_square, spec.to_square, "illegal move"))
            return False
        game_id = self.live.live_game_id
        if game_id:
            self.stream.note_local_move(game_id, move.uci)
            self._spawn(self._send_move(game_id, move.uci))
        return True

    async def _send_move(self, game_id: str, token: str) -> None:
        try:
            await self.client.send_move(game_id, token)
        except ClientError as exc:
            logger.warning("Sending %s to game %s failed: %s", token, game_id, exc)
            self.channel.emit(ConnectionStatusEvent("Move failed"))

    # ------------------------------------------------------------------ #
    # Challenges / game actions                                            #
    # ------------------------------------------------------------------ #

    async def accept_challenge(self, challenge_id: str) -> None:
        await self.client.accept_challenge(challenge_id)

    async def decline_challenge(self, challenge_id: str) -> None:
        await self.client.decline_challenge(challenge_id)

    def _require_live_game(self) -> str:
        game_id = self.live.live_game_id
        if not game_id:
            raise NoActiveGameError("No active game")
        return game_id

    async def resign(self) -> None:
        await self.client.resign_game(self._require_live_game())

    async def offer_draw(self) -> None:
        game_id = self._require_live_game()
        self.channel.emit(DrawStatusEvent("Offering..."))
        try:
            await self.client.offer_draw(game_id, accept=True)
        except ClientError as exc:
            logger.warning("Draw offer failed: %s", exc)
            self.channel.emit(DrawStatusEvent("Draw failed"))
            return
        self.channel.emit(DrawStatusEvent("Draw offered"))

    async def decline_draw(self) -> None:
        game_id = self._require_live_game()
        self.channel.emit(DrawStatusEvent("Declining..."))
        try:
            await self.client.offer_draw(game_id, accept=False)
        except ClientError as exc:
            logger.warning("Draw decline failed: %s", exc)
            self.channel.emit(DrawStatusEvent("Decline failed"))
            return
        self.channel.emit(DrawStatusEvent(""))

    async def challenge_ai(self, level: int = 3) -> str | None:
        self.channel.emit(ConnectionStatusEvent("Sending..."))
        try:
            data = await self.client.challenge_ai(level)
        except ClientError as exc:
            logger.warning("AI challenge failed: %s", exc)
            self.channel.emit(ConnectionStatusEvent("Denied"))
            return None
        game_id = _game_id_from(data)
        if not game_id:
            self.channel.emit(ConnectionStatusEvent("Failed"))
            return None
        self.stream_game(game_id)
        return game_id

    # ------------------------------------------------------------------ #
    # Teardown                                                             #
    # ------------------------------------------------------------------ #

    def logout(self) -> None:
        self._logged_out = True
        self.dispatcher.stop()
        self.stream.stop()
        self.live.set_live_game(None)
        self.live.account = None
        self.history.reset()
        self.channel.emit(PlayersEvent("--", "--", "white"))
        self.channel.emit(ClockEvent("--:--", "--:--"))
        self.channel.emit(DrawStatusEvent(""))
        self.channel.emit(PuzzleRatingEvent("--"))
        self.channel.emit(PuzzleSolutionEvent([]))

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_background(self) -> None:
        if self._tasks:
            await asyncio.wait(set(self._tasks))

    async def close(self) -> None:
        self.dispatcher.stop()
        self.stream.stop()
        self.pipeline.cancel()
        self.live.close()
        self.puzzle.close()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.sync.detach()
        await self.client.close()
        self.channel.close()
