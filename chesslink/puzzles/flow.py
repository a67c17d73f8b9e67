"""
Puzzle attempt state machine.

    IDLE --load--> LOADED --correct final move--> SOLVED
                   LOADED --wrong move----------> FAILED

While LOADED, each user move is compared with the next solution token; a
correct move is followed by the scripted reply. The result is submitted at
most once per attempt and only when logged in; submission is best-effort.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from chesslink.animation import AnimationPipeline
from chesslink.board import MoveSpec, parse_move_token
from chesslink.client.base import ClientError, LichessClient
from chesslink.events import (
    EventChannel,
    InvalidMoveEvent,
    PuzzleRatingEvent,
    PuzzleSolutionEvent,
    PuzzleState,
    PuzzleStatusEvent,
)

logger = logging.getLogger(__name__)


@dataclass
class PuzzleAttempt:
    puzzle_id: str | None
    solution: list[str]
    cursor: int = 0
    submitted: bool = False


@dataclass(frozen=True)
class PuzzleMoveResult:
    handled: bool
    success: bool = False
    failed: bool = False
    solved: bool = False


def _matches(expected: str, spec: MoveSpec) -> bool:
    wanted = parse_move_token(expected)
    if wanted is None:
        return False
    if wanted.from_square != spec.from_square or wanted.to_square != spec.to_square:
        return False
    return wanted.promotion is None or wanted.promotion == spec.promotion


class PuzzleFlow:
    def __init__(
        self,
        pipeline: AnimationPipeline,
        client: LichessClient,
        channel: EventChannel,
        is_logged_in: Callable[[], bool],
        on_submitted: Callable[[], Awaitable[Any]] | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._client = client
        self._channel = channel
        self._is_logged_in = is_logged_in
        self._on_submitted = on_submitted
        self.state: PuzzleState = "idle"
        self.attempt: PuzzleAttempt | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self.state == "loaded"

    @property
    def cursor(self) -> int:
        return self.attempt.cursor if self.attempt else 0

    def expected_move(self) -> str | None:
        if not self.active or self.attempt is None:
            return None
        solution = self.attempt.solution
        return solution[self.attempt.cursor] if self.attempt.cursor < len(solution) else None

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    def load(
        self,
        puzzle_id: str | None,
        solution: list[str],
        rating: int | None,
        label: str,
        requires_auth: bool = False,
        repeated: bool = False,
    ) -> None:
        self.attempt = PuzzleAttempt(puzzle_id=puzzle_id, solution=list(solution))
        self.state = "loaded" if solution else "idle"
        self._channel.emit(PuzzleSolutionEvent(list(solution)))
        self._channel.emit(PuzzleRatingEvent(str(rating) if isinstance(rating, int) else "--"))
        status = f"{label} (login for new puzzles)" if requires_auth and repeated else label
        self._channel.emit(PuzzleStatusEvent(status, self.state))

    def deactivate(self) -> None:
        """A live game took over the board."""
        self.attempt = None
        self.state = "idle"
        self._channel.emit(PuzzleStatusEvent("Inactive", "idle"))
        self._channel.emit(PuzzleRatingEvent("--"))

    def exit(self) -> None:
        self.attempt = None
        self.state = "idle"
        self._channel.emit(PuzzleStatusEvent("Ready", "idle"))
        self._channel.emit(PuzzleRatingEvent("--"))
        self._channel.emit(PuzzleSolutionEvent([]))

    def reset_on_failure(self, status: str) -> None:
        self.attempt = None
        self.state = "idle"
        self._channel.emit(PuzzleStatusEvent(status, "idle"))
        self._channel.emit(PuzzleRatingEvent("--"))
        self._channel.emit(PuzzleSolutionEvent([]))

    # ------------------------------------------------------------------ #
    # Moves                                                                #
    # ------------------------------------------------------------------ #

    def handle_user_move(self, spec: MoveSpec) -> PuzzleMoveResult:
        expected = self.expected_move()
        attempt = self.attempt
        if expected is None or attempt is None:
            return PuzzleMoveResult(handled=False)

        correct = _matches(expected, spec)
        if self._pipeline.make_animated_move(spec) is None:
            self._channel.emit(InvalidMoveEvent(spec.from_square, spec.to_square, "illegal move"))
            return PuzzleMoveResult(handled=True, failed=True)

        if not correct:
            self.submit_result(win=False)
            self.state = "failed"
            self.attempt = None
            self._channel.emit(PuzzleStatusEvent("Failed", "failed"))
            return PuzzleMoveResult(handled=True, failed=True)

        attempt.cursor += 1
        if attempt.cursor < len(attempt.solution):
            reply = attempt.solution[attempt.cursor]
            if self._pipeline.make_animated_move(reply) is not None:
                attempt.cursor += 1
            else:
                logger.warning("Puzzle %s: scripted reply %r is illegal", attempt.puzzle_id, reply)

        if attempt.cursor >= len(attempt.solution):
            self.state = "solved"
            self._channel.emit(PuzzleStatusEvent("Solved", "solved"))
            self.submit_result(win=True)
            self.attempt = None
            self._channel.emit(PuzzleSolutionEvent([]))
            return PuzzleMoveResult(handled=True, success=True, solved=True)
        return PuzzleMoveResult(handled=True, success=True)

    # ------------------------------------------------------------------ #
    # Submission                                                           #
    # ------------------------------------------------------------------ #

    def submit_result(self, win: bool) -> bool:
        """Queue the result for submission. Returns False if already submitted or not possible."""
        attempt = self.attempt
        if attempt is None or attempt.puzzle_id is None or attempt.submitted:
            return False
        if not self._is_logged_in():
            return False
        attempt.submitted = True
        solutions = [{"id": attempt.puzzle_id, "win": win, "rated": True}]
        task = asyncio.get_running_loop().create_task(self._submit(solutions))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _submit(self, solutions: list[dict]) -> None:
        try:
            await self._client.submit_puzzle_results(solutions)
        except ClientError as exc:
            logger.warning("Puzzle result submit failed: %s", exc)
            return
        # The account rating moved; refresh it for the display.
        if self._on_submitted is not None:
            await self._on_submitted()

    async def wait_submissions(self) -> None:
        if self._tasks:
            await asyncio.wait(set(self._tasks))

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
