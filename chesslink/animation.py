"""
Move queue and animation pipeline.

Rule application happens immediately in RulesEngine; this module only
presents already-committed moves, strictly in commit order and one at a
time. The visual state lives in BoardView (square -> piece, plus capture
trays); the timed transition itself is delegated to an Animator.

All mutable pipeline state lives in one SyncContext so the stream
reconciler and the state-sync listener share it explicitly.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import math
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from chesslink.board import Move, MoveSpec, RulesEngine
from chesslink.events import BoardResyncedEvent, Color, EventChannel, MoveAnimatedEvent

logger = logging.getLogger(__name__)

_piece_ids = itertools.count(1)


def square_to_coords(square: str) -> tuple[int, int] | None:
    """'e4' -> (file=4, rank=3). None for anything that isn't a square."""
    if len(square) != 2 or square[0] not in "abcdefgh" or square[1] not in "12345678":
        return None
    return ord(square[0]) - ord("a"), int(square[1]) - 1


def coords_to_square(file: int, rank: int) -> str:
    return f"{'abcdefgh'[file]}{rank + 1}"


def ease_in_out(t: float) -> float:
    """Quadratic ease-in-out on [0, 1]."""
    return 2 * t * t if t < 0.5 else -1 + (4 - 2 * t) * t


@dataclass
class VisualPiece:
    type: str
    color: Color
    square: str | None = None
    id: int = field(default_factory=lambda: next(_piece_ids))


class BoardView:
    """In-memory picture of what the renderer shows."""

    def __init__(self) -> None:
        self.pieces_by_square: dict[str, VisualPiece] = {}
        self.trays: dict[Color, list[VisualPiece]] = {"white": [], "black": []}

    def sync_from(self, engine: RulesEngine) -> None:
        """Rebuild every piece from the engine position. Trays are untouched."""
        self.pieces_by_square = {
            square: VisualPiece(type=info.type, color=info.color, square=square)
            for square, info in engine.board_snapshot().items()
        }

    def take(self, square: str) -> VisualPiece | None:
        piece = self.pieces_by_square.pop(square, None)
        if piece is not None:
            piece.square = None
        return piece

    def place(self, piece: VisualPiece, square: str) -> None:
        piece.square = square
        self.pieces_by_square[square] = piece

    def add_captured(self, piece: VisualPiece) -> None:
        self.trays[piece.color].append(piece)

    def reset_trays(self) -> None:
        self.trays = {"white": [], "black": []}

    def layout(self) -> dict[str, str]:
        """square -> piece letter (upper case for white); handy for comparisons."""
        return {
            sq: p.type.upper() if p.color == "white" else p.type
            for sq, p in self.pieces_by_square.items()
        }


class Animator(ABC):
    """Performs the timed visual transition of one piece."""

    @abstractmethod
    async def transition(self, piece: VisualPiece, from_square: str, to_square: str) -> None:
        ...


FrameCallback = Callable[[VisualPiece, float, float, float], None]


class TimedAnimator(Animator):
    """
    Frame-stepped transition: ease-in-out along the board with a vertical arc.

    on_frame receives (piece, file_pos, height, rank_pos) in board units for
    whatever actually draws the scene.
    """

    def __init__(
        self,
        duration_ms: int = 260,
        arc_height: float = 0.18,
        frame_interval_ms: int = 16,
        on_frame: FrameCallback | None = None,
    ) -> None:
        self._duration = duration_ms / 1000
        self._arc_height = arc_height
        self._frame_interval = frame_interval_ms / 1000
        self._on_frame = on_frame

    async def transition(self, piece: VisualPiece, from_square: str, to_square: str) -> None:
        start = square_to_coords(from_square)
        end = square_to_coords(to_square)
        if start is None or end is None:
            return
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            t = 1.0 if self._duration <= 0 else min(1.0, (loop.time() - started) / self._duration)
            ease = ease_in_out(t)
            if self._on_frame is not None:
                self._on_frame(
                    piece,
                    start[0] + (end[0] - start[0]) * ease,
                    math.sin(math.pi * ease) * self._arc_height,
                    start[1] + (end[1] - start[1]) * ease,
                )
            if t >= 1.0:
                return
            await asyncio.sleep(self._frame_interval)


@dataclass
class SyncContext:
    """Owned mutable state shared by the pipeline, the state sync and the reconciler."""

    queue: deque[Move] = field(default_factory=deque)
    animating: bool = False
    pending_sync: bool = False
    suppress_next_sync: bool = False


class AnimationPipeline:
    """FIFO presenter of committed moves. At most one entry animates at a time."""

    def __init__(
        self,
        engine: RulesEngine,
        view: BoardView,
        animator: Animator,
        channel: EventChannel,
        context: SyncContext | None = None,
    ) -> None:
        self._engine = engine
        self._view = view
        self._animator = animator
        self._channel = channel
        self.context = context or SyncContext()
        self._drain_task: asyncio.Task | None = None

    # ------------------------------------------------------------------ #
    # Queue                                                                #
    # ------------------------------------------------------------------ #

    @property
    def view(self) -> BoardView:
        return self._view

    @property
    def queue_length(self) -> int:
        return len(self.context.queue)

    @property
    def pending_count(self) -> int:
        """Entries not yet fully presented, including the one in flight."""
        return len(self.context.queue) + (1 if self.context.animating else 0)

    def submit(self, move: Move) -> None:
        self.context.queue.append(move)
        if not self.context.animating:
            self._ensure_draining()

    def make_animated_move(self, spec: MoveSpec | str) -> Move | None:
        """Apply a move to the engine and queue its presentation.

        The mutation will be reflected by the queue, so the state-sync
        listener is told to skip its full resync for this one change.
        """
        self.context.suppress_next_sync = True
        move = self._engine.apply_move(spec)
        if move is None:
            self.context.suppress_next_sync = False
            return None
        self.submit(move)
        return move

    def clear(self) -> None:
        """Drop queued (not in-flight) entries and both sync flags."""
        self.context.queue.clear()
        self.context.pending_sync = False
        self.context.suppress_next_sync = False

    async def wait_idle(self) -> None:
        """Wait until the queue is drained and nothing is animating."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.wait({self._drain_task})

    def cancel(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        self._drain_task = None
        self.clear()
        self.context.animating = False

    # ------------------------------------------------------------------ #
    # Visual resync                                                        #
    # ------------------------------------------------------------------ #

    def on_engine_change(self) -> None:
        """Decide whether an engine mutation needs a full visual resync now, later, or never."""
        ctx = self.context
        if ctx.suppress_next_sync:
            ctx.suppress_next_sync = False
            return
        if ctx.animating or ctx.queue:
            ctx.pending_sync = True
            return
        self.resync()

    def resync(self) -> None:
        self._view.sync_from(self._engine)
        self._channel.emit(BoardResyncedEvent(fen=self._engine.fen))

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    def _ensure_draining(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        ctx = self.context
        while ctx.queue and not ctx.animating:
            move = ctx.queue.popleft()
            await self._present(move)

    async def _present(self, move: Move) -> None:
        ctx = self.context
        view = self._view
        if not view.pieces_by_square:
            view.sync_from(self._engine)
        moving = view.pieces_by_square.get(move.from_square)
        if moving is None:
            # View is behind or ahead of this move; show the engine truth.
            logger.debug("No piece on %s for %s; resyncing", move.from_square, move.uci)
            self._finish_pending_sync(force=True)
            return

        self._capture(move)
        view.take(move.from_square)
        view.place(moving, move.to_square)

        ctx.animating = True
        try:
            await self._animator.transition(moving, move.from_square, move.to_square)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Animation of %s failed", move.uci)
        finally:
            ctx.animating = False

        if move.promotion:
            view.take(move.to_square)
            view.place(VisualPiece(type=move.promotion, color=move.color), move.to_square)
        if move.is_castling:
            self._relocate_rook(move)

        self._finish_pending_sync()
        self._channel.emit(
            MoveAnimatedEvent(move_uci=move.uci, move_san=move.san, color=move.color)
        )

    def _capture(self, move: Move) -> None:
        if move.is_en_passant:
            origin = square_to_coords(move.from_square)
            dest = square_to_coords(move.to_square)
            if origin is None or dest is None:
                return
            # The captured pawn sits beside the origin, not on the destination.
            captured = self._view.take(coords_to_square(dest[0], origin[1]))
        else:
            captured = self._view.take(move.to_square)
        if captured is not None:
            self._view.add_captured(captured)

    def _relocate_rook(self, move: Move) -> None:
        rank = "1" if move.color == "white" else "8"
        if "k" in move.flags:
            origin, dest = f"h{rank}", f"f{rank}"
        else:
            origin, dest = f"a{rank}", f"d{rank}"
        rook = self._view.take(origin)
        if rook is not None:
            self._view.place(rook, dest)

    def _finish_pending_sync(self, force: bool = False) -> None:
        if force or self.context.pending_sync:
            self.context.pending_sync = False
            self.resync()
